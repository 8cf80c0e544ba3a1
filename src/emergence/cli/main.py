#!/usr/bin/env python3
"""
Emergence CLI - replay attestation logs through the consensus core.

Commands:
  emergence replay <log>        Feed a JSON-lines attestation log through the core
  emergence check               Verify system invariants of a saved state
  emergence report              Summarize distributions, reputation and gaming signals
  emergence reveal <question>   Release a hint once the reveal guard is met
"""

from __future__ import annotations

import argparse
import logging
import sys

from ..core.exceptions import ConfigException
from ..core.logging import configure_logging
from .commands import COMMAND_MODULES

logger = logging.getLogger(__name__)


def app() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="emergence",
        description="Emergent consensus over anonymous attestations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  emergence replay attestations.jsonl --state state.json --check
  emergence check --state state.json
  emergence report --state state.json --attester alice
  emergence reveal q-101 --state state.json --dry-run
        """,
    )
    parser.add_argument("--json", action="store_true", help="Print results as JSON")
    parser.add_argument("--log-level", default="INFO", help="Log level (default: EMERGENCE_LOG_LEVEL or INFO)")

    subparsers = parser.add_subparsers(dest="command", required=True)
    for module in COMMAND_MODULES:
        module.register(subparsers)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = app()
    args = parser.parse_args(argv)

    configure_logging(args.log_level)

    handler = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return handler(args)
    except ConfigException as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
