"""Check command: run the invariant sweep over a saved state."""

from __future__ import annotations

import argparse
from pathlib import Path

from ...core.exceptions import PersistenceError
from ..output import format_report, output_error, output_result
from ..utils import load_core


def register(subparsers: argparse._SubParsersAction) -> None:
    """Register the check command on the CLI parser."""
    check_parser = subparsers.add_parser("check", help="Verify system invariants of a saved state")
    check_parser.add_argument("--state", type=Path, required=True, help="State file")
    check_parser.set_defaults(func=cmd_check)


def cmd_check(args: argparse.Namespace) -> int:
    """Exit 0 when clean, 2 on critical violations, 3 on other failures."""
    if not args.state.exists():
        output_error(f"State file not found: {args.state}")
        return 1
    try:
        core = load_core(args.state)
    except PersistenceError as e:
        output_error(e.message)
        return 1

    report = core.check_invariants().to_dict()
    output_result(report, args.json, format_report(report))
    if report["critical_violations"]:
        return 2
    if report["failed"]:
        return 3
    return 0
