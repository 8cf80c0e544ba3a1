"""Replay command: feed a JSON-lines attestation log through the core."""

from __future__ import annotations

import argparse
import logging
from collections import Counter
from pathlib import Path

from ...core.exceptions import PersistenceError
from ..output import format_distribution, format_report, output_error, output_result
from ..utils import load_core, read_attestation_log, save_core

logger = logging.getLogger(__name__)


def register(subparsers: argparse._SubParsersAction) -> None:
    """Register the replay command on the CLI parser."""
    replay_parser = subparsers.add_parser("replay", help="Replay an attestation log")
    replay_parser.add_argument("log", type=Path, help="JSON-lines file, one attestation per line")
    replay_parser.add_argument("--state", type=Path, help="State file to resume from and save to")
    replay_parser.add_argument("--check", action="store_true", help="Run the invariant sweep afterwards")
    replay_parser.add_argument("--strict", action="store_true", help="Stop at the first malformed line")
    replay_parser.set_defaults(func=cmd_replay)


def cmd_replay(args: argparse.Namespace) -> int:
    """Replay attestations in log order, timestamping each with its own time."""
    try:
        core = load_core(args.state)
    except PersistenceError as e:
        output_error(f"{e.message} ({e.details.get('cause', 'no detail')})")
        return 1

    try:
        records = list(read_attestation_log(args.log))
    except OSError as e:
        output_error(f"Cannot read {args.log}: {e}")
        return 1

    outcomes: Counter[str] = Counter()
    errors = []
    for line_number, attestation, error in records:
        if attestation is None:
            errors.append({"line": line_number, "error": error})
            if args.strict:
                output_error(f"line {line_number}: {error}")
                return 1
            continue
        result = core.ingest(attestation, now=attestation.timestamp)
        outcomes["accepted" if result.accepted else result.reason or "rejected"] += 1
        if result.consensus_reached:
            outcomes["consensus_reached"] += 1

    data = {
        "lines": len(records),
        "outcomes": dict(outcomes),
        "errors": errors,
        "distributions": [d.to_dict() for d in core.distributions().values()],
    }
    text_lines = [f"Replayed {len(records)} line(s): " + ", ".join(f"{k}={v}" for k, v in sorted(outcomes.items()))]
    text_lines.extend(f"  line {e['line']}: {e['error']}" for e in errors)
    text_lines.extend(format_distribution(d) for d in data["distributions"])

    exit_code = 0
    if args.check:
        report = core.check_invariants().to_dict()
        data["invariants"] = report
        text_lines.append(format_report(report))
        if report["critical_violations"]:
            exit_code = 2

    if args.state is not None:
        try:
            save_core(core, args.state)
        except PersistenceError as e:
            output_error(e.message)
            return 1

    output_result(data, args.json, "\n".join(text_lines))
    return exit_code
