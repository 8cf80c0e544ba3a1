"""Report command: distributions, reputation and anti-gaming summary."""

from __future__ import annotations

import argparse
from pathlib import Path

from ...core.exceptions import PersistenceError
from ..output import format_distribution, output_error, output_result
from ..utils import load_core


def register(subparsers: argparse._SubParsersAction) -> None:
    """Register the report command on the CLI parser."""
    report_parser = subparsers.add_parser("report", help="Summarize a saved state")
    report_parser.add_argument("--state", type=Path, required=True, help="State file")
    report_parser.add_argument("--top", "-n", type=int, default=10, help="Leaderboard size")
    report_parser.add_argument("--attester", help="Show the gaming analysis for one attester")
    report_parser.set_defaults(func=cmd_report)


def cmd_report(args: argparse.Namespace) -> int:
    if not args.state.exists():
        output_error(f"State file not found: {args.state}")
        return 1
    try:
        core = load_core(args.state)
    except PersistenceError as e:
        output_error(e.message)
        return 1

    distributions = [d.to_dict() for d in core.distributions().values()]
    leaderboard = core.leaderboard(args.top)
    collusion = core.collusion_report()
    sybils = core.sybil_report()
    data = {
        "distributions": distributions,
        "leaderboard": [{"attester_id": a, "score": round(s, 4)} for a, s in leaderboard],
        "flagged_attesters": core.flagged_attesters(),
        "collusion": collusion.to_dict(),
        "sybils": sybils.to_dict(),
        "reveals": core.gate.statistics(),
    }

    lines = ["Distributions", "─" * 30]
    lines.extend(format_distribution(d) for d in distributions)
    lines += ["", "Reputation", "─" * 30]
    lines.extend(f"  {attester:<24} {score:8.3f}" for attester, score in leaderboard)
    if data["flagged_attesters"]:
        lines += ["", f"Flagged: {', '.join(data['flagged_attesters'])}"]
    if collusion.detected:
        lines.append(f"Collusion groups: {len(collusion.groups)}")
    if sybils.detected:
        lines.append(f"Sybil suspects: {', '.join(sybils.suspects)}")

    if args.attester:
        analysis = core.gaming_report(args.attester)
        data["attester"] = {
            **analysis.to_dict(),
            "reputation": core.reputation(args.attester),
            "suspicion": core.suspicion(args.attester),
        }
        lines += ["", f"Attester {args.attester}", "─" * 30]
        lines.append(f"  Reputation: {core.reputation(args.attester):.3f}")
        lines.append(f"  Suspicion:  {core.suspicion(args.attester)}")
        lines.extend(f"  - {r}" for r in analysis.recommendations)

    output_result(data, args.json, "\n".join(lines))
    return 0
