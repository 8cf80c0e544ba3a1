# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Emergence Contributors

"""Output formatting for CLI commands.

Commands build a plain dict; ``--json`` prints it verbatim, otherwise a short
text rendering is printed.
"""

from __future__ import annotations

import json
import sys
from typing import Any


def output_result(data: dict[str, Any], as_json: bool = False, text: str | None = None) -> None:
    """Print a command result as JSON or as its text rendering."""
    if as_json or text is None:
        print(json.dumps(data, indent=2, default=str))
    else:
        print(text)


def output_error(message: str) -> None:
    """Print error message to stderr."""
    print(f"Error: {message}", file=sys.stderr)


def format_distribution(data: dict[str, Any]) -> str:
    """One-line summary of a serialized distribution."""
    line = (
        f"  {data['question_id']:<20} {data['kind']:<4} n={data['total_attestations']:<4} "
        f"convergence={data['convergence']:.2f}"
    )
    if data.get("has_consensus"):
        line += "  [consensus]"
    return line


def format_report(report: dict[str, Any]) -> str:
    lines = [
        "Invariant report",
        "─" * 30,
        f"  Checks:        {report['total_checks']}",
        f"  Passed:        {report['passed']}",
        f"  Failed:        {report['failed']}",
        f"  Unimplemented: {report['unimplemented']}",
        f"  Critical:      {report['critical_violations']}",
    ]
    for violation in report["violations"]:
        lines.append(f"  [{violation['severity']}] {violation['kind']}: {violation['message']}")
    for warning in report["warnings"]:
        lines.append(f"  warning: {warning}")
    lines.append("")
    lines.extend(f"  - {r}" for r in report["recommendations"])
    return "\n".join(lines)
