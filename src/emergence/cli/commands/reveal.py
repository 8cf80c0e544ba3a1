"""Reveal command: release a hint for a question in a saved state."""

from __future__ import annotations

import argparse
from pathlib import Path

from ...core.exceptions import NotFoundError, PersistenceError, RevealTooEarlyError
from ..output import output_error, output_result
from ..utils import load_core, save_core


def register(subparsers: argparse._SubParsersAction) -> None:
    """Register the reveal command on the CLI parser."""
    reveal_parser = subparsers.add_parser("reveal", help="Reveal a hint for a question")
    reveal_parser.add_argument("question_id", help="Question to reveal")
    reveal_parser.add_argument("--state", type=Path, required=True, help="State file")
    reveal_parser.add_argument("--dry-run", action="store_true", help="Only evaluate the reveal guard")
    reveal_parser.set_defaults(func=cmd_reveal)


def cmd_reveal(args: argparse.Namespace) -> int:
    if not args.state.exists():
        output_error(f"State file not found: {args.state}")
        return 1
    try:
        core = load_core(args.state)
        if args.dry_run:
            decision = core.can_reveal(args.question_id)
            data = {
                "question_id": args.question_id,
                "allowed": decision.allowed,
                "reason": decision.reason.value if decision.reason else None,
                "message": decision.message,
            }
            text = "Reveal allowed" if decision.allowed else f"Reveal refused: {decision.message}"
            output_result(data, args.json, text)
            return 0

        record = core.reveal(args.question_id)
        save_core(core, args.state)
    except NotFoundError as e:
        output_error(e.message)
        return 1
    except RevealTooEarlyError as e:
        output_error(f"{e.user_message} ({e.reason})")
        return 2
    except PersistenceError as e:
        output_error(e.message)
        return 1

    output_result(record.to_dict(), args.json, f"Hint for {record.question_id}: {record.hint.text}")
    return 0
