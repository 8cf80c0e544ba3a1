"""CLI command modules for Emergence.

Each module exposes a ``register(subparsers)`` function that wires up
its argparse sub-commands and sets ``parser.set_defaults(func=handler)``.
"""

from . import check, replay, report, reveal
from .check import cmd_check
from .replay import cmd_replay
from .report import cmd_report
from .reveal import cmd_reveal

# All command modules with register() functions, in registration order.
COMMAND_MODULES = [
    replay,
    check,
    report,
    reveal,
]

__all__ = [
    "COMMAND_MODULES",
    "cmd_check",
    "cmd_replay",
    "cmd_report",
    "cmd_reveal",
]
