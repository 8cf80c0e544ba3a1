"""Whole-system invariant checks and the background monitor."""

from .checker import InvariantChecker
from .monitor import InvariantMonitor
from .types import CheckResult, CheckStatus, InvariantKind, InvariantReport, InvariantViolation, Severity, StateSnapshot

__all__ = [
    "CheckResult",
    "CheckStatus",
    "InvariantChecker",
    "InvariantKind",
    "InvariantMonitor",
    "InvariantReport",
    "InvariantViolation",
    "Severity",
    "StateSnapshot",
]
