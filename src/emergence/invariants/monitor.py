# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Emergence Contributors

"""Background invariant monitor.

Periodically takes a snapshot from the host, runs the checker over it, routes
violations to subscribers and escalates bursts of critical violations.
Automatic recovery is limited to soft kinds and bounded per kind.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from ..core.config import ConsensusConfig
from .checker import InvariantChecker
from .types import (
    DATA_INTEGRITY_KINDS,
    SOFT_KINDS,
    InvariantKind,
    InvariantReport,
    InvariantViolation,
    Severity,
    StateSnapshot,
)

logger = logging.getLogger(__name__)

RECENT_HISTORY_SIZE = 100
ESCALATION_WINDOW = timedelta(minutes=1)

SEVERITY_LOG_LEVELS: dict[Severity, int] = {
    Severity.CRITICAL: logging.CRITICAL,
    Severity.HIGH: logging.ERROR,
    Severity.MEDIUM: logging.WARNING,
    Severity.LOW: logging.INFO,
}

SnapshotProvider = Callable[[], StateSnapshot]
ViolationCallback = Callable[[InvariantViolation], None]
ReportCallback = Callable[[InvariantReport], None]
EscalationCallback = Callable[[str, list[InvariantViolation]], None]
RecoveryHook = Callable[[InvariantViolation], bool]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class InvariantMonitor:
    """Runs invariant sweeps on an interval in a daemon thread."""

    def __init__(
        self,
        checker: InvariantChecker,
        snapshot_provider: SnapshotProvider,
        config: ConsensusConfig | None = None,
        alert_on_violation: bool = True,
        auto_recover: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.checker = checker
        self.snapshot_provider = snapshot_provider
        self.config = config or checker.config
        self.alert_on_violation = alert_on_violation
        self.auto_recover = auto_recover
        self._clock = clock

        self._recent: deque[InvariantViolation] = deque(maxlen=RECENT_HISTORY_SIZE)
        self._violation_callbacks: list[ViolationCallback] = []
        self._report_callbacks: list[ReportCallback] = []
        self._escalation_callbacks: list[EscalationCallback] = []
        self._recovery_hooks: dict[InvariantKind, RecoveryHook] = {}
        self._recovery_attempts: dict[InvariantKind, int] = {}

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_report: InvariantReport | None = None
        self._checks_run = 0

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Run one sweep immediately, then keep sweeping every interval."""
        if self.is_running:
            logger.debug("Invariant monitor already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="emergence-invariant-monitor")
        self._thread.start()
        logger.info(f"Invariant monitor started (interval={self.config.monitor_interval_seconds}s)")

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        self._thread = None
        logger.info("Invariant monitor stopped")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_check()
            except Exception as e:
                logger.error(f"Invariant monitor sweep failed: {e}", exc_info=True)
            if self._stop_event.wait(self.config.monitor_interval_seconds):
                break

    # -------------------------------------------------------------------------
    # Sweeps
    # -------------------------------------------------------------------------

    def run_check(self) -> InvariantReport:
        """Run a sweep now, outside the schedule."""
        report = self.checker.verify_all(self.snapshot_provider())
        with self._lock:
            self._last_report = report
            self._checks_run += 1

        for violation in report.violations:
            self._handle_violation(violation)

        for callback in list(self._report_callbacks):
            try:
                callback(report)
            except Exception as e:
                logger.error(f"Invariant report callback failed: {e}", exc_info=True)

        self._check_escalation()
        return report

    def report_violation(self, violation: InvariantViolation) -> None:
        """Accept a violation observed by the host, such as a view-state mismatch."""
        self._handle_violation(violation)
        self._check_escalation()

    def _handle_violation(self, violation: InvariantViolation) -> None:
        with self._lock:
            self._recent.append(violation)

        if self.alert_on_violation:
            logger.log(
                SEVERITY_LOG_LEVELS[violation.severity],
                f"Invariant violation [{violation.kind.value}] {violation.message}"
                + (f" at {violation.location}" if violation.location else ""),
            )

        for callback in list(self._violation_callbacks):
            try:
                callback(violation)
            except Exception as e:
                logger.error(f"Invariant violation callback failed: {e}", exc_info=True)

        if self.auto_recover:
            self._attempt_recovery(violation)

    def _check_escalation(self) -> None:
        cutoff = self._clock() - ESCALATION_WINDOW
        with self._lock:
            recent_critical = [v for v in self._recent if v.severity == Severity.CRITICAL and v.timestamp > cutoff]
        if len(recent_critical) < self.config.max_critical_per_minute:
            return

        message = f"CRITICAL: {len(recent_critical)} invariant violations in the last minute"
        logger.critical(message)
        for callback in list(self._escalation_callbacks):
            try:
                callback(message, recent_critical)
            except Exception as e:
                logger.error(f"Invariant escalation callback failed: {e}", exc_info=True)

    # -------------------------------------------------------------------------
    # Recovery
    # -------------------------------------------------------------------------

    def register_recovery(self, kind: InvariantKind, hook: RecoveryHook) -> None:
        """Register a repair hook for a soft invariant kind.

        Raises:
            ValueError: if ``kind`` is not repairable.
        """
        if kind not in SOFT_KINDS:
            raise ValueError(f"Invariant kind {kind.value} cannot be recovered automatically")
        with self._lock:
            self._recovery_hooks[kind] = hook
            self._recovery_attempts[kind] = 0

    def _attempt_recovery(self, violation: InvariantViolation) -> None:
        if violation.kind in DATA_INTEGRITY_KINDS:
            return
        with self._lock:
            hook = self._recovery_hooks.get(violation.kind)
            attempts = self._recovery_attempts.get(violation.kind, 0)
            if hook is None:
                return
            if attempts >= self.config.max_recovery_attempts:
                logger.warning(f"Recovery for {violation.kind.value} exhausted after {attempts} attempts")
                return
            self._recovery_attempts[violation.kind] = attempts + 1

        try:
            recovered = hook(violation)
        except Exception as e:
            logger.error(f"Recovery hook for {violation.kind.value} failed: {e}", exc_info=True)
            return

        if recovered:
            logger.info(f"Recovered from {violation.kind.value} violation")
            with self._lock:
                self._recovery_attempts[violation.kind] = 0
        else:
            logger.warning(f"Recovery for {violation.kind.value} did not succeed (attempt {attempts + 1})")

    def recovery_attempts(self, kind: InvariantKind) -> int:
        with self._lock:
            return self._recovery_attempts.get(kind, 0)

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def on_violation(self, callback: ViolationCallback) -> Callable[[], None]:
        self._violation_callbacks.append(callback)
        return lambda: self._remove(self._violation_callbacks, callback)

    def on_report(self, callback: ReportCallback) -> Callable[[], None]:
        self._report_callbacks.append(callback)
        return lambda: self._remove(self._report_callbacks, callback)

    def on_escalation(self, callback: EscalationCallback) -> Callable[[], None]:
        self._escalation_callbacks.append(callback)
        return lambda: self._remove(self._escalation_callbacks, callback)

    @staticmethod
    def _remove(callbacks: list, callback: Any) -> None:
        if callback in callbacks:
            callbacks.remove(callback)

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    def violation_history(self) -> list[InvariantViolation]:
        with self._lock:
            return list(self._recent)

    def clear_history(self) -> None:
        with self._lock:
            self._recent.clear()
        self.checker.clear_history()

    def status(self) -> dict[str, Any]:
        with self._lock:
            last = self._last_report
            return {
                "running": self.is_running,
                "interval_seconds": self.config.monitor_interval_seconds,
                "checks_run": self._checks_run,
                "recent_violations": len(self._recent),
                "last_check": last.timestamp.isoformat() if last else None,
                "last_failed": last.failed if last else None,
                "auto_recover": self.auto_recover,
            }
