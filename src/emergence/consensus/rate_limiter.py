"""Per-(attester, question) rate limiting.

An attester may attest a given question once per window (30 days by
default). Rejections are returned to the caller, never queued or retried.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(days=30)
ABUSE_LOOKBACK = timedelta(hours=24)
ABUSE_RECENT_QUESTIONS = 10  # flag users with more than this many questions in the lookback
VIOLATION_WARNING_COUNT = 2


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'s' if count != 1 else ''}"


@dataclass(frozen=True)
class RateLimitEntry:
    """Last accepted attestation for one (attester, question) pair.

    ``violations`` counts attempts rejected while the window was active.
    """

    attester_id: str
    question_id: str
    last_attestation: datetime
    attempt_count: int = 1
    violations: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "attester_id": self.attester_id,
            "question_id": self.question_id,
            "last_attestation": self.last_attestation.isoformat(),
            "attempt_count": self.attempt_count,
            "violations": self.violations,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RateLimitEntry:
        return cls(
            attester_id=data["attester_id"],
            question_id=data["question_id"],
            last_attestation=datetime.fromisoformat(data["last_attestation"]),
            attempt_count=int(data.get("attempt_count", 1)),
            violations=int(data.get("violations", 0)),
        )


@dataclass
class RateLimitResult:
    """Result of an atomic rate-limit check."""

    allowed: bool
    attester_id: str
    question_id: str
    retry_after: timedelta | None = None
    message: str | None = None

    @property
    def retry_after_days(self) -> int:
        if self.retry_after is None:
            return 0
        return math.ceil(self.retry_after / timedelta(days=1))

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "attester_id": self.attester_id,
            "question_id": self.question_id,
            "retry_after_seconds": self.retry_after.total_seconds() if self.retry_after else None,
            "message": self.message,
        }


@dataclass
class AbusePattern:
    """An attester touching unusually many questions in the lookback window."""

    attester_id: str
    question_count: int
    recent_attempts: int


class RateLimiter:
    """Once-per-window gate keyed by (attester_id, question_id)."""

    def __init__(self, window: timedelta = DEFAULT_WINDOW):
        if window <= timedelta(0):
            raise ValueError("Rate limit window must be positive")
        self.window = window
        self._entries: dict[tuple[str, str], RateLimitEntry] = {}
        self._lock = threading.Lock()

    def _is_active(self, entry: RateLimitEntry, now: datetime) -> bool:
        return now - entry.last_attestation < self.window

    def may_attest(self, attester_id: str, question_id: str, now: datetime) -> bool:
        """True if there is no entry or the last attestation is at least a window old."""
        with self._lock:
            entry = self._entries.get((attester_id, question_id))
        return entry is None or not self._is_active(entry, now)

    def record(self, attester_id: str, question_id: str, now: datetime) -> RateLimitEntry:
        """Upsert the entry. Call only after the attestation was accepted."""
        with self._lock:
            return self._record_locked(attester_id, question_id, now)

    def _record_locked(self, attester_id: str, question_id: str, now: datetime) -> RateLimitEntry:
        key = (attester_id, question_id)
        existing = self._entries.get(key)
        entry = RateLimitEntry(
            attester_id=attester_id,
            question_id=question_id,
            last_attestation=now,
            attempt_count=(existing.attempt_count if existing else 0) + 1,
            violations=existing.violations if existing else 0,
        )
        self._entries[key] = entry
        return entry

    def check_and_record(self, attester_id: str, question_id: str, now: datetime) -> RateLimitResult:
        """Check and record as one atomic step.

        Two concurrent attestations for the same pair cannot both pass.
        """
        with self._lock:
            entry = self._entries.get((attester_id, question_id))
            if entry is not None and self._is_active(entry, now):
                retry_after = self.window - (now - entry.last_attestation)
                result = RateLimitResult(
                    allowed=False,
                    attester_id=attester_id,
                    question_id=question_id,
                    retry_after=retry_after,
                )
                result.message = f"Wait {_plural(result.retry_after_days, 'day')} before re-attesting"
                logger.info(f"Rate limited: {attester_id} on {question_id}, retry in {retry_after}")
                self._record_violation_locked(entry)
                return result
            self._record_locked(attester_id, question_id, now)
        return RateLimitResult(allowed=True, attester_id=attester_id, question_id=question_id)

    def may_attest_batch(self, attester_id: str, question_ids: Sequence[str], now: datetime) -> dict[str, bool]:
        """``may_attest`` for several questions. Nothing is recorded."""
        return {question_id: self.may_attest(attester_id, question_id, now) for question_id in question_ids}

    # ------------------------------------------------------------------------
    # Violations
    # ------------------------------------------------------------------------

    def _record_violation_locked(self, entry: RateLimitEntry) -> None:
        updated = replace(entry, violations=entry.violations + 1)
        self._entries[(entry.attester_id, entry.question_id)] = updated
        if updated.violations >= VIOLATION_WARNING_COUNT:
            logger.warning(
                f"{entry.attester_id} has {updated.violations} rate limit violations on {entry.question_id}"
            )

    def violation_count(self, attester_id: str) -> int:
        """Rejected attempts across all of the attester's questions."""
        return sum(e.violations for e in self.entries_for_user(attester_id))

    def clear_violations(self, attester_id: str) -> None:
        with self._lock:
            for key, entry in list(self._entries.items()):
                if entry.attester_id == attester_id and entry.violations:
                    self._entries[key] = replace(entry, violations=0)

    def time_until_next(self, attester_id: str, question_id: str, now: datetime) -> timedelta:
        with self._lock:
            entry = self._entries.get((attester_id, question_id))
        if entry is None:
            return timedelta(0)
        return max(timedelta(0), self.window - (now - entry.last_attestation))

    def time_until_next_readable(self, attester_id: str, question_id: str, now: datetime) -> str:
        """Remaining wait as "N days M hours", or "Can attest now"."""
        remaining = self.time_until_next(attester_id, question_id, now)
        if remaining <= timedelta(0):
            return "Can attest now"
        days = remaining.days
        hours = remaining.seconds // 3600
        if days > 0:
            return f"{_plural(days, 'day')} {_plural(hours, 'hour')}"
        return _plural(hours, "hour")

    def entries_for_user(self, attester_id: str) -> list[RateLimitEntry]:
        with self._lock:
            return [e for e in self._entries.values() if e.attester_id == attester_id]

    def entries_for_question(self, question_id: str) -> list[RateLimitEntry]:
        with self._lock:
            return [e for e in self._entries.values() if e.question_id == question_id]

    def entries(self) -> list[RateLimitEntry]:
        with self._lock:
            return list(self._entries.values())

    def clear_expired(self, now: datetime) -> int:
        """Remove inert entries. Returns how many were removed."""
        with self._lock:
            expired = [k for k, e in self._entries.items() if not self._is_active(e, now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Cleared {len(expired)} expired rate-limit entries")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def statistics(self, now: datetime) -> dict[str, Any]:
        entries = self.entries()
        active = sum(1 for e in entries if self._is_active(e, now))
        total = len(entries)
        return {
            "total_limits": total,
            "active_limits": active,
            "expired_limits": total - active,
            "average_attempts": sum(e.attempt_count for e in entries) / total if total else 0.0,
            "total_violations": sum(e.violations for e in entries),
        }

    def detect_abuse_patterns(self, now: datetime) -> list[AbusePattern]:
        """Users who attested more than 10 questions in the last 24 hours."""
        counts: dict[str, list[int]] = {}
        cutoff = now - ABUSE_LOOKBACK
        for entry in self.entries():
            totals = counts.setdefault(entry.attester_id, [0, 0])
            totals[0] += 1
            if entry.last_attestation > cutoff:
                totals[1] += 1

        patterns = [
            AbusePattern(attester_id=user, question_count=total, recent_attempts=recent)
            for user, (total, recent) in counts.items()
            if recent > ABUSE_RECENT_QUESTIONS
        ]
        for pattern in patterns:
            logger.warning(
                f"Possible rate-limit abuse: {pattern.attester_id} attested "
                f"{pattern.recent_attempts} questions in the last 24h"
            )
        return patterns

    def export(self) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self.entries()]

    def load(self, data: list[Mapping[str, Any]]) -> None:
        entries = [RateLimitEntry.from_dict(d) for d in data]
        with self._lock:
            self._entries = {(e.attester_id, e.question_id): e for e in entries}
