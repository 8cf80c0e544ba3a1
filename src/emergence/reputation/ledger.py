"""Reputation ledger.

Single owner of cumulative reputation. Each attestation is credited at most
once and credits are non-negative, so totals never decrease.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..consensus.models import Attestation
from .bonuses import AttesterStats
from .calculator import ReputationUpdate

logger = logging.getLogger(__name__)


@dataclass
class AttesterRecord:
    """Running statistics for one attester."""

    attester_id: str
    total_score: float = 0.0
    attestation_count: int = 0
    active_days: set[str] = field(default_factory=set)
    first_seen: datetime | None = None
    scored_count: int = 0
    correct_count: int = 0
    streak: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "attester_id": self.attester_id,
            "total_score": self.total_score,
            "attestation_count": self.attestation_count,
            "active_days": sorted(self.active_days),
            "first_seen": self.first_seen.isoformat() if self.first_seen else None,
            "scored_count": self.scored_count,
            "correct_count": self.correct_count,
            "streak": self.streak,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AttesterRecord:
        first_seen = data.get("first_seen")
        return cls(
            attester_id=data["attester_id"],
            total_score=float(data.get("total_score", 0.0)),
            attestation_count=int(data.get("attestation_count", 0)),
            active_days=set(data.get("active_days", [])),
            first_seen=datetime.fromisoformat(first_seen) if first_seen else None,
            scored_count=int(data.get("scored_count", 0)),
            correct_count=int(data.get("correct_count", 0)),
            streak=int(data.get("streak", 0)),
        )


class ReputationLedger:
    """attester_id -> cumulative score, plus the statistics bonuses need."""

    def __init__(self) -> None:
        self._records: dict[str, AttesterRecord] = {}
        self._positions: dict[str, int] = {}  # attestation id -> attester's ordinal
        self._updates: dict[str, ReputationUpdate] = {}  # attestation id -> credited event
        self._lock = threading.Lock()

    def _record(self, attester_id: str) -> AttesterRecord:
        record = self._records.get(attester_id)
        if record is None:
            record = self._records[attester_id] = AttesterRecord(attester_id=attester_id)
        return record

    def note_attestation(self, attestation: Attestation) -> None:
        """Track participation for an accepted attestation."""
        with self._lock:
            if attestation.id in self._positions:
                return
            record = self._record(attestation.attester_id)
            record.attestation_count += 1
            record.active_days.add(attestation.timestamp.date().isoformat())
            if record.first_seen is None or attestation.timestamp < record.first_seen:
                record.first_seen = attestation.timestamp
            self._positions[attestation.id] = record.attestation_count

    def stats_for(self, attester_id: str, now: datetime, attestation_id: str | None = None) -> AttesterStats:
        """Bonus statistics for an attester as of ``now``.

        When ``attestation_id`` is given, the attestation count is that
        attestation's ordinal so early-adopter status is judged per attestation.
        """
        with self._lock:
            record = self._records.get(attester_id)
            if record is None:
                return AttesterStats()
            count = record.attestation_count
            if attestation_id is not None:
                count = self._positions.get(attestation_id, count)
            total_days = 0
            if record.first_seen is not None:
                total_days = (now.date() - record.first_seen.date()).days + 1
            return AttesterStats(
                attestation_count=count,
                days_active=len(record.active_days),
                total_days=max(0, total_days),
                correct_count=record.correct_count,
                scored_count=record.scored_count,
                streak=record.streak,
            )

    def is_credited(self, attestation_id: str) -> bool:
        with self._lock:
            return attestation_id in self._updates

    def credit(self, update: ReputationUpdate, was_correct: bool) -> bool:
        """Credit a reward event once.

        Returns:
            False if the attestation was already credited.

        Raises:
            ValueError: if the credit is negative.
        """
        if update.final_score < 0:
            raise ValueError(f"Negative credit for {update.attestation_id}: {update.final_score}")
        with self._lock:
            if update.attestation_id in self._updates:
                return False
            record = self._record(update.attester_id)
            record.total_score += update.final_score
            record.scored_count += 1
            if was_correct:
                record.correct_count += 1
                record.streak += 1
            else:
                record.streak = 0
            self._updates[update.attestation_id] = update
        logger.debug(f"Credited {update.final_score:.3f} to {update.attester_id} for {update.attestation_id}")
        return True

    def total(self, attester_id: str) -> float:
        with self._lock:
            record = self._records.get(attester_id)
            return record.total_score if record else 0.0

    def totals(self) -> dict[str, float]:
        with self._lock:
            return {aid: r.total_score for aid, r in self._records.items()}

    def record_for(self, attester_id: str) -> AttesterRecord | None:
        with self._lock:
            return self._records.get(attester_id)

    def updates(self, attester_id: str | None = None) -> list[ReputationUpdate]:
        with self._lock:
            return [u for u in self._updates.values() if attester_id is None or u.attester_id == attester_id]

    def export(self) -> dict[str, Any]:
        with self._lock:
            return {
                "records": [r.to_dict() for r in self._records.values()],
                "positions": dict(self._positions),
                "updates": [u.to_dict() for u in self._updates.values()],
            }

    def load(self, data: Mapping[str, Any]) -> None:
        records = {r["attester_id"]: AttesterRecord.from_dict(r) for r in data.get("records", [])}
        updates = [ReputationUpdate.from_dict(u) for u in data.get("updates", [])]
        with self._lock:
            self._records = records
            self._positions = {k: int(v) for k, v in data.get("positions", {}).items()}
            self._updates = {u.attestation_id: u for u in updates}
