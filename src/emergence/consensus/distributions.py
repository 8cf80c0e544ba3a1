"""Distribution tracker.

Owns every question's distribution and its attestation history. Writes are
serialised per question; a short state lock guards the commit so readers
always observe a distribution together with the history that produced it.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..core.exceptions import ConflictError
from .convergence import ConvergenceEngine
from .models import (
    Attestation,
    AttestationKind,
    FrqDistribution,
    McqDistribution,
    QuestionDistribution,
    distribution_from_dict,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordResult:
    """Outcome of recording one attestation."""

    distribution: QuestionDistribution
    recorded: bool
    reached_consensus: bool = False


@dataclass(frozen=True)
class TrackerSnapshot:
    """Consistent read-only view of all distributions and histories."""

    distributions: Mapping[str, QuestionDistribution]
    histories: Mapping[str, tuple[Attestation, ...]]

    def attestations(self) -> list[Attestation]:
        return [a for history in self.histories.values() for a in history]


class DistributionTracker:
    """Per-question distributions plus full attestation history."""

    def __init__(self, engine: ConvergenceEngine | None = None):
        self.engine = engine or ConvergenceEngine()
        self._distributions: dict[str, QuestionDistribution] = {}
        self._histories: dict[str, tuple[Attestation, ...]] = {}
        self._seen: dict[str, str] = {}  # attestation id -> question id
        self._order: list[Attestation] = []
        self._state_lock = threading.Lock()
        self._question_locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def question_lock(self, question_id: str) -> Iterator[None]:
        """Hold the write lock for one question."""
        with self._locks_guard:
            lock = self._question_locks.setdefault(question_id, threading.RLock())
        with lock:
            yield

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def record(self, attestation: Attestation, now: datetime | None = None) -> QuestionDistribution:
        """Record an attestation and return the updated distribution.

        Recording an attestation whose id is already present is a no-op.
        """
        return self.record_with_result(attestation, now).distribution

    def record_with_result(self, attestation: Attestation, now: datetime | None = None) -> RecordResult:
        """Record an attestation, reporting whether it was new and whether it
        moved the question into consensus.

        Raises:
            ValidationException: on a kind mismatch with the question's
                existing distribution or an unknown digest.
            ConflictError: if the attestation id is already recorded for a
                different question.
        """
        with self.question_lock(attestation.question_id):
            with self._state_lock:
                previous = self._distributions.get(attestation.question_id)
                seen_for = self._seen.get(attestation.id)
            if seen_for is not None:
                if seen_for != attestation.question_id or previous is None:
                    raise ConflictError(
                        f"Attestation {attestation.id} already recorded for question {seen_for}",
                        existing_id=attestation.id,
                    )
                logger.debug(f"Ignoring duplicate attestation {attestation.id}")
                return RecordResult(distribution=previous, recorded=False)

            updated = self.engine.apply(previous, attestation, now)

            with self._state_lock:
                self._distributions[attestation.question_id] = updated
                self._histories[attestation.question_id] = (
                    self._histories.get(attestation.question_id, ()) + (attestation,)
                )
                self._seen[attestation.id] = attestation.question_id
                self._order.append(attestation)

            reached = self.engine.notify_if_transitioned(previous, updated)
            return RecordResult(distribution=updated, recorded=True, reached_consensus=reached)

    def clear(self) -> None:
        with self._state_lock:
            self._distributions.clear()
            self._histories.clear()
            self._seen.clear()
            self._order.clear()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def distribution(self, question_id: str) -> QuestionDistribution | None:
        with self._state_lock:
            return self._distributions.get(question_id)

    def history(self, question_id: str) -> tuple[Attestation, ...]:
        with self._state_lock:
            return self._histories.get(question_id, ())

    def contains(self, attestation_id: str) -> bool:
        with self._state_lock:
            return attestation_id in self._seen

    def kind_of(self, question_id: str) -> AttestationKind | None:
        distribution = self.distribution(question_id)
        return distribution.kind if distribution is not None else None

    def attestations(self) -> tuple[Attestation, ...]:
        """All recorded attestations in insertion order."""
        with self._state_lock:
            return tuple(self._order)

    def all_distributions(self) -> dict[str, QuestionDistribution]:
        with self._state_lock:
            return dict(self._distributions)

    def snapshot(self) -> TrackerSnapshot:
        with self._state_lock:
            return TrackerSnapshot(
                distributions=dict(self._distributions),
                histories=dict(self._histories),
            )

    def consensus_questions(self, min_convergence: float = 0.5) -> list[str]:
        """Questions whose convergence is at least ``min_convergence``."""
        return [qid for qid, d in self.all_distributions().items() if d.convergence >= min_convergence]

    def questions_needing_attestations(self, quorum: int = 3) -> list[str]:
        return [qid for qid, d in self.all_distributions().items() if d.total_attestations < quorum]

    def top_by_convergence(self, limit: int = 10) -> list[QuestionDistribution]:
        ranked = sorted(self.all_distributions().values(), key=lambda d: d.convergence, reverse=True)
        return ranked[:limit]

    def time_since_last_attestation(self, question_id: str, now: datetime) -> float | None:
        """Seconds since the question was last updated, or None if unknown."""
        distribution = self.distribution(question_id)
        if distribution is None or distribution.last_updated is None:
            return None
        return (now - distribution.last_updated).total_seconds()

    def statistics(self) -> dict[str, Any]:
        distributions = list(self.all_distributions().values())
        total = len(distributions)
        return {
            "total_questions": total,
            "mcq_questions": sum(1 for d in distributions if isinstance(d, McqDistribution)),
            "frq_questions": sum(1 for d in distributions if isinstance(d, FrqDistribution)),
            "average_convergence": sum(d.convergence for d in distributions) / total if total else 0.0,
            "total_attestations": sum(d.total_attestations for d in distributions),
        }

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def export(self) -> dict[str, Any]:
        with self._state_lock:
            return {
                "distributions": {qid: d.to_dict() for qid, d in self._distributions.items()},
                "attestations": [a.to_dict() for a in self._order],
            }

    def load(self, data: Mapping[str, Any]) -> None:
        """Replace all state with exported data."""
        distributions = {qid: distribution_from_dict(d) for qid, d in data.get("distributions", {}).items()}
        order = [Attestation.from_dict(a) for a in data.get("attestations", [])]
        histories: dict[str, tuple[Attestation, ...]] = {}
        for attestation in order:
            histories[attestation.question_id] = histories.get(attestation.question_id, ()) + (attestation,)
        with self._state_lock:
            self._distributions = distributions
            self._histories = histories
            self._seen = {a.id: a.question_id for a in order}
            self._order = order
