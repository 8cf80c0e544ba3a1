"""Convergence-gated reveal state machine.

Per question: ``Unrevealed -> Revealed(hint, convergence) -> Revealed(...)``.
A reveal requires enough convergence and attestations; a repeat reveal also
requires the cooldown to have elapsed and convergence to have shifted.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import Any, cast

from ..consensus.models import AttestationKind, QuestionDistribution
from ..core.config import ConsensusConfig
from ..core.exceptions import RevealTooEarlyError
from .hints import generate_hint
from .models import RevealDecision, RevealReason, RevealRecord

logger = logging.getLogger(__name__)

# Convergence values are ratios; a shift of exactly the minimum counts
SHIFT_TOLERANCE = 1e-9

SignatureValidator = Callable[[RevealRecord], bool]


class RevealGate:
    """Guards hint release per question and keeps the ordered reveal history."""

    def __init__(self, config: ConsensusConfig | None = None):
        self.config = config or ConsensusConfig()
        self._history: dict[str, list[RevealRecord]] = {}
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Guard
    # -------------------------------------------------------------------------

    def _check(
        self,
        question_id: str,
        convergence: float,
        total: int,
        now: datetime,
        previous: RevealRecord | None,
    ) -> RevealDecision:
        cfg = self.config
        if convergence < cfg.min_convergence_for_reveal - SHIFT_TOLERANCE:
            return RevealDecision(
                allowed=False,
                reason=RevealReason.CONVERGENCE_BELOW_THRESHOLD,
                message=f"Convergence {convergence:.2f} below threshold {cfg.min_convergence_for_reveal:.2f}",
                details={"convergence": convergence},
            )
        if total < cfg.min_attestations_for_reveal:
            return RevealDecision(
                allowed=False,
                reason=RevealReason.INSUFFICIENT_ATTESTATIONS,
                message=f"Only {total} attestations, need {cfg.min_attestations_for_reveal}",
                details={"total_attestations": total},
            )
        if previous is None:
            return RevealDecision(allowed=True)

        elapsed = now - previous.timestamp
        if elapsed < cfg.reveal_cooldown:
            return RevealDecision(
                allowed=False,
                reason=RevealReason.COOLDOWN_ACTIVE,
                message=f"Cooldown active for {question_id}: {cfg.reveal_cooldown - elapsed} remaining",
                details={"retry_after_seconds": (cfg.reveal_cooldown - elapsed).total_seconds()},
            )
        shift = abs(convergence - previous.convergence_at_reveal)
        if shift < cfg.reveal_min_shift - SHIFT_TOLERANCE:
            return RevealDecision(
                allowed=False,
                reason=RevealReason.INSUFFICIENT_SHIFT,
                message="Consensus has not shifted significantly since last reveal",
                details={"shift": shift},
            )
        return RevealDecision(allowed=True)

    def can_reveal(self, distribution: QuestionDistribution, now: datetime) -> RevealDecision:
        return self._check(
            distribution.question_id,
            distribution.convergence,
            distribution.total_attestations,
            now,
            self.last_reveal(distribution.question_id),
        )

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def reveal(
        self,
        distribution: QuestionDistribution,
        now: datetime,
        signature: str | None = None,
    ) -> RevealRecord:
        """Release a hint for the question.

        Raises:
            RevealTooEarlyError: if the guard is not met.
        """
        with self._lock:
            history = self._history.get(distribution.question_id, [])
            decision = self._check(
                distribution.question_id,
                distribution.convergence,
                distribution.total_attestations,
                now,
                history[-1] if history else None,
            )
            if not decision.allowed:
                reason = cast(RevealReason, decision.reason)
                raise RevealTooEarlyError(
                    distribution.question_id,
                    reason.value,
                    decision.message or "Reveal conditions not met",
                    decision.details,
                )
            record = RevealRecord(
                question_id=distribution.question_id,
                hint=generate_hint(distribution),
                convergence_at_reveal=distribution.convergence,
                total_attestations=distribution.total_attestations,
                kind=distribution.kind,
                timestamp=now,
                signature=signature,
            )
            self._history.setdefault(distribution.question_id, []).append(record)

        logger.info(f"Reveal created for {record.question_id} at convergence {record.convergence_at_reveal:.2f}")
        return record

    def verify(self, record: RevealRecord, signature_validator: SignatureValidator) -> bool:
        """Re-check a reveal against its predecessor and the signature predicate."""
        with self._lock:
            history = list(self._history.get(record.question_id, []))
        previous = None
        if record in history:
            index = history.index(record)
            previous = history[index - 1] if index > 0 else None
        elif history:
            previous = history[-1]

        decision = self._check(
            record.question_id,
            record.convergence_at_reveal,
            record.total_attestations,
            record.timestamp,
            previous,
        )
        if not decision.allowed:
            logger.warning(f"Reveal for {record.question_id} failed verification: {decision.reason}")
            return False
        if not signature_validator(record):
            logger.warning(f"Reveal for {record.question_id} has an invalid signature")
            return False
        return True

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    def history(self, question_id: str) -> list[RevealRecord]:
        with self._lock:
            return list(self._history.get(question_id, []))

    def last_reveal(self, question_id: str) -> RevealRecord | None:
        with self._lock:
            history = self._history.get(question_id)
            return history[-1] if history else None

    def has_been_revealed(self, question_id: str) -> bool:
        return self.last_reveal(question_id) is not None

    def time_until_reveal(self, question_id: str, now: datetime) -> timedelta:
        """Remaining cooldown for the question (zero if none)."""
        last = self.last_reveal(question_id)
        if last is None:
            return timedelta(0)
        return max(timedelta(0), self.config.reveal_cooldown - (now - last.timestamp))

    def opportunities(self, distributions: Mapping[str, QuestionDistribution], now: datetime) -> list[str]:
        """Questions that could be revealed right now."""
        ready = [qid for qid, d in distributions.items() if self.can_reveal(d, now).allowed]
        if ready:
            logger.info(f"Reveal opportunities: {', '.join(ready)}")
        return ready

    def on_consensus(self, distribution: QuestionDistribution) -> None:
        """Consensus observer that logs a reveal opportunity."""
        now = distribution.last_updated
        if now is not None and self.can_reveal(distribution, now).allowed:
            logger.info(
                f"Question {distribution.question_id} ready for reveal: "
                f"convergence={distribution.convergence:.2f}, attestations={distribution.total_attestations}"
            )

    def statistics(self) -> dict[str, Any]:
        with self._lock:
            records = [r for history in self._history.values() for r in history]
            covered = len(self._history)
        total = len(records)
        return {
            "total_reveals": total,
            "questions_covered": covered,
            "average_convergence_at_reveal": sum(r.convergence_at_reveal for r in records) / total if total else 0.0,
            "reveals_by_type": {kind.value: sum(1 for r in records if r.kind == kind) for kind in AttestationKind},
        }

    def export(self) -> dict[str, list[dict[str, Any]]]:
        with self._lock:
            return {qid: [r.to_dict() for r in history] for qid, history in self._history.items()}

    def load(self, data: Mapping[str, Any]) -> None:
        history = {qid: [RevealRecord.from_dict(r) for r in records] for qid, records in data.items()}
        with self._lock:
            self._history = history
