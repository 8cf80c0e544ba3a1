"""Reputation calculation.

Rewards are paid only once a question has reached consensus:

    reward = BASE_REWARD x confidence_weight x (1.5 if minority else 1.0)

``ReputationCalculator.score`` then applies the attester's bonuses and the
configured decay to produce one reward event.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from ..consensus.convergence import is_minority
from ..consensus.models import Attestation, AttestationKind, QuestionDistribution
from .bonuses import AttesterStats, BonusSystem
from .confidence import confidence_weight
from .constants import ReputationConstants
from .decay import DecayFunction, ExponentialDecay, GracePeriodDecay

logger = logging.getLogger(__name__)


@dataclass
class ReputationUpdate:
    """One reward event for one attestation."""

    attester_id: str
    question_id: str
    attestation_id: str
    base_points: float
    minority_multiplier: float
    confidence_weight: float
    bonus_multiplier: float
    decay_factor: float
    final_score: float
    timestamp: datetime
    applied_bonuses: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "attester_id": self.attester_id,
            "question_id": self.question_id,
            "attestation_id": self.attestation_id,
            "base_points": self.base_points,
            "minority_multiplier": self.minority_multiplier,
            "confidence_weight": self.confidence_weight,
            "bonus_multiplier": self.bonus_multiplier,
            "decay_factor": self.decay_factor,
            "final_score": self.final_score,
            "timestamp": self.timestamp.isoformat(),
            "applied_bonuses": list(self.applied_bonuses),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ReputationUpdate:
        return cls(
            attester_id=data["attester_id"],
            question_id=data["question_id"],
            attestation_id=data["attestation_id"],
            base_points=float(data["base_points"]),
            minority_multiplier=float(data["minority_multiplier"]),
            confidence_weight=float(data["confidence_weight"]),
            bonus_multiplier=float(data["bonus_multiplier"]),
            decay_factor=float(data["decay_factor"]),
            final_score=float(data["final_score"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            applied_bonuses=list(data.get("applied_bonuses", [])),
        )


def minority_multiplier(minority: bool) -> float:
    return ReputationConstants.MINORITY_MULTIPLIER if minority else 1.0


class ReputationCalculator:
    """Confidence-weighted rewards with minority bonus, bonuses and decay."""

    def __init__(
        self,
        decay: DecayFunction | None = None,
        bonuses: BonusSystem | None = None,
    ):
        self.decay = decay or GracePeriodDecay(inner=ExponentialDecay())
        self.bonuses = bonuses or BonusSystem()

    def reward(self, attestation: Attestation, distribution: QuestionDistribution) -> float:
        """Base reward for an attestation; 0 until the question has consensus."""
        if not distribution.has_consensus:
            return 0.0
        return (
            ReputationConstants.BASE_REWARD
            * confidence_weight(attestation.confidence)
            * minority_multiplier(is_minority(attestation, distribution))
        )

    def score(
        self,
        attestation: Attestation,
        distribution: QuestionDistribution,
        stats: AttesterStats | None,
        now: datetime,
    ) -> ReputationUpdate:
        """Combine reward, bonuses and decay into one reward event."""
        base = self.reward(attestation, distribution)
        minority = is_minority(attestation, distribution) if distribution.has_consensus else False

        bonus_result = self.bonuses.apply_all(base, stats or AttesterStats())
        age_days = max(0.0, (now - attestation.timestamp) / timedelta(days=1))
        decay_factor = self.decay.factor(age_days)
        final = bonus_result.final_score * decay_factor

        logger.debug(
            f"Scored {attestation.id} for {attestation.attester_id}: base={base:.3f} "
            f"bonus={bonus_result.multiplier:.3f} decay={decay_factor:.3f} final={final:.3f}"
        )
        return ReputationUpdate(
            attester_id=attestation.attester_id,
            question_id=attestation.question_id,
            attestation_id=attestation.id,
            base_points=ReputationConstants.BASE_REWARD if distribution.has_consensus else 0.0,
            minority_multiplier=minority_multiplier(minority),
            confidence_weight=confidence_weight(attestation.confidence),
            bonus_multiplier=bonus_result.multiplier,
            decay_factor=decay_factor,
            final_score=final,
            timestamp=now,
            applied_bonuses=bonus_result.applied_bonuses,
        )

    @staticmethod
    def cumulative_score(updates: Sequence[ReputationUpdate]) -> float:
        return sum(u.final_score for u in updates)

    @staticmethod
    def breakdown(
        updates: Sequence[ReputationUpdate],
        distributions: Mapping[str, QuestionDistribution],
    ) -> dict[str, Any]:
        """Split reward totals by question kind."""
        mcq = 0.0
        frq = 0.0
        for update in updates:
            distribution = distributions.get(update.question_id)
            if distribution is None:
                continue
            if distribution.kind == AttestationKind.MCQ:
                mcq += update.final_score
            else:
                frq += update.final_score
        return {
            "mcq_score": mcq,
            "frq_score": frq,
            "total_score": mcq + frq,
            "questions_answered": len({u.question_id for u in updates}),
        }

    @staticmethod
    def top_performers(reputations: Mapping[str, float], limit: int = 10) -> list[tuple[str, float]]:
        ranked = sorted(reputations.items(), key=lambda item: item[1], reverse=True)
        return ranked[:limit]
