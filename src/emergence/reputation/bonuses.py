"""Multiplicative reputation bonuses.

Bonuses are independent and stack: early adopter, consistency, quality and
streak.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .constants import ReputationConstants


@dataclass
class AttesterStats:
    """Per-attester statistics consumed by the bonus system."""

    attestation_count: int = 0
    days_active: int = 0
    total_days: int = 0
    correct_count: int = 0
    scored_count: int = 0
    streak: int = 0


@dataclass
class BonusResult:
    final_score: float
    applied_bonuses: list[str] = field(default_factory=list)
    multiplier: float = 1.0


def early_adopter_bonus(attestation_count: int) -> float:
    if attestation_count <= ReputationConstants.EARLY_ADOPTER_LIMIT:
        return ReputationConstants.EARLY_ADOPTER_BONUS
    return 1.0


def consistency_bonus(days_active: int, total_days: int) -> float:
    if total_days <= 0:
        return 1.0
    if days_active / total_days > ReputationConstants.CONSISTENCY_PARTICIPATION:
        return ReputationConstants.CONSISTENCY_BONUS
    return 1.0


def quality_bonus(correct_count: int, total_count: int) -> float:
    if total_count <= 0:
        return 1.0
    if correct_count / total_count >= ReputationConstants.QUALITY_THRESHOLD:
        return ReputationConstants.QUALITY_BONUS
    return 1.0


def streak_bonus(streak: int) -> float:
    """1.0 below 3, then 1.05 / 1.1 / 1.2 at 3 / 5 / 10."""
    for minimum, multiplier in ReputationConstants.STREAK_TIERS:
        if streak >= minimum:
            return multiplier
    return 1.0


class BonusSystem:
    """Applies every bonus an attester qualifies for."""

    def apply_all(self, base_score: float, stats: AttesterStats) -> BonusResult:
        """Return the boosted score and a label per applied bonus.

        Labels read like ``"Early Adopter: 20%"``.
        """
        bonuses = (
            ("Early Adopter", early_adopter_bonus(stats.attestation_count)),
            ("Consistency", consistency_bonus(stats.days_active, stats.total_days)),
            ("Quality", quality_bonus(stats.correct_count, stats.scored_count)),
            ("Streak", streak_bonus(stats.streak)),
        )
        multiplier = 1.0
        applied = []
        for label, bonus in bonuses:
            if bonus > 1.0:
                multiplier *= bonus
                applied.append(f"{label}: {(bonus - 1) * 100:.0f}%")
        return BonusResult(final_score=base_score * multiplier, applied_bonuses=applied, multiplier=multiplier)
