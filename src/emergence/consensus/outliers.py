"""Single-user outlier detection.

Statistical (z-score) and pattern-based flags for one attester's answers.
Everything here is advisory: flags feed downstream policy and never reject
an attestation.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .models import Attestation, FrqAnswer, FrqDistribution, McqDistribution, QuestionDistribution

logger = logging.getLogger(__name__)

# =============================================================================
# THRESHOLDS
# =============================================================================

Z_SCORE_THRESHOLD = 3.0
Z_SCORE_HIGH = 4.0
MIN_SCORES_FOR_DETECTION = 5
RAPID_FIRE_SECONDS = 5.0
RAPID_FIRE_RATIO = 0.5
COPY_PASTE_UNIQUENESS = 0.3
LEAST_POPULAR_RATIO = 0.8
MIN_CHOICES_FOR_PATTERN = 5
GAMING_MIN_ATTESTATIONS = 5  # more than this many, all at max confidence
MAX_CONFIDENCE = 5

REPEATING_SEQUENCES: tuple[tuple[str, ...], ...] = (
    ("A", "B", "C", "D", "E"),
    ("A", "A", "B", "B", "C"),
    ("A", "B", "A", "B", "A"),
)

# Suspicion score weights
RAPID_FIRE_PENALTY = 30
COPY_PASTE_PENALTY = 25
GAMING_PENALTY = 20
HIGH_OUTLIER_PENALTY = 15
MEDIUM_OUTLIER_PENALTY = 10
MAX_SUSPICION = 100


class OutlierSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class OutlierResult:
    """Outcome of one outlier check."""

    is_outlier: bool
    severity: OutlierSeverity = OutlierSeverity.LOW
    z_score: float | None = None
    reason: str | None = None
    suggestions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_outlier": self.is_outlier,
            "severity": self.severity.value,
            "z_score": self.z_score,
            "reason": self.reason,
            "suggestions": self.suggestions,
        }


# =============================================================================
# STATISTICAL CHECKS
# =============================================================================


def is_score_outlier(score: float, distribution: FrqDistribution) -> OutlierResult:
    """Z-score check of an FRQ score against its question's distribution.

    Never flags with fewer than 5 scores or a zero standard deviation.
    """
    if len(distribution.scores) < MIN_SCORES_FOR_DETECTION or distribution.std_dev == 0:
        return OutlierResult(is_outlier=False)

    z_score = abs(score - distribution.mean) / distribution.std_dev
    if z_score <= Z_SCORE_THRESHOLD:
        return OutlierResult(is_outlier=False, z_score=z_score)

    return OutlierResult(
        is_outlier=True,
        z_score=z_score,
        severity=OutlierSeverity.HIGH if z_score > Z_SCORE_HIGH else OutlierSeverity.MEDIUM,
        reason=f"Score {score:g} is {z_score:.1f} standard deviations from mean",
        suggestions=[
            "Review scoring criteria",
            "Check for misunderstanding of question",
            "Verify attestation is genuine",
        ],
    )


def matches_sequence(choices: Sequence[str], sequence: Sequence[str]) -> bool:
    """True if ``choices`` follow ``sequence`` repeated from the start."""
    if len(choices) < len(sequence):
        return False
    return all(choice == sequence[i % len(sequence)] for i, choice in enumerate(choices))


def has_repetitive_pattern(choices: Sequence[str]) -> bool:
    if len(choices) < MIN_CHOICES_FOR_PATTERN:
        return False
    if len(set(choices)) == 1:
        return True
    return any(matches_sequence(choices, seq) for seq in REPEATING_SEQUENCES)


def is_choice_pattern_suspicious(user_choices: Sequence[str], distribution: McqDistribution) -> OutlierResult:
    """Flag users who mostly pick the least popular choice or answer by rote."""
    if not user_choices:
        return OutlierResult(is_outlier=False)

    if distribution.choices:
        min_count = min(distribution.choices.values())
        least_popular = sum(1 for c in user_choices if distribution.choices.get(c) == min_count)
        if least_popular / len(user_choices) > LEAST_POPULAR_RATIO:
            return OutlierResult(
                is_outlier=True,
                severity=OutlierSeverity.MEDIUM,
                reason="Consistently choosing unpopular answers",
                suggestions=["May be gaming for minority bonus"],
            )

    if has_repetitive_pattern(user_choices):
        return OutlierResult(
            is_outlier=True,
            severity=OutlierSeverity.LOW,
            reason="Repetitive answer pattern detected",
            suggestions=["Answers appear to follow a pattern rather than question content"],
        )

    return OutlierResult(is_outlier=False)


# =============================================================================
# BEHAVIOURAL FLAGS
# =============================================================================


def frq_texts(attestations: Sequence[Attestation]) -> list[str]:
    return [a.answer.text for a in attestations if isinstance(a.answer, FrqAnswer)]


def uniqueness_ratio(texts: Sequence[str]) -> float:
    return len(set(texts)) / len(texts) if texts else 1.0


def has_rapid_fire(attestations: Sequence[Attestation]) -> bool:
    """At least half of consecutive gaps are under 5 seconds."""
    if len(attestations) < 2:
        return False
    ordered = sorted(attestations, key=lambda a: a.timestamp)
    gaps = [(b.timestamp - a.timestamp).total_seconds() for a, b in zip(ordered, ordered[1:])]
    rapid = sum(1 for gap in gaps if gap < RAPID_FIRE_SECONDS)
    return rapid >= len(gaps) * RAPID_FIRE_RATIO


def has_copy_paste(attestations: Sequence[Attestation]) -> bool:
    """Fewer than 30% of free-text responses are unique."""
    texts = frq_texts(attestations)
    if len(texts) < 2:
        return False
    return uniqueness_ratio(texts) < COPY_PASTE_UNIQUENESS


def has_gaming_pattern(attestations: Sequence[Attestation]) -> bool:
    """Always maximum confidence across more than 5 attestations."""
    if len(attestations) <= GAMING_MIN_ATTESTATIONS:
        return False
    return all(a.confidence == MAX_CONFIDENCE for a in attestations)


def group_by_attester(attestations: Sequence[Attestation]) -> dict[str, list[Attestation]]:
    grouped: dict[str, list[Attestation]] = defaultdict(list)
    for attestation in attestations:
        grouped[attestation.attester_id].append(attestation)
    return grouped


def detect_outliers(attestations: Sequence[Attestation]) -> list[str]:
    """Attester ids flagged by any behavioural check."""
    flagged = []
    for attester_id, own in group_by_attester(attestations).items():
        if has_rapid_fire(own) or has_copy_paste(own) or has_gaming_pattern(own):
            flagged.append(attester_id)
    if flagged:
        logger.info(f"Behavioural outliers flagged: {len(flagged)} attester(s)")
    return flagged


def suspicion_score(
    user_attestations: Sequence[Attestation],
    distributions: Mapping[str, QuestionDistribution],
) -> int:
    """Combine behavioural and statistical flags into a score in [0, 100]."""
    score = 0
    if has_rapid_fire(user_attestations):
        score += RAPID_FIRE_PENALTY
    if has_copy_paste(user_attestations):
        score += COPY_PASTE_PENALTY
    if has_gaming_pattern(user_attestations):
        score += GAMING_PENALTY

    for attestation in user_attestations:
        distribution = distributions.get(attestation.question_id)
        if not isinstance(distribution, FrqDistribution) or not isinstance(attestation.answer, FrqAnswer):
            continue
        result = is_score_outlier(attestation.answer.score, distribution)
        if result.is_outlier:
            score += HIGH_OUTLIER_PENALTY if result.severity == OutlierSeverity.HIGH else MEDIUM_OUTLIER_PENALTY

    return min(MAX_SUSPICION, score)
