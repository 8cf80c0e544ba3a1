"""Convergence engine.

Convergence measures how settled a question's answer distribution is:

- MCQ: share of the most popular choice
- FRQ: ``max(0, 1 - std_dev / mean)`` (coefficient of variation)

Progressive quorum shrinks as convergence rises, so near-unanimous answers
resolve with fewer attestations than ambiguous ones.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime

from ..core.exceptions import ValidationException
from .models import (
    VALID_CHOICES,
    Attestation,
    FrqAnswer,
    FrqDistribution,
    McqAnswer,
    McqDistribution,
    QuestionDistribution,
    choice_for_digest,
    empty_distribution,
)

logger = logging.getLogger(__name__)

# =============================================================================
# THRESHOLDS
# =============================================================================

# (lower bound of convergence band, quorum required in that band)
QUORUM_BANDS: tuple[tuple[float, int], ...] = (
    (0.8, 3),
    (0.5, 4),
    (0.0, 5),
)
MIN_ATTESTATIONS_FOR_CONSENSUS = 2
FRQ_AGREEMENT_BAND = 0.5  # score distance from the mean still counted as agreement

ConsensusObserver = Callable[[QuestionDistribution], None]


# =============================================================================
# PURE FUNCTIONS
# =============================================================================


def convergence(distribution: QuestionDistribution) -> float:
    """Compute convergence in [0, 1] for a distribution."""
    if isinstance(distribution, McqDistribution):
        total = sum(distribution.choices.values())
        if total == 0:
            return 0.0
        return max(distribution.choices.values()) / total
    if isinstance(distribution, FrqDistribution):
        if not distribution.scores or distribution.mean == 0:
            return 0.0
        if distribution.std_dev == 0:
            return 1.0
        return max(0.0, 1.0 - distribution.std_dev / distribution.mean)
    raise TypeError(f"Unknown distribution type: {type(distribution).__name__}")


def _band(value: float) -> tuple[float, int]:
    for lower, quorum in QUORUM_BANDS:
        if value >= lower:
            return lower, quorum
    return QUORUM_BANDS[-1]


def progressive_quorum(value: float) -> int:
    """Attestations required for consensus at the given convergence.

    Examples:
        - 0.3 -> 5
        - 0.6 -> 4
        - 0.9 -> 3
    """
    return _band(value)[1]


def has_consensus(distribution: QuestionDistribution) -> bool:
    """True when the distribution meets the quorum of its convergence band."""
    total = distribution.total_attestations
    if total < MIN_ATTESTATIONS_FOR_CONSENSUS:
        return False
    lower, quorum = _band(distribution.convergence)
    return total >= quorum and distribution.convergence >= lower


def population_std_dev(scores: tuple[float, ...], mean: float) -> float:
    if len(scores) < 2:
        return 0.0
    return math.sqrt(sum((s - mean) ** 2 for s in scores) / len(scores))


def apply(
    distribution: QuestionDistribution | None,
    attestation: Attestation,
    now: datetime | None = None,
) -> QuestionDistribution:
    """Return a new distribution with the attestation folded in.

    Raises:
        ValidationException: if the attestation kind does not match the
            distribution, or the MCQ digest is not a known choice.
    """
    if distribution is None:
        distribution = empty_distribution(attestation.kind, attestation.question_id)
    if distribution.kind != attestation.kind:
        raise ValidationException(
            f"Attestation kind {attestation.kind.value} does not match "
            f"question {distribution.question_id} ({distribution.kind.value})",
            field="kind",
            value=attestation.kind.value,
        )

    updated_at = now or attestation.timestamp
    answer = attestation.answer
    updated: QuestionDistribution
    if isinstance(distribution, McqDistribution) and isinstance(answer, McqAnswer):
        choice = choice_for_digest(answer.digest)
        if choice is None:
            raise ValidationException("Digest does not match any valid choice", field="digest", value=answer.digest)
        choices = dict(distribution.choices)
        choices[choice] = choices.get(choice, 0) + 1
        updated = replace(
            distribution,
            choices=choices,
            total_attestations=distribution.total_attestations + 1,
            last_updated=updated_at,
        )
    elif isinstance(distribution, FrqDistribution) and isinstance(answer, FrqAnswer):
        scores = distribution.scores + (float(answer.score),)
        mean = sum(scores) / len(scores)
        updated = replace(
            distribution,
            scores=scores,
            mean=mean,
            std_dev=population_std_dev(scores, mean),
            total_attestations=distribution.total_attestations + 1,
            last_updated=updated_at,
        )
    else:
        raise TypeError(f"Unknown distribution type: {type(distribution).__name__}")

    updated = replace(updated, convergence=convergence(updated))
    return replace(updated, has_consensus=has_consensus(updated))


def recompute(distribution: QuestionDistribution) -> QuestionDistribution:
    """Recompute derived statistics from the raw counts or scores."""
    if isinstance(distribution, FrqDistribution):
        scores = distribution.scores
        mean = sum(scores) / len(scores) if scores else 0.0
        distribution = replace(
            distribution,
            mean=mean,
            std_dev=population_std_dev(scores, mean),
            total_attestations=len(scores),
        )
    elif isinstance(distribution, McqDistribution):
        distribution = replace(distribution, total_attestations=sum(distribution.choices.values()))
    else:
        raise TypeError(f"Unknown distribution type: {type(distribution).__name__}")
    distribution = replace(distribution, convergence=convergence(distribution))
    return replace(distribution, has_consensus=has_consensus(distribution))


# =============================================================================
# CONSENSUS ANSWERS
# =============================================================================


def consensus_answer(distribution: QuestionDistribution) -> str | float | None:
    """Majority choice (ties go to the earliest letter) or FRQ mean.

    Returns None when the question has not reached consensus.
    """
    if not distribution.has_consensus:
        return None
    if isinstance(distribution, McqDistribution):
        best = max(distribution.choices.values())
        for choice in VALID_CHOICES:
            if distribution.choices.get(choice, 0) == best:
                return choice
        return None
    if isinstance(distribution, FrqDistribution):
        return distribution.mean
    raise TypeError(f"Unknown distribution type: {type(distribution).__name__}")


def is_minority(attestation: Attestation, distribution: QuestionDistribution) -> bool:
    """True when the attestation is outside the majority choice or mean band."""
    answer = attestation.answer
    if isinstance(distribution, McqDistribution) and isinstance(answer, McqAnswer):
        choice = choice_for_digest(answer.digest)
        if choice is None or not distribution.choices:
            return False
        return distribution.choices.get(choice, 0) < max(distribution.choices.values())
    if isinstance(distribution, FrqDistribution) and isinstance(answer, FrqAnswer):
        return abs(answer.score - distribution.mean) > FRQ_AGREEMENT_BAND
    if distribution.kind != attestation.kind:
        return False
    raise TypeError(f"Unknown distribution type: {type(distribution).__name__}")


def agrees_with_consensus(attestation: Attestation, distribution: QuestionDistribution) -> bool:
    """True when the attestation matches the emergent answer."""
    answer = attestation.answer
    target = consensus_answer(distribution)
    if target is None:
        return False
    if isinstance(answer, McqAnswer):
        return choice_for_digest(answer.digest) == target
    if isinstance(answer, FrqAnswer):
        return abs(answer.score - float(target)) <= FRQ_AGREEMENT_BAND
    raise TypeError(f"Unknown answer variant: {type(answer).__name__}")


# =============================================================================
# ENGINE
# =============================================================================


class ConvergenceEngine:
    """Applies attestations to distributions and notifies consensus observers.

    Observers are called synchronously, once per question, when a
    distribution transitions into consensus. A failing observer is logged and
    does not affect the others or the ingestion that triggered it.
    """

    def __init__(self) -> None:
        self._observers: list[ConsensusObserver] = []
        self._lock = threading.Lock()

    def apply(
        self,
        distribution: QuestionDistribution | None,
        attestation: Attestation,
        now: datetime | None = None,
    ) -> QuestionDistribution:
        return apply(distribution, attestation, now)

    def subscribe(self, callback: ConsensusObserver) -> Callable[[], None]:
        """Register a consensus observer. Returns an unsubscribe function."""
        with self._lock:
            self._observers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._observers:
                    self._observers.remove(callback)

        return unsubscribe

    def notify_if_transitioned(
        self,
        previous: QuestionDistribution | None,
        current: QuestionDistribution,
    ) -> bool:
        """Invoke observers if ``current`` newly reached consensus.

        Returns:
            True if this update was the transition into consensus.
        """
        was_consensus = previous is not None and previous.has_consensus
        if was_consensus or not current.has_consensus:
            return False

        logger.info(
            f"Consensus reached on {current.question_id}: "
            f"convergence={current.convergence:.3f}, attestations={current.total_attestations}"
        )
        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                observer(current)
            except Exception as e:
                logger.error(f"Consensus observer failed for {current.question_id}: {e}", exc_info=True)
        return True
