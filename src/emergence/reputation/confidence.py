"""Confidence calibration for attesters."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from .constants import ReputationConstants


class ConfidenceTrend(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


@dataclass(frozen=True)
class ConfidenceSample:
    """One scored attestation: stated confidence and whether it matched consensus."""

    confidence: int
    was_correct: bool
    timestamp: datetime | None = None


@dataclass
class TrendResult:
    trend: ConfidenceTrend
    average_confidence: float
    recent_confidence: float


def confidence_weight(confidence: int) -> float:
    """Linear mapping 1 -> 0.2 ... 5 -> 1.0."""
    return confidence * ReputationConstants.CONFIDENCE_WEIGHT_STEP


class ConfidenceSystem:
    """Derives and audits attester confidence from accuracy history."""

    def user_confidence(self, correct_count: int, total_count: int) -> int:
        """Map historical accuracy onto the 1-5 confidence scale."""
        if total_count <= 0:
            return ReputationConstants.DEFAULT_CONFIDENCE
        accuracy = correct_count / total_count
        for below, confidence in ReputationConstants.ACCURACY_CONFIDENCE_TIERS:
            if accuracy < below:
                return confidence
        return 5

    def adjust_for_difficulty(self, base_confidence: float, convergence: float) -> float:
        """Boost confidence impact on harder (lower convergence) questions, within 1-5."""
        adjusted = base_confidence * (1 + (1 - convergence) * 0.5)
        return min(5.0, max(1.0, adjusted))

    def suggest_confidence(self, accuracy: float, difficulty: float) -> int:
        suggested = round(accuracy * 5)
        if difficulty > 0.7:
            suggested = max(1, suggested - 1)
        elif difficulty < 0.3:
            suggested = min(5, suggested + 1)
        return max(1, min(5, suggested))

    def calibration_score(self, samples: Sequence[ConfidenceSample]) -> float:
        """``1 - weighted |confidence/5 - accuracy|`` over confidence levels.

        Returns 0 for an empty history.
        """
        if not samples:
            return 0.0
        groups: dict[int, list[int]] = {}
        for sample in samples:
            correct_total = groups.setdefault(sample.confidence, [0, 0])
            correct_total[1] += 1
            if sample.was_correct:
                correct_total[0] += 1

        total_error = 0.0
        total_weight = 0
        for confidence, (correct, total) in groups.items():
            error = abs(confidence / 5 - correct / total)
            total_error += error * total
            total_weight += total
        return max(0.0, 1.0 - total_error / total_weight)

    def trend(self, samples: Sequence[ConfidenceSample]) -> TrendResult:
        """Compare the most recent 20% of confidences against the overall average."""
        if not samples:
            default = float(ReputationConstants.DEFAULT_CONFIDENCE)
            return TrendResult(ConfidenceTrend.STABLE, default, default)

        ordered = list(samples)
        if all(s.timestamp is not None for s in ordered):
            ordered.sort(key=lambda s: s.timestamp)
        average = sum(s.confidence for s in ordered) / len(ordered)
        recent_count = max(1, int(len(ordered) * ReputationConstants.TREND_RECENT_SHARE))
        recent = sum(s.confidence for s in ordered[-recent_count:]) / recent_count

        difference = recent - average
        if difference > ReputationConstants.TREND_DELTA:
            trend = ConfidenceTrend.IMPROVING
        elif difference < -ReputationConstants.TREND_DELTA:
            trend = ConfidenceTrend.DECLINING
        else:
            trend = ConfidenceTrend.STABLE
        return TrendResult(trend=trend, average_confidence=average, recent_confidence=recent)
