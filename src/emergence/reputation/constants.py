"""Constants for reputation calculations."""

from __future__ import annotations


class ReputationConstants:
    """Constants for reputation calculations."""

    # Base rewards
    BASE_REWARD = 1.0
    MINORITY_MULTIPLIER = 1.5
    CONFIDENCE_WEIGHT_STEP = 0.2  # confidence 1 -> 0.2x, 5 -> 1.0x

    # Bonuses
    EARLY_ADOPTER_BONUS = 1.2
    EARLY_ADOPTER_LIMIT = 10  # first N attestations overall
    CONSISTENCY_BONUS = 1.1
    CONSISTENCY_PARTICIPATION = 0.3  # share of days active since first attestation
    QUALITY_BONUS = 1.15
    QUALITY_THRESHOLD = 0.8
    STREAK_TIERS = ((10, 1.2), (5, 1.1), (3, 1.05))  # (min streak, multiplier), highest first

    # Decay
    DECAY_LAMBDA = 0.01  # per day
    LINEAR_DECAY_RATE = 0.01  # per day
    LOGARITHMIC_BASE = 2.0
    STEP_INTERVAL_DAYS = 30
    STEP_DROP = 0.1
    GRACE_PERIOD_DAYS = 7

    # Confidence
    DEFAULT_CONFIDENCE = 3
    ACCURACY_CONFIDENCE_TIERS = ((0.2, 1), (0.4, 2), (0.6, 3), (0.8, 4))  # (accuracy below, confidence)
    TREND_RECENT_SHARE = 0.2
    TREND_DELTA = 0.5
