"""Time decay applied to reward events.

Decay is applied to a single reward event by its age in days, never
retroactively to the ledger.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from ..core.config import ConsensusConfig, DecayKind
from .constants import ReputationConstants


class DecayFunction:
    """Maps (score, age in days) to a decayed score."""

    def factor(self, age_days: float) -> float:
        raise NotImplementedError

    def apply(self, score: float, age_days: float) -> float:
        return score * self.factor(max(0.0, age_days))


@dataclass(frozen=True)
class LinearDecay(DecayFunction):
    rate: float = ReputationConstants.LINEAR_DECAY_RATE

    def factor(self, age_days: float) -> float:
        return max(0.0, 1.0 - self.rate * age_days)


@dataclass(frozen=True)
class ExponentialDecay(DecayFunction):
    """``score * e^(-lambda * age_days)``."""

    lam: float = ReputationConstants.DECAY_LAMBDA

    def factor(self, age_days: float) -> float:
        return math.exp(-self.lam * age_days)


@dataclass(frozen=True)
class LogarithmicDecay(DecayFunction):
    """Slow decay: ``log(base) / log(age + 1)``, capped at 1."""

    base: float = ReputationConstants.LOGARITHMIC_BASE

    def factor(self, age_days: float) -> float:
        if age_days <= 1:
            return 1.0
        return min(1.0, math.log(self.base) / math.log(age_days + 1))


@dataclass(frozen=True)
class StepDecay(DecayFunction):
    """Drop a fixed share at each elapsed interval."""

    interval_days: float = ReputationConstants.STEP_INTERVAL_DAYS
    drop: float = ReputationConstants.STEP_DROP

    def factor(self, age_days: float) -> float:
        return (1.0 - self.drop) ** math.floor(age_days / self.interval_days)


@dataclass(frozen=True)
class GracePeriodDecay(DecayFunction):
    """No decay during the grace period, then ``inner`` on the remaining age."""

    inner: DecayFunction = ExponentialDecay()
    grace_days: float = ReputationConstants.GRACE_PERIOD_DAYS

    def factor(self, age_days: float) -> float:
        if age_days <= self.grace_days:
            return 1.0
        return self.inner.factor(age_days - self.grace_days)


def decay_from_config(config: ConsensusConfig) -> DecayFunction:
    """Build the configured decay function wrapped in its grace period."""
    inner: DecayFunction
    if config.decay_function == DecayKind.LINEAR:
        inner = LinearDecay()
    elif config.decay_function == DecayKind.EXPONENTIAL:
        inner = ExponentialDecay(lam=config.decay_lambda)
    elif config.decay_function == DecayKind.LOGARITHMIC:
        inner = LogarithmicDecay()
    elif config.decay_function == DecayKind.STEP:
        inner = StepDecay()
    else:
        raise TypeError(f"Unknown decay function: {config.decay_function}")
    if config.grace_period_days <= 0:
        return inner
    return GracePeriodDecay(inner=inner, grace_days=config.grace_period_days)
