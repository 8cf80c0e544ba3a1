"""Attestations, distributions, convergence and anti-gaming detection."""

from .convergence import (
    ConvergenceEngine,
    consensus_answer,
    convergence,
    has_consensus,
    progressive_quorum,
)
from .distributions import DistributionTracker, RecordResult
from .models import (
    Attestation,
    AttestationKind,
    FrqAnswer,
    FrqDistribution,
    McqAnswer,
    McqDistribution,
    QuestionDistribution,
    mcq_digest,
)
from .rate_limiter import RateLimiter, RateLimitResult

__all__ = [
    "Attestation",
    "AttestationKind",
    "ConvergenceEngine",
    "DistributionTracker",
    "FrqAnswer",
    "FrqDistribution",
    "McqAnswer",
    "McqDistribution",
    "QuestionDistribution",
    "RateLimitResult",
    "RateLimiter",
    "RecordResult",
    "consensus_answer",
    "convergence",
    "has_consensus",
    "mcq_digest",
    "progressive_quorum",
]
