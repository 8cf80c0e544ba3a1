"""Invariant types, violations and reports."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..consensus.models import Attestation, QuestionDistribution
from ..consensus.rate_limiter import RateLimitEntry


class InvariantKind(str, Enum):
    IDENTITY = "identity"
    PROGRESSIVE_QUORUM = "progressive_quorum"
    CONFIDENCE_BOUNDS = "confidence_bounds"
    HASH_VALIDATION = "hash_validation"
    FRQ_BOUNDS = "frq_bounds"
    TEMPORAL_ORDERING = "temporal_ordering"
    CONVERGENCE_CALCULATION = "convergence_calculation"
    RATE_LIMITING = "rate_limiting"
    OUTLIER_DETECTION = "outlier_detection"
    PERSISTENCE_INTEGRITY = "persistence_integrity"
    ATOMICITY = "atomicity"
    VIEW_STATE = "view_state"  # reported by hosts, never checked by the core


# Kinds whose violations may be repaired automatically by host recovery hooks
SOFT_KINDS: frozenset[InvariantKind] = frozenset({InvariantKind.PERSISTENCE_INTEGRITY, InvariantKind.VIEW_STATE})

# Kinds that are never repaired automatically
DATA_INTEGRITY_KINDS: frozenset[InvariantKind] = frozenset(
    {InvariantKind.HASH_VALIDATION, InvariantKind.FRQ_BOUNDS, InvariantKind.PROGRESSIVE_QUORUM}
)


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class CheckStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    UNIMPLEMENTED = "unimplemented"


@dataclass(frozen=True)
class InvariantViolation:
    kind: InvariantKind
    severity: Severity
    message: str
    timestamp: datetime
    context: Mapping[str, Any] = field(default_factory=dict)
    location: str | None = None
    suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "context": dict(self.context),
            "location": self.location,
            "suggestion": self.suggestion,
        }


@dataclass
class CheckResult:
    kind: InvariantKind
    status: CheckStatus
    violations: list[InvariantViolation] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.status == CheckStatus.PASSED

    @classmethod
    def from_violations(
        cls,
        kind: InvariantKind,
        violations: list[InvariantViolation],
        warnings: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> CheckResult:
        return cls(
            kind=kind,
            status=CheckStatus.FAILED if violations else CheckStatus.PASSED,
            violations=violations,
            warnings=warnings or [],
            metadata=metadata or {},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "status": self.status.value,
            "passed": self.passed,
            "violations": [v.to_dict() for v in self.violations],
            "warnings": self.warnings,
            "metadata": self.metadata,
        }


@dataclass
class InvariantReport:
    timestamp: datetime
    results: list[CheckResult]
    violations: list[InvariantViolation]
    recommendations: list[str]

    @property
    def total_checks(self) -> int:
        return len(self.results)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.status == CheckStatus.PASSED)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.status == CheckStatus.FAILED)

    @property
    def unimplemented(self) -> int:
        return sum(1 for r in self.results if r.status == CheckStatus.UNIMPLEMENTED)

    @property
    def critical_violations(self) -> list[InvariantViolation]:
        return [v for v in self.violations if v.severity == Severity.CRITICAL]

    @property
    def warnings(self) -> list[str]:
        return [w for r in self.results for w in r.warnings]

    @property
    def by_kind(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for violation in self.violations:
            counts[violation.kind.value] = counts.get(violation.kind.value, 0) + 1
        return counts

    @property
    def by_severity(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for violation in self.violations:
            counts[violation.severity.value] = counts.get(violation.severity.value, 0) + 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "total_checks": self.total_checks,
            "passed": self.passed,
            "failed": self.failed,
            "unimplemented": self.unimplemented,
            "violations": [v.to_dict() for v in self.violations],
            "critical_violations": len(self.critical_violations),
            "summary": {"by_kind": self.by_kind, "by_severity": self.by_severity},
            "warnings": self.warnings,
            "recommendations": self.recommendations,
            "results": [r.to_dict() for r in self.results],
        }


PersistenceProbe = Callable[[], tuple[Any, Any]]


@dataclass(frozen=True)
class StateSnapshot:
    """Read-only view of the whole state graph for one invariant sweep.

    ``persistence_probe`` returns ``(exported, reloaded_then_exported)``; the
    two must be equal.
    """

    taken_at: datetime
    distributions: Mapping[str, QuestionDistribution] = field(default_factory=dict)
    attestations: Sequence[Attestation] = ()
    rate_limit_entries: Sequence[RateLimitEntry] = ()
    identity_exists: Callable[[str], bool] | None = None
    persistence_probe: PersistenceProbe | None = None
