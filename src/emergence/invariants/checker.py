"""Invariant checker.

Runs a fixed battery of checks over a ``StateSnapshot`` and compiles an
``InvariantReport``. A sweep either completes and records its violations, or
records nothing.
"""

from __future__ import annotations

import logging
import math
import threading
from collections import defaultdict, deque
from collections.abc import Callable
from datetime import timedelta

from ..consensus.convergence import convergence, progressive_quorum
from ..consensus.models import (
    MAX_CONFIDENCE,
    MAX_SCORE,
    MIN_CONFIDENCE,
    MIN_SCORE,
    FrqAnswer,
    FrqDistribution,
    McqAnswer,
    mcq_digest,
)
from ..consensus.outliers import MIN_SCORES_FOR_DETECTION, Z_SCORE_THRESHOLD
from ..core.config import ConsensusConfig
from .types import (
    CheckResult,
    CheckStatus,
    InvariantKind,
    InvariantReport,
    InvariantViolation,
    Severity,
    StateSnapshot,
)

logger = logging.getLogger(__name__)

CONVERGENCE_TOLERANCE = 0.01

ALL_PASSED_MESSAGE = "All invariants passed. System is operating correctly."
KIND_RECOMMENDATIONS: dict[InvariantKind, str] = {
    InvariantKind.TEMPORAL_ORDERING: "Synchronize system clocks across all nodes",
    InvariantKind.RATE_LIMITING: "Review and enforce rate limiting policies",
    InvariantKind.HASH_VALIDATION: "Verify cryptographic operations and hashing algorithms",
    InvariantKind.PERSISTENCE_INTEGRITY: "Check storage system and backup procedures",
}


class InvariantChecker:
    """Whole-system invariant verification."""

    def __init__(self, config: ConsensusConfig | None = None):
        self.config = config or ConsensusConfig()
        self._history: deque[InvariantViolation] = deque(maxlen=self.config.violation_history_size)
        self._lock = threading.Lock()

    def _violation(
        self,
        snapshot: StateSnapshot,
        kind: InvariantKind,
        severity: Severity,
        message: str,
        context: dict,
        location: str | None = None,
        suggestion: str | None = None,
    ) -> InvariantViolation:
        return InvariantViolation(
            kind=kind,
            severity=severity,
            message=message,
            timestamp=snapshot.taken_at,
            context=context,
            location=location,
            suggestion=suggestion,
        )

    # =========================================================================
    # CHECKS
    # =========================================================================

    def check_identity(self, snapshot: StateSnapshot) -> CheckResult:
        """Every non-system attester corresponds to a known identity."""
        kind = InvariantKind.IDENTITY
        if snapshot.identity_exists is None:
            return CheckResult(kind, CheckStatus.PASSED, warnings=["No identity registry configured"])

        violations = []
        for attestation in snapshot.attestations:
            if attestation.is_system or snapshot.identity_exists(attestation.attester_id):
                continue
            violations.append(
                self._violation(
                    snapshot,
                    kind,
                    Severity.HIGH,
                    f"Attestation from unknown identity: {attestation.attester_id}",
                    {"attestation": attestation.id, "attester_id": attestation.attester_id},
                    location=f"Attestation {attestation.id}",
                    suggestion="Ensure user profile exists before creating transactions",
                )
            )
        return CheckResult.from_violations(kind, violations, metadata={"total_attestations": len(snapshot.attestations)})

    def check_progressive_quorum(self, snapshot: StateSnapshot) -> CheckResult:
        """No question claims consensus with fewer attestations than its band requires."""
        kind = InvariantKind.PROGRESSIVE_QUORUM
        violations = []
        for question_id, dist in snapshot.distributions.items():
            required = progressive_quorum(dist.convergence)
            if dist.has_consensus and dist.total_attestations < required:
                violations.append(
                    self._violation(
                        snapshot,
                        kind,
                        Severity.CRITICAL,
                        f"Insufficient quorum: {dist.total_attestations} < {required} required",
                        {
                            "question_id": question_id,
                            "convergence": dist.convergence,
                            "attestations": dist.total_attestations,
                            "required": required,
                        },
                        location=f"Question {question_id}",
                        suggestion="Wait for more attestations before declaring consensus",
                    )
                )
        return CheckResult.from_violations(kind, violations, metadata={"total_questions": len(snapshot.distributions)})

    def check_confidence_bounds(self, snapshot: StateSnapshot) -> CheckResult:
        kind = InvariantKind.CONFIDENCE_BOUNDS
        violations = []
        for attestation in snapshot.attestations:
            if MIN_CONFIDENCE <= attestation.confidence <= MAX_CONFIDENCE:
                continue
            violations.append(
                self._violation(
                    snapshot,
                    kind,
                    Severity.MEDIUM,
                    f"Invalid confidence level: {attestation.confidence}",
                    {"attestation": attestation.id, "confidence": attestation.confidence},
                    location=f"Attestation {attestation.id}",
                    suggestion="Confidence must be between 1 and 5",
                )
            )
        return CheckResult.from_violations(kind, violations)

    def check_hash_validation(self, snapshot: StateSnapshot) -> CheckResult:
        """MCQ digests match the recomputed digest wherever the plaintext is known."""
        kind = InvariantKind.HASH_VALIDATION
        violations = []
        checked = 0
        for attestation in snapshot.attestations:
            answer = attestation.answer
            if not isinstance(answer, McqAnswer) or answer.choice is None:
                continue
            checked += 1
            computed = mcq_digest(answer.choice)
            if computed != answer.digest.lower():
                violations.append(
                    self._violation(
                        snapshot,
                        kind,
                        Severity.CRITICAL,
                        "MCQ answer hash mismatch",
                        {"attestation": attestation.id, "provided": answer.digest, "computed": computed},
                        location=f"Attestation {attestation.id}",
                        suggestion="Verify answer hashing algorithm",
                    )
                )
        return CheckResult.from_violations(kind, violations, metadata={"checked_mcq": checked})

    def check_frq_bounds(self, snapshot: StateSnapshot) -> CheckResult:
        kind = InvariantKind.FRQ_BOUNDS
        violations = []
        for attestation in snapshot.attestations:
            if not isinstance(attestation.answer, FrqAnswer):
                continue
            score = attestation.answer.score
            context = {"attestation": attestation.id, "score": score}
            location = f"Attestation {attestation.id}"
            if not MIN_SCORE <= score <= MAX_SCORE:
                violations.append(
                    self._violation(
                        snapshot,
                        kind,
                        Severity.HIGH,
                        f"FRQ score out of bounds: {score}",
                        context,
                        location=location,
                        suggestion="FRQ scores must be between 1 and 5",
                    )
                )
            if score % 0.5 != 0:
                violations.append(
                    self._violation(
                        snapshot,
                        kind,
                        Severity.MEDIUM,
                        f"Invalid FRQ score increment: {score}",
                        context,
                        location=location,
                        suggestion="FRQ scores must be whole or half points",
                    )
                )
        return CheckResult.from_violations(kind, violations)

    def check_temporal_ordering(self, snapshot: StateSnapshot) -> CheckResult:
        """Timestamps are strictly increasing and not beyond the clock-skew tolerance."""
        kind = InvariantKind.TEMPORAL_ORDERING
        violations = []
        ordered = sorted(snapshot.attestations, key=lambda a: a.timestamp)
        for prev, cur in zip(ordered, ordered[1:]):
            if cur.timestamp <= prev.timestamp:
                violations.append(
                    self._violation(
                        snapshot,
                        kind,
                        Severity.HIGH,
                        "Timestamps not in ascending order",
                        {
                            "previous": {"id": prev.id, "time": prev.timestamp.isoformat()},
                            "current": {"id": cur.id, "time": cur.timestamp.isoformat()},
                        },
                        location=f"Between attestations {prev.id} and {cur.id}",
                        suggestion="Ensure system clock is synchronized",
                    )
                )

        horizon = snapshot.taken_at + self.config.clock_skew_tolerance
        for attestation in ordered:
            if attestation.timestamp > horizon:
                violations.append(
                    self._violation(
                        snapshot,
                        kind,
                        Severity.CRITICAL,
                        "Attestation timestamp in future",
                        {"attestation": attestation.id, "timestamp": attestation.timestamp.isoformat()},
                        location=f"Attestation {attestation.id}",
                        suggestion="Check system clock settings",
                    )
                )
        return CheckResult.from_violations(kind, violations)

    def check_convergence_calculation(self, snapshot: StateSnapshot) -> CheckResult:
        kind = InvariantKind.CONVERGENCE_CALCULATION
        violations = []
        for question_id, dist in snapshot.distributions.items():
            expected = convergence(dist)
            if abs(dist.convergence - expected) > CONVERGENCE_TOLERANCE:
                violations.append(
                    self._violation(
                        snapshot,
                        kind,
                        Severity.HIGH,
                        f"{dist.kind.value.upper()} convergence calculation error",
                        {"question_id": question_id, "calculated": dist.convergence, "expected": expected},
                        location=f"Question {question_id}",
                        suggestion="Review convergence calculation algorithm",
                    )
                )
        return CheckResult.from_violations(kind, violations)

    def check_rate_limiting(self, snapshot: StateSnapshot) -> CheckResult:
        """No two attestations by one user on one question within the window."""
        kind = InvariantKind.RATE_LIMITING
        window = self.config.rate_limit_window
        last_seen = {}
        violations = []
        for attestation in sorted(snapshot.attestations, key=lambda a: a.timestamp):
            key = (attestation.attester_id, attestation.question_id)
            previous = last_seen.get(key)
            if previous is not None:
                elapsed = attestation.timestamp - previous
                if elapsed < window:
                    days_left = math.ceil((window - elapsed) / timedelta(days=1))
                    violations.append(
                        self._violation(
                            snapshot,
                            kind,
                            Severity.HIGH,
                            "Rate limit violation",
                            {
                                "attester_id": attestation.attester_id,
                                "question_id": attestation.question_id,
                                "seconds_since_last": elapsed.total_seconds(),
                                "required_seconds": window.total_seconds(),
                            },
                            location=f"Attestation {attestation.id}",
                            suggestion=f"Wait {days_left} more days",
                        )
                    )
            last_seen[key] = attestation.timestamp
        return CheckResult.from_violations(kind, violations)

    def check_outliers(self, snapshot: StateSnapshot) -> CheckResult:
        """Statistical outliers are reported as warnings only."""
        kind = InvariantKind.OUTLIER_DETECTION
        warnings = []
        for question_id, dist in snapshot.distributions.items():
            if not isinstance(dist, FrqDistribution) or len(dist.scores) < MIN_SCORES_FOR_DETECTION:
                continue
            if dist.std_dev == 0:
                continue
            for score in dist.scores:
                z_score = abs(score - dist.mean) / dist.std_dev
                if z_score > Z_SCORE_THRESHOLD:
                    warnings.append(f"Outlier detected: Question {question_id}, score {score} (z-score: {z_score:.2f})")
        return CheckResult(kind, CheckStatus.PASSED, warnings=warnings)

    def check_persistence_integrity(self, snapshot: StateSnapshot) -> CheckResult:
        """Loading an export and exporting again yields the same state."""
        kind = InvariantKind.PERSISTENCE_INTEGRITY
        if snapshot.persistence_probe is None:
            return CheckResult(kind, CheckStatus.PASSED, warnings=["No persistence probe configured"])
        try:
            exported, reloaded = snapshot.persistence_probe()
        except Exception as e:
            logger.error(f"Persistence probe failed: {e}", exc_info=True)
            violation = self._violation(
                snapshot,
                kind,
                Severity.HIGH,
                "Persistence test failed",
                {"error": str(e)},
                suggestion="Ensure the persistence boundary is available and working",
            )
            return CheckResult.from_violations(kind, [violation])

        violations = []
        if exported != reloaded:
            violations.append(
                self._violation(
                    snapshot,
                    kind,
                    Severity.CRITICAL,
                    "State persistence integrity check failed",
                    {},
                    suggestion="Check serialization/deserialization logic",
                )
            )
        return CheckResult.from_violations(kind, violations)

    def check_atomicity(self, snapshot: StateSnapshot) -> CheckResult:
        """No signal implemented; reported explicitly rather than as a pass."""
        return CheckResult(
            InvariantKind.ATOMICITY,
            CheckStatus.UNIMPLEMENTED,
            warnings=["Atomicity check: Ensure all critical functions are independently testable"],
        )

    # =========================================================================
    # SWEEP
    # =========================================================================

    def checks(self) -> list[tuple[InvariantKind, Callable[[StateSnapshot], CheckResult]]]:
        return [
            (InvariantKind.IDENTITY, self.check_identity),
            (InvariantKind.PROGRESSIVE_QUORUM, self.check_progressive_quorum),
            (InvariantKind.CONFIDENCE_BOUNDS, self.check_confidence_bounds),
            (InvariantKind.HASH_VALIDATION, self.check_hash_validation),
            (InvariantKind.FRQ_BOUNDS, self.check_frq_bounds),
            (InvariantKind.TEMPORAL_ORDERING, self.check_temporal_ordering),
            (InvariantKind.CONVERGENCE_CALCULATION, self.check_convergence_calculation),
            (InvariantKind.RATE_LIMITING, self.check_rate_limiting),
            (InvariantKind.OUTLIER_DETECTION, self.check_outliers),
            (InvariantKind.PERSISTENCE_INTEGRITY, self.check_persistence_integrity),
            (InvariantKind.ATOMICITY, self.check_atomicity),
        ]

    def verify_all(self, snapshot: StateSnapshot) -> InvariantReport:
        """Run every check and compile a report.

        Violations are appended to the bounded history only after every
        check has produced its result.
        """
        results: list[CheckResult] = []
        for kind, check in self.checks():
            try:
                results.append(check(snapshot))
            except Exception as e:
                logger.error(f"Invariant check {kind.value} raised: {e}", exc_info=True)
                violation = self._violation(
                    snapshot,
                    kind,
                    Severity.HIGH,
                    f"Invariant check {kind.value} could not complete",
                    {"error": str(e)},
                )
                results.append(CheckResult.from_violations(kind, [violation]))

        violations = [v for r in results for v in r.violations]
        report = InvariantReport(
            timestamp=snapshot.taken_at,
            results=results,
            violations=violations,
            recommendations=self.recommendations(violations),
        )

        with self._lock:
            self._history.extend(violations)

        for violation in report.critical_violations:
            logger.critical(f"Invariant violation [{violation.kind.value}]: {violation.message} {dict(violation.context)}")
        if report.failed:
            logger.warning(f"Invariant sweep: {report.failed} failed, {report.passed} passed")
        else:
            logger.debug(f"Invariant sweep: all {report.passed} checks passed")
        return report

    @staticmethod
    def recommendations(violations: list[InvariantViolation]) -> list[str]:
        if not violations:
            return [ALL_PASSED_MESSAGE]
        recommendations = []
        critical = sum(1 for v in violations if v.severity == Severity.CRITICAL)
        if critical:
            recommendations.append(f"Address {critical} critical violations immediately")
        kinds = {v.kind for v in violations}
        for kind, text in KIND_RECOMMENDATIONS.items():
            if kind in kinds:
                recommendations.append(text)
        return recommendations

    def violation_history(self) -> list[InvariantViolation]:
        with self._lock:
            return list(self._history)

    def violations_by_kind(self) -> dict[InvariantKind, list[InvariantViolation]]:
        grouped: dict[InvariantKind, list[InvariantViolation]] = defaultdict(list)
        for violation in self.violation_history():
            grouped[violation.kind].append(violation)
        return dict(grouped)

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()
