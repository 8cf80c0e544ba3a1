# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Emergence Contributors

"""EmergenceCore: ingestion, scoring, reveals and invariants behind one object.

Ingestion order per attestation:

1. structural validation
2. under the question's write lock: duplicate and kind checks, identity,
   atomic rate-limit check-and-record
3. the distribution update, which may notify consensus observers
4. reputation crediting for every attestation of a question in consensus
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from ..consensus.anti_gaming import (
    CollusionReport,
    StrategyReport,
    SybilReport,
    detect_collusion,
    detect_gaming_strategies,
    detect_sybils,
)
from ..consensus.convergence import ConvergenceEngine, agrees_with_consensus
from ..consensus.distributions import DistributionTracker
from ..consensus.models import Attestation, QuestionDistribution
from ..consensus.outliers import detect_outliers, suspicion_score
from ..consensus.rate_limiter import RateLimiter
from ..invariants.checker import InvariantChecker
from ..invariants.monitor import InvariantMonitor
from ..invariants.types import InvariantReport, StateSnapshot
from ..reputation.calculator import ReputationCalculator
from ..reputation.decay import decay_from_config
from ..reputation.ledger import ReputationLedger
from ..reveal.gate import RevealGate
from ..reveal.models import RevealDecision, RevealRecord
from .config import ConsensusConfig
from .exceptions import (
    ConflictError,
    IntegrityError,
    NotFoundError,
    PersistenceError,
    RateLimitedError,
    ValidationException,
)
from .logging import attestation_logger
from .persistence import dump_state, load_state

logger = logging.getLogger(__name__)

IdentityPredicate = Callable[[str], bool]

# Rejection reason codes
REASON_INVALID = "invalid"
REASON_DUPLICATE = "duplicate"
REASON_KIND_MISMATCH = "kind_mismatch"
REASON_UNKNOWN_IDENTITY = "unknown_identity"
REASON_RATE_LIMITED = "rate_limited"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class IngestResult:
    """Outcome of ingesting one attestation."""

    accepted: bool
    attestation_id: str
    question_id: str
    attester_id: str
    distribution: QuestionDistribution | None = None
    reason: str | None = None
    message: str | None = None
    consensus_reached: bool = False
    retry_after_days: int | None = None

    def raise_for_status(self) -> None:
        """Raise the matching exception if the attestation was not accepted.

        Duplicates are not errors and do not raise.
        """
        if self.accepted or self.reason == REASON_DUPLICATE:
            return
        if self.reason == REASON_RATE_LIMITED:
            raise RateLimitedError(self.attester_id, self.question_id, self.retry_after_days or 0)
        if self.reason == REASON_KIND_MISMATCH:
            raise ConflictError(self.message or "Answer kind mismatch", existing_id=self.question_id)
        raise ValidationException(self.message or "Attestation rejected", field=self.reason)

    def to_dict(self) -> dict[str, Any]:
        return {
            "accepted": self.accepted,
            "attestation_id": self.attestation_id,
            "question_id": self.question_id,
            "attester_id": self.attester_id,
            "distribution": self.distribution.to_dict() if self.distribution else None,
            "reason": self.reason,
            "message": self.message,
            "consensus_reached": self.consensus_reached,
            "retry_after_days": self.retry_after_days,
        }


class EmergenceCore:
    """Single-process emergent consensus core."""

    def __init__(
        self,
        config: ConsensusConfig | None = None,
        identity_exists: IdentityPredicate | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.config = config or ConsensusConfig()
        self.identity_exists = identity_exists
        self._clock = clock

        self.engine = ConvergenceEngine()
        self.tracker = DistributionTracker(self.engine)
        self.rate_limiter = RateLimiter(self.config.rate_limit_window)
        self.ledger = ReputationLedger()
        self.calculator = ReputationCalculator(decay=decay_from_config(self.config))
        self.gate = RevealGate(self.config)
        self.checker = InvariantChecker(self.config)

        self.engine.subscribe(self._credit_question)
        self.engine.subscribe(self.gate.on_consensus)

    # =========================================================================
    # INGESTION
    # =========================================================================

    def _reject(
        self,
        attestation: Attestation,
        reason: str,
        message: str,
        retry_after_days: int | None = None,
    ) -> IngestResult:
        attestation_logger.log_event("rejected", attestation, level=logging.INFO, reason=reason)
        return IngestResult(
            accepted=False,
            attestation_id=attestation.id,
            question_id=attestation.question_id,
            attester_id=attestation.attester_id,
            distribution=self.tracker.distribution(attestation.question_id),
            reason=reason,
            message=message,
            retry_after_days=retry_after_days,
        )

    def ingest(self, attestation: Attestation, now: datetime | None = None) -> IngestResult:
        """Validate, rate-limit, record and score one attestation.

        Expected conditions (malformed input, duplicates, rate limits) are
        reported in the result rather than raised.
        """
        now = now or self._clock()
        try:
            attestation.validate()
        except ValidationException as e:
            return self._reject(attestation, REASON_INVALID, e.message)

        with self.tracker.question_lock(attestation.question_id):
            if self.tracker.contains(attestation.id):
                attestation_logger.log_event("duplicate", attestation)
                return IngestResult(
                    accepted=False,
                    attestation_id=attestation.id,
                    question_id=attestation.question_id,
                    attester_id=attestation.attester_id,
                    distribution=self.tracker.distribution(attestation.question_id),
                    reason=REASON_DUPLICATE,
                    message="Attestation already recorded",
                )

            existing_kind = self.tracker.kind_of(attestation.question_id)
            if existing_kind is not None and existing_kind != attestation.kind:
                return self._reject(
                    attestation,
                    REASON_KIND_MISMATCH,
                    f"Question {attestation.question_id} takes {existing_kind.value} answers",
                )

            if (
                self.identity_exists is not None
                and not attestation.is_system
                and not self.identity_exists(attestation.attester_id)
            ):
                return self._reject(
                    attestation, REASON_UNKNOWN_IDENTITY, f"Unknown attester {attestation.attester_id}"
                )

            rate = self.rate_limiter.check_and_record(
                attestation.attester_id, attestation.question_id, attestation.timestamp
            )
            if not rate.allowed:
                return self._reject(
                    attestation, REASON_RATE_LIMITED, rate.message or "Rate limited", rate.retry_after_days
                )

            self.ledger.note_attestation(attestation)
            result = self.tracker.record_with_result(attestation, now)

            distribution = result.distribution
            if distribution.has_consensus and not result.reached_consensus:
                self._credit(attestation, distribution, now)

        attestation_logger.log_event(
            "accepted",
            attestation,
            convergence=round(distribution.convergence, 4),
            consensus=distribution.has_consensus,
        )
        return IngestResult(
            accepted=True,
            attestation_id=attestation.id,
            question_id=attestation.question_id,
            attester_id=attestation.attester_id,
            distribution=distribution,
            consensus_reached=result.reached_consensus,
        )

    def ingest_many(self, attestations: list[Attestation], now: datetime | None = None) -> list[IngestResult]:
        return [self.ingest(a, now) for a in attestations]

    # =========================================================================
    # REPUTATION
    # =========================================================================

    def _credit(self, attestation: Attestation, distribution: QuestionDistribution, now: datetime) -> None:
        if self.ledger.is_credited(attestation.id):
            return
        stats = self.ledger.stats_for(attestation.attester_id, now, attestation.id)
        update = self.calculator.score(attestation, distribution, stats, now)
        self.ledger.credit(update, agrees_with_consensus(attestation, distribution))

    def _credit_question(self, distribution: QuestionDistribution) -> None:
        """Consensus observer: score every attestation recorded for the question."""
        now = distribution.last_updated or self._clock()
        history = self.tracker.history(distribution.question_id)
        for attestation in history:
            self._credit(attestation, distribution, now)
        logger.info(f"Credited {len(history)} attestation(s) on {distribution.question_id}")

    def reputation(self, attester_id: str) -> float:
        return self.ledger.total(attester_id)

    def leaderboard(self, limit: int = 10) -> list[tuple[str, float]]:
        return self.calculator.top_performers(self.ledger.totals(), limit)

    # =========================================================================
    # VIEWS
    # =========================================================================

    def distribution(self, question_id: str) -> QuestionDistribution | None:
        return self.tracker.distribution(question_id)

    def distributions(self) -> dict[str, QuestionDistribution]:
        return self.tracker.all_distributions()

    def reveal_history(self, question_id: str) -> list[RevealRecord]:
        return self.gate.history(question_id)

    # =========================================================================
    # REVEALS
    # =========================================================================

    def _require_distribution(self, question_id: str) -> QuestionDistribution:
        distribution = self.tracker.distribution(question_id)
        if distribution is None:
            raise NotFoundError("Question", question_id)
        return distribution

    def can_reveal(self, question_id: str, now: datetime | None = None) -> RevealDecision:
        return self.gate.can_reveal(self._require_distribution(question_id), now or self._clock())

    def reveal(self, question_id: str, now: datetime | None = None, signature: str | None = None) -> RevealRecord:
        """Release a hint for a question.

        Raises:
            NotFoundError: if the question has no attestations.
            RevealTooEarlyError: if the reveal guard is not met.
        """
        return self.gate.reveal(self._require_distribution(question_id), now or self._clock(), signature)

    # =========================================================================
    # ANTI-GAMING
    # =========================================================================

    def suspicion(self, attester_id: str) -> int:
        own = [a for a in self.tracker.attestations() if a.attester_id == attester_id]
        return suspicion_score(own, self.tracker.all_distributions())

    def gaming_report(self, attester_id: str) -> StrategyReport:
        own = [a for a in self.tracker.attestations() if a.attester_id == attester_id]
        return detect_gaming_strategies(attester_id, own)

    def flagged_attesters(self) -> list[str]:
        return detect_outliers(self.tracker.attestations())

    def collusion_report(self, users: list[str] | None = None) -> CollusionReport:
        attestations = self.tracker.attestations()
        if users is None:
            users = sorted({a.attester_id for a in attestations})
        return detect_collusion(users, attestations)

    def sybil_report(self) -> SybilReport:
        return detect_sybils(self.tracker.attestations())

    # =========================================================================
    # INVARIANTS
    # =========================================================================

    def snapshot(self, now: datetime | None = None) -> StateSnapshot:
        tracked = self.tracker.snapshot()
        return StateSnapshot(
            taken_at=now or self._clock(),
            distributions=tracked.distributions,
            attestations=tracked.attestations(),
            rate_limit_entries=self.rate_limiter.entries(),
            identity_exists=self.identity_exists,
            persistence_probe=self._persistence_probe,
        )

    def _persistence_probe(self) -> tuple[bytes, bytes]:
        exported = self.export_state()
        reloaded = EmergenceCore(self.config)
        reloaded.import_state(exported)
        return exported, reloaded.export_state()

    def check_invariants(self, now: datetime | None = None) -> InvariantReport:
        return self.checker.verify_all(self.snapshot(now))

    def assert_integrity(self, now: datetime | None = None) -> InvariantReport:
        """Run the invariant sweep and raise if any critical violation is found.

        Raises:
            IntegrityError: with the critical violations in ``details``.
        """
        report = self.check_invariants(now)
        critical = report.critical_violations
        if critical:
            raise IntegrityError(
                f"{len(critical)} critical invariant violation(s)",
                {"violations": [v.to_dict() for v in critical]},
            )
        return report

    def monitor(self, alert_on_violation: bool = True, auto_recover: bool = False) -> InvariantMonitor:
        """Build a background monitor over this core's snapshots."""
        return InvariantMonitor(
            self.checker,
            self.snapshot,
            self.config,
            alert_on_violation=alert_on_violation,
            auto_recover=auto_recover,
            clock=self._clock,
        )

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def export_state(self) -> bytes:
        return dump_state(
            {
                "distributions": self.tracker.export(),
                "rate_limits": self.rate_limiter.export(),
                "reputation": self.ledger.export(),
                "reveals": self.gate.export(),
            }
        )

    def import_state(self, blob: bytes | str) -> None:
        """Replace all state with a previously exported blob.

        Either every component is replaced or none is.

        Raises:
            PersistenceError: if the blob is malformed.
        """
        sections = load_state(blob)

        tracker = DistributionTracker(self.engine)
        rate_limiter = RateLimiter(self.config.rate_limit_window)
        ledger = ReputationLedger()
        gate = RevealGate(self.config)
        try:
            tracker.load(sections["distributions"])
            rate_limiter.load(sections["rate_limits"])
            ledger.load(sections["reputation"])
            gate.load(sections["reveals"])
        except (KeyError, TypeError, ValueError, AttributeError, ValidationException) as e:
            raise PersistenceError("State blob has malformed content", cause=str(e)) from e

        self.tracker.load(tracker.export())
        self.rate_limiter.load(rate_limiter.export())
        self.ledger.load(ledger.export())
        self.gate.load(gate.export())
        logger.info(f"Imported state: {len(tracker.all_distributions())} question(s)")
