"""Tests for emergence.core.engine - EmergenceCore ingestion, scoring, reveals and persistence."""

from __future__ import annotations

import json

import pytest
from conftest import FixedClock, at, make_frq, make_mcq

from emergence.core.config import ConsensusConfig
from emergence.core.engine import (
    REASON_DUPLICATE,
    REASON_INVALID,
    REASON_KIND_MISMATCH,
    REASON_RATE_LIMITED,
    REASON_UNKNOWN_IDENTITY,
    EmergenceCore,
)
from emergence.core.exceptions import (
    ConflictError,
    IntegrityError,
    NotFoundError,
    PersistenceError,
    RateLimitedError,
    RevealTooEarlyError,
    ValidationException,
)
from emergence.core.persistence import SCHEMA_VERSION
from emergence.invariants.monitor import InvariantMonitor
from emergence.invariants.types import CheckStatus, InvariantKind


@pytest.fixture
def core(clock) -> EmergenceCore:
    return EmergenceCore(clock=clock)


def _ingest_choices(core: EmergenceCore, question_id: str, choices: str, start: int = 0):
    """Ingest one attestation per letter, from distinct attesters, a minute apart."""
    results = []
    for i, choice in enumerate(choices):
        att = make_mcq(question_id, f"user{i}", choice, timestamp=at(start + i))
        results.append(core.ingest(att, now=at(start + i)))
    return results


# ============================================================================
# Ingestion
# ============================================================================


class TestIngest:
    def test_accepts_valid_attestation(self, core):
        result = core.ingest(make_mcq("q1", "alice", "A"), now=at())
        assert result.accepted
        assert result.reason is None
        assert result.distribution.total_attestations == 1
        assert core.distribution("q1").choices["A"] == 1
        result.raise_for_status()

    def test_invalid_attestation_rejected(self, core):
        result = core.ingest(make_mcq("q1", "alice", "A", confidence=9), now=at())
        assert not result.accepted
        assert result.reason == REASON_INVALID
        assert core.distribution("q1") is None
        with pytest.raises(ValidationException):
            result.raise_for_status()

    def test_invalid_attestation_not_rate_limited(self, core):
        core.ingest(make_mcq("q1", "alice", "A", confidence=0), now=at())
        assert core.ingest(make_mcq("q1", "alice", "A"), now=at()).accepted

    def test_duplicate_is_idempotent(self, core):
        att = make_mcq("q1", "alice", "A")
        core.ingest(att, now=at())
        result = core.ingest(att, now=at(1))
        assert not result.accepted
        assert result.reason == REASON_DUPLICATE
        assert result.distribution.total_attestations == 1
        assert core.rate_limiter.entries()[0].attempt_count == 1
        result.raise_for_status()

    def test_kind_mismatch(self, core):
        core.ingest(make_mcq("q1", "alice", "A"), now=at())
        result = core.ingest(make_frq("q1", "bob", 3.0), now=at())
        assert result.reason == REASON_KIND_MISMATCH
        assert core.distribution("q1").total_attestations == 1
        with pytest.raises(ConflictError):
            result.raise_for_status()

    def test_rate_limited_within_window(self, core):
        core.ingest(make_mcq("q1", "alice", "A", timestamp=at()), now=at())
        result = core.ingest(make_mcq("q1", "alice", "B", timestamp=at(days=1)), now=at(days=1))
        assert result.reason == REASON_RATE_LIMITED
        assert result.retry_after_days == 29
        assert result.message == "Wait 29 days before re-attesting"
        with pytest.raises(RateLimitedError) as exc_info:
            result.raise_for_status()
        assert exc_info.value.retry_after_days == 29

    def test_reattest_after_window(self, core):
        core.ingest(make_mcq("q1", "alice", "A", timestamp=at()), now=at())
        result = core.ingest(make_mcq("q1", "alice", "B", timestamp=at(days=30)), now=at(days=30))
        assert result.accepted
        assert core.distribution("q1").total_attestations == 2

    def test_other_question_not_rate_limited(self, core):
        core.ingest(make_mcq("q1", "alice", "A"), now=at())
        assert core.ingest(make_mcq("q2", "alice", "A"), now=at()).accepted

    def test_ingest_many(self, core):
        atts = [make_mcq("q1", f"u{i}", "A", timestamp=at(i)) for i in range(3)]
        results = core.ingest_many(atts, now=at(5))
        assert [r.accepted for r in results] == [True, True, True]

    def test_default_now_comes_from_clock(self, clock):
        core = EmergenceCore(clock=clock)
        result = core.ingest(make_mcq("q1", "alice", "A"))
        assert result.distribution.last_updated == clock.now

    def test_to_dict(self, core):
        data = core.ingest(make_mcq("q1", "alice", "A"), now=at()).to_dict()
        assert data["accepted"] is True
        assert data["distribution"]["kind"] == "mcq"
        json.dumps(data)


class TestIdentity:
    @pytest.fixture
    def core(self, clock):
        known = {"alice"}
        return EmergenceCore(identity_exists=known.__contains__, clock=clock)

    def test_known_identity_accepted(self, core):
        assert core.ingest(make_mcq("q1", "alice", "A"), now=at()).accepted

    def test_unknown_identity_rejected(self, core):
        result = core.ingest(make_mcq("q1", "mallory", "A"), now=at())
        assert result.reason == REASON_UNKNOWN_IDENTITY
        assert core.rate_limiter.entries() == []

    def test_system_attester_exempt(self, core):
        assert core.ingest(make_mcq("q1", "system:seed", "A"), now=at()).accepted


# ============================================================================
# Consensus and reputation
# ============================================================================


class TestConsensusCrediting:
    def test_no_reward_before_consensus(self, core):
        _ingest_choices(core, "q1", "AB")
        assert core.reputation("user0") == 0.0
        assert core.reputation("user1") == 0.0

    def test_transition_credits_every_attestation(self, core):
        results = _ingest_choices(core, "q1", "AAA")
        assert [r.consensus_reached for r in results] == [False, False, True]
        for user in ("user0", "user1", "user2"):
            assert core.reputation(user) > 0

    def test_late_attestation_credited_on_arrival(self, core):
        _ingest_choices(core, "q1", "AAA")
        result = core.ingest(make_mcq("q1", "dave", "B", timestamp=at(10)), now=at(10))
        assert result.distribution.has_consensus
        assert not result.consensus_reached
        update = core.ledger.updates("dave")[0]
        assert update.minority_multiplier == 1.5
        assert core.reputation("dave") > 0

    def test_each_attestation_credited_once(self, core):
        _ingest_choices(core, "q1", "AAAA")
        assert len(core.ledger.updates()) == 4

    def test_leaderboard_sorted(self, core):
        _ingest_choices(core, "q1", "AAA")
        board = core.leaderboard(limit=2)
        assert len(board) == 2
        assert board[0][1] >= board[1][1]


# ============================================================================
# Reveals
# ============================================================================


class TestReveals:
    def test_unknown_question(self, core):
        with pytest.raises(NotFoundError):
            core.can_reveal("missing", now=at())
        with pytest.raises(NotFoundError):
            core.reveal("missing", now=at())

    def test_not_enough_attestations(self, core):
        _ingest_choices(core, "q1", "AAA")
        decision = core.can_reveal("q1", now=at(10))
        assert not decision.allowed
        with pytest.raises(RevealTooEarlyError) as exc_info:
            core.reveal("q1", now=at(10))
        assert exc_info.value.reason == "insufficient_attestations"

    def test_reveal_then_cooldown(self, core):
        _ingest_choices(core, "q1", "AAABC")
        record = core.reveal("q1", now=at(10), signature="sig")
        assert record.convergence_at_reveal == pytest.approx(0.6)
        assert record.signature == "sig"
        assert core.reveal_history("q1") == [record]

        with pytest.raises(RevealTooEarlyError) as exc_info:
            core.reveal("q1", now=at(20))
        assert exc_info.value.reason == "cooldown_active"


# ============================================================================
# Invariants
# ============================================================================


class TestInvariants:
    def test_clean_state_passes(self, core):
        _ingest_choices(core, "q1", "AAABC")
        report = core.check_invariants(now=at(60))
        assert report.failed == 0
        assert report.critical_violations == []
        statuses = {r.kind: r.status for r in report.results}
        assert statuses[InvariantKind.ATOMICITY] == CheckStatus.UNIMPLEMENTED
        assert statuses[InvariantKind.PERSISTENCE_INTEGRITY] == CheckStatus.PASSED

    def test_assert_integrity_passes_on_clean_state(self, core):
        _ingest_choices(core, "q1", "AB")
        assert core.assert_integrity(now=at(60)).failed == 0

    def test_assert_integrity_raises_on_forged_consensus(self, core):
        forged = {
            "schema_version": SCHEMA_VERSION,
            "distributions": {
                "distributions": {
                    "q1": {
                        "kind": "mcq",
                        "question_id": "q1",
                        "choices": {"A": 2, "B": 0, "C": 0, "D": 0, "E": 0},
                        "total_attestations": 2,
                        "convergence": 1.0,
                        "has_consensus": True,
                        "last_updated": None,
                    }
                },
                "attestations": [],
            },
            "rate_limits": [],
            "reputation": {"records": [], "positions": {}, "updates": []},
            "reveals": {},
        }
        core.import_state(json.dumps(forged))
        with pytest.raises(IntegrityError) as exc_info:
            core.assert_integrity(now=at())
        kinds = {v["kind"] for v in exc_info.value.details["violations"]}
        assert kinds == {"progressive_quorum"}

    def test_monitor_factory(self, core):
        monitor = core.monitor(auto_recover=True)
        assert isinstance(monitor, InvariantMonitor)
        assert not monitor.is_running


# ============================================================================
# Persistence
# ============================================================================


class TestPersistence:
    def test_round_trip_bytes(self, core):
        _ingest_choices(core, "q1", "AAABC")
        core.ingest(make_frq("q2", "alice", 4.0, timestamp=at(30)), now=at(30))
        core.reveal("q1", now=at(40))

        blob = core.export_state()
        restored = EmergenceCore()
        restored.import_state(blob)
        assert restored.export_state() == blob

    def test_restored_state_keeps_rate_limits_and_dedup(self, core):
        att = make_mcq("q1", "alice", "A", timestamp=at())
        core.ingest(att, now=at())
        restored = EmergenceCore()
        restored.import_state(core.export_state())

        assert restored.ingest(att, now=at(1)).reason == REASON_DUPLICATE
        retry = make_mcq("q1", "alice", "B", timestamp=at(days=2))
        assert restored.ingest(retry, now=at(days=2)).reason == REASON_RATE_LIMITED

    def test_import_failure_leaves_state_untouched(self, core):
        _ingest_choices(core, "q1", "AB")
        before = core.export_state()
        with pytest.raises(PersistenceError):
            core.import_state(b"not json")
        assert core.export_state() == before

    def test_malformed_section_content(self, core):
        _ingest_choices(core, "q1", "AB")
        before = core.export_state()
        payload = json.loads(before)
        payload["rate_limits"] = [{"attester_id": "alice"}]
        with pytest.raises(PersistenceError, match="malformed"):
            core.import_state(json.dumps(payload))
        assert core.export_state() == before

    def test_empty_core_round_trip(self):
        blob = EmergenceCore().export_state()
        restored = EmergenceCore()
        restored.import_state(blob)
        assert restored.export_state() == blob

    def test_config_passed_to_components(self):
        config = ConsensusConfig(min_attestations_for_reveal=2)
        core = EmergenceCore(config, clock=FixedClock())
        _ingest_choices(core, "q1", "AA")
        assert core.can_reveal("q1", now=at(5)).allowed
