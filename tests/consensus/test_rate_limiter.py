"""Tests for emergence.consensus.rate_limiter."""

from __future__ import annotations

import logging
import threading
from datetime import timedelta

import pytest
from conftest import at

from emergence.consensus.rate_limiter import RateLimiter


@pytest.fixture
def limiter() -> RateLimiter:
    return RateLimiter()


class TestCheckAndRecord:
    def test_first_attestation_allowed(self, limiter):
        result = limiter.check_and_record("alice", "q1", at())
        assert result.allowed
        assert result.retry_after is None
        assert result.retry_after_days == 0

    def test_second_within_window_rejected(self, limiter):
        limiter.check_and_record("alice", "q1", at())
        result = limiter.check_and_record("alice", "q1", at(days=10))
        assert not result.allowed
        assert result.retry_after == timedelta(days=20)
        assert result.retry_after_days == 20
        assert result.message == "Wait 20 days before re-attesting"

    def test_partial_day_rounds_up(self, limiter):
        limiter.check_and_record("alice", "q1", at())
        result = limiter.check_and_record("alice", "q1", at(days=29, hours=12))
        assert result.retry_after_days == 1
        assert result.message == "Wait 1 day before re-attesting"

    def test_rejection_does_not_extend_window(self, limiter):
        limiter.check_and_record("alice", "q1", at())
        limiter.check_and_record("alice", "q1", at(days=10))
        assert limiter.check_and_record("alice", "q1", at(days=30)).allowed

    def test_window_boundary_allows(self, limiter):
        limiter.check_and_record("alice", "q1", at())
        assert limiter.may_attest("alice", "q1", at(days=30))
        assert not limiter.may_attest("alice", "q1", at(days=30) - timedelta(seconds=1))

    def test_keyed_per_pair(self, limiter):
        limiter.check_and_record("alice", "q1", at())
        assert limiter.check_and_record("alice", "q2", at()).allowed
        assert limiter.check_and_record("bob", "q1", at()).allowed

    def test_attempt_count(self, limiter):
        limiter.check_and_record("alice", "q1", at())
        limiter.check_and_record("alice", "q1", at(days=31))
        assert limiter.entries_for_user("alice")[0].attempt_count == 2

    def test_concurrent_only_one_passes(self, limiter):
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(limiter.check_and_record("alice", "q1", at()).allowed)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count(True) == 1

    def test_custom_window(self):
        limiter = RateLimiter(timedelta(hours=1))
        limiter.check_and_record("alice", "q1", at())
        assert limiter.check_and_record("alice", "q1", at(61)).allowed

    def test_invalid_window(self):
        with pytest.raises(ValueError):
            RateLimiter(timedelta(0))


class TestBatch:
    def test_may_attest_batch(self, limiter):
        limiter.record("alice", "q1", at())
        limiter.record("alice", "q2", at(days=-40))
        result = limiter.may_attest_batch("alice", ["q1", "q2", "q3"], at(days=1))
        assert result == {"q1": False, "q2": True, "q3": True}

    def test_batch_records_nothing(self, limiter):
        limiter.may_attest_batch("alice", ["q1", "q2"], at())
        assert limiter.entries() == []


class TestViolations:
    def test_rejections_counted(self, limiter):
        limiter.check_and_record("alice", "q1", at())
        assert limiter.violation_count("alice") == 0
        limiter.check_and_record("alice", "q1", at(days=1))
        limiter.check_and_record("alice", "q1", at(days=2))
        limiter.check_and_record("alice", "q2", at())
        limiter.check_and_record("alice", "q2", at(days=3))
        assert limiter.violation_count("alice") == 3
        assert limiter.violation_count("bob") == 0

    def test_rejection_keeps_window(self, limiter):
        limiter.check_and_record("alice", "q1", at())
        limiter.check_and_record("alice", "q1", at(days=5))
        entry = limiter.entries()[0]
        assert entry.last_attestation == at()
        assert entry.attempt_count == 1
        assert entry.violations == 1

    def test_count_survives_new_window(self, limiter):
        limiter.check_and_record("alice", "q1", at())
        limiter.check_and_record("alice", "q1", at(days=5))
        assert limiter.check_and_record("alice", "q1", at(days=31)).allowed
        assert limiter.violation_count("alice") == 1

    def test_repeat_offender_warned(self, limiter, caplog):
        limiter.check_and_record("alice", "q1", at())
        with caplog.at_level(logging.WARNING, logger="emergence.consensus.rate_limiter"):
            limiter.check_and_record("alice", "q1", at(days=1))
            assert "rate limit violations" not in caplog.text
            limiter.check_and_record("alice", "q1", at(days=2))
        assert "alice has 2 rate limit violations on q1" in caplog.text

    def test_clear_violations(self, limiter):
        for user in ("alice", "bob"):
            limiter.check_and_record(user, "q1", at())
            limiter.check_and_record(user, "q1", at(days=1))
        limiter.clear_violations("alice")
        assert limiter.violation_count("alice") == 0
        assert limiter.violation_count("bob") == 1
        assert not limiter.may_attest("alice", "q1", at(days=2))

    def test_statistics_and_export(self, limiter):
        limiter.check_and_record("alice", "q1", at())
        limiter.check_and_record("alice", "q1", at(days=1))
        assert limiter.statistics(at(days=2))["total_violations"] == 1

        restored = RateLimiter()
        restored.load(limiter.export())
        assert restored.violation_count("alice") == 1
        assert limiter.export()[0]["violations"] == 1

    def test_load_without_violations_field(self, limiter):
        limiter.load([{"attester_id": "alice", "question_id": "q1", "last_attestation": at().isoformat()}])
        assert limiter.violation_count("alice") == 0


class TestTimeUntilNext:
    def test_no_entry(self, limiter):
        assert limiter.time_until_next("alice", "q1", at()) == timedelta(0)
        assert limiter.time_until_next_readable("alice", "q1", at()) == "Can attest now"

    def test_days_and_hours(self, limiter):
        limiter.record("alice", "q1", at())
        assert limiter.time_until_next_readable("alice", "q1", at(days=1, hours=12)) == "28 days 12 hours"
        assert limiter.time_until_next_readable("alice", "q1", at(days=28, hours=23)) == "1 day 1 hour"

    def test_hours_only(self, limiter):
        limiter.record("alice", "q1", at())
        assert limiter.time_until_next_readable("alice", "q1", at(days=29, hours=18)) == "6 hours"

    def test_expired(self, limiter):
        limiter.record("alice", "q1", at())
        assert limiter.time_until_next_readable("alice", "q1", at(days=45)) == "Can attest now"


class TestMaintenance:
    def test_clear_expired(self, limiter):
        limiter.record("alice", "q1", at())
        limiter.record("alice", "q2", at(days=20))
        assert limiter.clear_expired(at(days=31)) == 1
        assert [e.question_id for e in limiter.entries()] == ["q2"]

    def test_statistics(self, limiter):
        limiter.record("alice", "q1", at())
        limiter.record("bob", "q1", at(days=20))
        stats = limiter.statistics(at(days=31))
        assert stats["total_limits"] == 2
        assert stats["active_limits"] == 1
        assert stats["expired_limits"] == 1
        assert stats["average_attempts"] == 1.0

    def test_entries_for_question(self, limiter):
        limiter.record("alice", "q1", at())
        limiter.record("bob", "q1", at())
        limiter.record("bob", "q2", at())
        assert {e.attester_id for e in limiter.entries_for_question("q1")} == {"alice", "bob"}

    def test_abuse_patterns(self, limiter):
        for i in range(11):
            limiter.record("spammer", f"q{i}", at(i))
        for i in range(10):
            limiter.record("busy", f"q{i}", at(i))
        patterns = limiter.detect_abuse_patterns(at(60))
        assert [p.attester_id for p in patterns] == ["spammer"]
        assert patterns[0].recent_attempts == 11

    def test_old_activity_not_abuse(self, limiter):
        for i in range(20):
            limiter.record("veteran", f"q{i}", at(i))
        assert limiter.detect_abuse_patterns(at(days=2)) == []

    def test_export_load(self, limiter):
        limiter.record("alice", "q1", at())
        limiter.record("alice", "q1", at(days=40))
        restored = RateLimiter()
        restored.load(limiter.export())
        assert restored.entries() == limiter.entries()
        assert not restored.may_attest("alice", "q1", at(days=41))
