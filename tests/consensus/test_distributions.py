"""Tests for emergence.consensus.distributions - the DistributionTracker."""

from __future__ import annotations

import threading
from dataclasses import replace

import pytest
from conftest import at, make_frq, make_mcq

from emergence.consensus.convergence import ConvergenceEngine
from emergence.consensus.distributions import DistributionTracker
from emergence.core.exceptions import ConflictError, ValidationException


@pytest.fixture
def tracker() -> DistributionTracker:
    return DistributionTracker()


class TestRecord:
    def test_first_attestation_creates_distribution(self, tracker):
        dist = tracker.record(make_mcq("q1", "alice", "B"), now=at())
        assert dist.choices["B"] == 1
        assert tracker.distribution("q1") == dist
        assert tracker.kind_of("q1").value == "mcq"

    def test_duplicate_is_noop(self, tracker):
        att = make_mcq("q1", "alice", "B")
        tracker.record(att)
        result = tracker.record_with_result(att)
        assert not result.recorded
        assert result.distribution.total_attestations == 1
        assert tracker.history("q1") == (att,)

    def test_id_reused_for_other_question(self, tracker):
        att = make_mcq("q1", "alice", "B")
        tracker.record(att)
        with pytest.raises(ConflictError):
            tracker.record(replace(att, question_id="q2"))

    def test_kind_mismatch_leaves_state(self, tracker):
        tracker.record(make_mcq("q1", "alice", "A"))
        with pytest.raises(ValidationException):
            tracker.record(make_frq("q1", "bob", 3.0))
        assert tracker.distribution("q1").total_attestations == 1
        assert len(tracker.history("q1")) == 1

    def test_reports_consensus_transition(self, tracker):
        results = [tracker.record_with_result(make_mcq("q1", f"u{i}", "A", timestamp=at(i))) for i in range(4)]
        assert [r.reached_consensus for r in results] == [False, False, True, False]

    def test_observer_called_via_engine(self):
        engine = ConvergenceEngine()
        seen = []
        engine.subscribe(lambda d: seen.append(d.total_attestations))
        tracker = DistributionTracker(engine)
        for i in range(3):
            tracker.record(make_frq("q1", f"u{i}", 4.0, timestamp=at(i)))
        assert seen == [3]

    def test_concurrent_writes_all_counted(self, tracker):
        atts = [make_mcq("q1", f"u{i}", "ABCDE"[i % 5], timestamp=at(i)) for i in range(50)]

        def worker(chunk):
            for att in chunk:
                tracker.record(att)

        threads = [threading.Thread(target=worker, args=(atts[i::5],)) for i in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        dist = tracker.distribution("q1")
        assert dist.total_attestations == 50
        assert sum(dist.choices.values()) == 50
        assert len(tracker.history("q1")) == 50


class TestReads:
    def test_contains_checks_all_questions(self, tracker):
        att = make_mcq("q1", "alice", "A")
        tracker.record(att)
        assert tracker.contains(att.id)
        assert not tracker.contains("missing")

    def test_attestations_in_insertion_order(self, tracker):
        a = make_mcq("q2", "alice", "A", timestamp=at(1))
        b = make_mcq("q1", "bob", "A", timestamp=at(0))
        tracker.record(a)
        tracker.record(b)
        assert tracker.attestations() == (a, b)

    def test_snapshot_is_consistent(self, tracker):
        for i in range(3):
            tracker.record(make_mcq("q1", f"u{i}", "A", timestamp=at(i)))
        snap = tracker.snapshot()
        tracker.record(make_mcq("q1", "late", "B", timestamp=at(9)))
        assert snap.distributions["q1"].total_attestations == len(snap.histories["q1"]) == 3
        assert len(snap.attestations()) == 3

    def test_queries(self, tracker):
        for i in range(3):
            tracker.record(make_mcq("q1", f"u{i}", "A", timestamp=at(i)))
        tracker.record(make_frq("q2", "alice", 2.0), now=at(0))
        tracker.record(make_frq("q2", "bob", 4.0), now=at(10))

        assert tracker.consensus_questions(0.9) == ["q1"]
        assert tracker.questions_needing_attestations(3) == ["q2"]
        assert [d.question_id for d in tracker.top_by_convergence(1)] == ["q1"]
        assert tracker.time_since_last_attestation("q2", at(15)) == 300.0
        assert tracker.time_since_last_attestation("missing", at()) is None

    def test_statistics(self, tracker):
        tracker.record(make_mcq("q1", "alice", "A"))
        tracker.record(make_frq("q2", "alice", 3.0))
        stats = tracker.statistics()
        assert stats["total_questions"] == 2
        assert stats["mcq_questions"] == 1
        assert stats["frq_questions"] == 1
        assert stats["total_attestations"] == 2

    def test_empty_statistics(self, tracker):
        assert tracker.statistics()["average_convergence"] == 0.0


class TestExportLoad:
    def test_round_trip(self, tracker):
        for i in range(3):
            tracker.record(make_mcq("q1", f"u{i}", "A", timestamp=at(i)))
        tracker.record(make_frq("q2", "alice", 3.5))

        restored = DistributionTracker()
        restored.load(tracker.export())
        assert restored.export() == tracker.export()
        assert restored.history("q1") == tracker.history("q1")
        assert restored.contains(tracker.attestations()[0].id)

    def test_clear(self, tracker):
        tracker.record(make_mcq("q1", "alice", "A"))
        tracker.clear()
        assert tracker.all_distributions() == {}
        assert tracker.attestations() == ()
