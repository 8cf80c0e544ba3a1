"""Tests for emergence.reputation.calculator."""

from __future__ import annotations

import pytest
from conftest import at, make_frq, make_mcq

from emergence.consensus.convergence import recompute
from emergence.consensus.models import FrqDistribution, McqDistribution
from emergence.reputation.bonuses import AttesterStats
from emergence.reputation.calculator import ReputationCalculator, ReputationUpdate
from emergence.reputation.decay import LinearDecay

VETERAN = AttesterStats(attestation_count=50)


def _mcq(**counts) -> McqDistribution:
    return recompute(McqDistribution(question_id="q1", choices={c: counts.get(c, 0) for c in "ABCDE"}))


@pytest.fixture
def calculator() -> ReputationCalculator:
    return ReputationCalculator()


class TestReward:
    def test_zero_before_consensus(self, calculator):
        assert calculator.reward(make_mcq("q1", "alice", "A"), _mcq(A=2)) == 0.0

    def test_majority_scaled_by_confidence(self, calculator):
        dist = _mcq(A=3, B=1)
        assert calculator.reward(make_mcq("q1", "alice", "A", confidence=5), dist) == pytest.approx(1.0)
        assert calculator.reward(make_mcq("q1", "alice", "A", confidence=1), dist) == pytest.approx(0.2)

    def test_minority_multiplier(self, calculator):
        dist = _mcq(A=3, B=1)
        assert calculator.reward(make_mcq("q1", "bob", "B", confidence=5), dist) == pytest.approx(1.5)

    def test_frq_minority_outside_band(self, calculator):
        dist = recompute(FrqDistribution(question_id="q1", scores=(3.0, 3.0, 3.0, 5.0)))
        assert calculator.reward(make_frq("q1", "bob", 5.0, confidence=5), dist) == pytest.approx(1.5)


class TestScore:
    def test_score_inside_grace(self, calculator):
        att = make_mcq("q1", "alice", "A", confidence=5, timestamp=at())
        update = calculator.score(att, _mcq(A=3), VETERAN, now=at(days=3))
        assert update.decay_factor == 1.0
        assert update.final_score == pytest.approx(1.0)
        assert update.applied_bonuses == []

    def test_score_applies_bonus_and_decay(self):
        calculator = ReputationCalculator(decay=LinearDecay(rate=0.1))
        att = make_mcq("q1", "alice", "A", confidence=5, timestamp=at())
        update = calculator.score(att, _mcq(A=3), AttesterStats(attestation_count=1), now=at(days=2))
        assert update.bonus_multiplier == pytest.approx(1.2)
        assert update.decay_factor == pytest.approx(0.8)
        assert update.final_score == pytest.approx(0.96)
        assert update.applied_bonuses == ["Early Adopter: 20%"]

    def test_score_before_consensus_is_zero(self, calculator):
        update = calculator.score(make_mcq("q1", "alice", "A"), _mcq(A=1), None, now=at())
        assert update.base_points == 0.0
        assert update.final_score == 0.0

    def test_update_dict_round_trip(self, calculator):
        update = calculator.score(make_mcq("q1", "bob", "B"), _mcq(A=3, B=1), VETERAN, now=at())
        assert update.minority_multiplier == 1.5
        assert ReputationUpdate.from_dict(update.to_dict()) == update


class TestAggregates:
    def test_breakdown(self, calculator):
        mcq_update = calculator.score(make_mcq("q1", "alice", "A", confidence=5), _mcq(A=3), VETERAN, now=at())
        frq_dist = recompute(FrqDistribution(question_id="q2", scores=(4.0, 4.0, 4.0)))
        frq_update = calculator.score(make_frq("q2", "alice", 4.0, confidence=5), frq_dist, VETERAN, now=at())

        result = calculator.breakdown([mcq_update, frq_update], {"q1": _mcq(A=3), "q2": frq_dist})
        assert result["mcq_score"] == pytest.approx(1.0)
        assert result["frq_score"] == pytest.approx(1.0)
        assert result["total_score"] == pytest.approx(2.0)
        assert result["questions_answered"] == 2
        assert calculator.cumulative_score([mcq_update, frq_update]) == pytest.approx(2.0)

    def test_top_performers(self, calculator):
        ranked = calculator.top_performers({"a": 1.0, "b": 3.0, "c": 2.0}, limit=2)
        assert ranked == [("b", 3.0), ("c", 2.0)]
