"""Global test fixtures for the Emergence test suite."""

from __future__ import annotations

import os
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from emergence.consensus.models import Attestation, FrqAnswer, McqAnswer
from emergence.core.config import ConsensusConfig, clear_config_cache

# ============================================================================
# Clock
# ============================================================================

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class FixedClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


# ============================================================================
# Environment
# ============================================================================


@pytest.fixture
def clean_env(monkeypatch):
    """Remove all EMERGENCE_ environment variables and reset the config cache."""
    for key in list(os.environ.keys()):
        if key.startswith("EMERGENCE_"):
            monkeypatch.delenv(key, raising=False)
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def config() -> ConsensusConfig:
    return ConsensusConfig()


# ============================================================================
# Attestation factories
# ============================================================================


def make_mcq(
    question_id: str,
    attester_id: str,
    choice: str,
    confidence: int = 3,
    timestamp: datetime | None = None,
    with_plaintext: bool = False,
) -> Attestation:
    answer = McqAnswer.for_choice(choice)
    if not with_plaintext:
        answer = McqAnswer(digest=answer.digest)
    return Attestation.create(question_id, attester_id, answer, confidence, timestamp or BASE_TIME)


def make_frq(
    question_id: str,
    attester_id: str,
    score: float,
    text: str | None = None,
    confidence: int = 3,
    timestamp: datetime | None = None,
) -> Attestation:
    answer = FrqAnswer(text=text or f"answer from {attester_id}", score=score)
    return Attestation.create(question_id, attester_id, answer, confidence, timestamp or BASE_TIME)


@pytest.fixture
def mcq_factory() -> Callable[..., Attestation]:
    return make_mcq


@pytest.fixture
def frq_factory() -> Callable[..., Attestation]:
    return make_frq


def at(minutes: float = 0, **kwargs: float) -> datetime:
    """Timestamp offset from the fixed base time."""
    return BASE_TIME + timedelta(minutes=minutes, **kwargs)
