"""Tests for emergence.core.exceptions module."""

from __future__ import annotations

import pytest

from emergence.core.exceptions import (
    ConfigException,
    ConflictError,
    EmergenceException,
    IntegrityError,
    NotFoundError,
    PersistenceError,
    PolicyError,
    RateLimitedError,
    RevealTooEarlyError,
    ValidationException,
)

# ============================================================================
# EmergenceException Tests
# ============================================================================


class TestEmergenceException:
    """Tests for base EmergenceException."""

    def test_create_with_message(self):
        exc = EmergenceException("Something went wrong")
        assert str(exc) == "Something went wrong"
        assert exc.message == "Something went wrong"
        assert exc.details == {}

    def test_to_dict_uses_class_name(self):
        exc = PersistenceError("bad blob", cause="truncated")
        d = exc.to_dict()
        assert d["error"] == "PersistenceError"
        assert d["message"] == "bad blob"
        assert d["details"] == {"cause": "truncated"}

    def test_user_message_defaults_to_message(self):
        assert EmergenceException("short").user_message == "short"

    @pytest.mark.parametrize(
        "exc",
        [
            ValidationException("x"),
            ConfigException("x"),
            NotFoundError("Question", "q1"),
            ConflictError("x"),
            PolicyError("r", "x"),
            IntegrityError("x"),
            PersistenceError("x"),
        ],
    )
    def test_hierarchy(self, exc):
        assert isinstance(exc, EmergenceException)


# ============================================================================
# Specific exceptions
# ============================================================================


class TestValidationException:
    def test_field_and_value_in_details(self):
        exc = ValidationException("Confidence out of range", field="confidence", value=9)
        assert exc.field == "confidence"
        assert exc.value == 9
        assert exc.details["field"] == "confidence"


class TestPolicyErrors:
    def test_rate_limited_carries_reason(self):
        exc = RateLimitedError("alice", "q1", 3)
        assert isinstance(exc, PolicyError)
        assert exc.reason == "rate_limited"
        assert exc.retry_after_days == 3
        assert exc.user_message == "Wait 3 days before re-attesting"
        assert exc.to_dict()["reason"] == "rate_limited"

    def test_rate_limited_singular(self):
        assert RateLimitedError("alice", "q1", 1).message == "Wait 1 day before re-attesting"

    def test_reveal_too_early(self):
        exc = RevealTooEarlyError("q1", "cooldown_active", "Cooldown active", {"retry_after_seconds": 60})
        assert exc.reason == "cooldown_active"
        assert exc.question_id == "q1"
        assert exc.details["question_id"] == "q1"
        assert exc.details["retry_after_seconds"] == 60


class TestIntegrityError:
    def test_user_message_is_generic(self):
        exc = IntegrityError("hash mismatch on attestation abc", {"attestation": "abc"})
        assert exc.user_message == "System integrity check failed, see logs"
        assert "abc" in exc.message


class TestNotFoundError:
    def test_message(self):
        exc = NotFoundError("Question", "q-42")
        assert "q-42" in exc.message
        assert exc.details["resource_id"] == "q-42"
