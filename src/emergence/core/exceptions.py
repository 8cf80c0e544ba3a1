# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Emergence Contributors

"""Custom exception hierarchy for Emergence.

Errors fall into four kinds:

- validation: malformed attestations, rejected before they reach a distribution
- policy: rate limits and reveal guards, surfaced to the end user with a reason code
- integrity: hash mismatches and data-integrity invariant failures, logged and escalated
- transient: persistence boundary failures, retried by the caller
"""

from __future__ import annotations

from typing import Any

INTEGRITY_USER_MESSAGE = "System integrity check failed, see logs"


class EmergenceException(Exception):  # noqa: N818
    """Base exception for all Emergence errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    @property
    def user_message(self) -> str:
        """Short message safe to show to an end user."""
        return self.message

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationException(EmergenceException):
    """Exception for validation errors.

    Raised when:
    - An attestation is missing its digest or text
    - Confidence or score is out of range
    - An MCQ digest does not correspond to a known choice
    - An attestation's kind does not match its question's distribution
    """

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details)
        self.field = field
        self.value = value


class ConfigException(EmergenceException):
    """Exception for configuration errors."""

    def __init__(self, message: str, missing_vars: list[str] | None = None):
        details = {}
        if missing_vars:
            details["missing_vars"] = missing_vars
        super().__init__(message, details)
        self.missing_vars = missing_vars or []


class NotFoundError(EmergenceException):
    """Exception for resource not found errors (unknown question, attester)."""

    def __init__(self, resource_type: str, resource_id: str):
        message = f"{resource_type} not found: {resource_id}"
        details = {
            "resource_type": resource_type,
            "resource_id": resource_id,
        }
        super().__init__(message, details)
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConflictError(EmergenceException):
    """Exception for conflicting state, e.g. an attestation id reused with different content."""

    def __init__(self, message: str, existing_id: str | None = None):
        details = {}
        if existing_id:
            details["existing_id"] = existing_id
        super().__init__(message, details)
        self.existing_id = existing_id


class PolicyError(EmergenceException):
    """A request was well-formed but refused by policy.

    Carries a machine-readable ``reason`` code alongside the short message.
    """

    def __init__(self, reason: str, message: str, details: dict | None = None):
        super().__init__(message, details)
        self.reason = reason

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["reason"] = self.reason
        return data


class RateLimitedError(PolicyError):
    """An attester tried to re-attest a question inside the rate-limit window."""

    def __init__(self, attester_id: str, question_id: str, retry_after_days: int):
        message = f"Wait {retry_after_days} day{'s' if retry_after_days != 1 else ''} before re-attesting"
        super().__init__(
            "rate_limited",
            message,
            {
                "attester_id": attester_id,
                "question_id": question_id,
                "retry_after_days": retry_after_days,
            },
        )
        self.retry_after_days = retry_after_days


class RevealTooEarlyError(PolicyError):
    """Reveal guard not met (threshold, cooldown or insufficient shift)."""

    def __init__(self, question_id: str, reason: str, message: str, details: dict | None = None):
        super().__init__(reason, message, {"question_id": question_id, **(details or {})})
        self.question_id = question_id


class IntegrityError(EmergenceException):
    """Data-integrity failure. Never repaired automatically."""

    @property
    def user_message(self) -> str:
        return INTEGRITY_USER_MESSAGE


class PersistenceError(EmergenceException):
    """Transient failure at the persistence boundary (bad blob, I/O)."""

    def __init__(self, message: str, cause: str | None = None):
        details = {}
        if cause:
            details["cause"] = cause
        super().__init__(message, details)
