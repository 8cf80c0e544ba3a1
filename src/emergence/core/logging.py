# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Emergence Contributors

"""Structured logging configuration for Emergence.

Provides:
- JSON formatter for production (machine-parseable)
- Standard formatter for development (human-readable)
- Correlation IDs so one ingestion or invariant sweep can be traced end to end
- Attestation event logging with free-text answers redacted
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..consensus.models import Attestation

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str | None:
    """Get the current correlation ID, or None if not set."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    """Set the correlation ID for the current context."""
    _correlation_id.set(correlation_id)


def generate_correlation_id() -> str:
    """Generate a new unique correlation ID."""
    return str(uuid.uuid4())


@contextmanager
def correlation_context(
    correlation_id: str | None = None,
) -> Generator[str, None, None]:
    """Context manager for correlation ID scope.

    Args:
        correlation_id: Optional correlation ID to use. If None, generates a new one.

    Yields:
        The correlation ID being used.

    Example:
        with correlation_context() as cid:
            core.ingest(attestation)  # log lines carry cid
    """
    cid = correlation_id or generate_correlation_id()
    token = _correlation_id.set(cid)
    try:
        yield cid
    finally:
        _correlation_id.reset(token)


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production environments."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            log_data["correlation_id"] = correlation_id

        if record.levelno >= logging.WARNING:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_data"):
            log_data["extra"] = record.extra_data

        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    """Human-readable formatter with optional colours for terminal output."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    CORRELATION_COLOR = "\033[90m"

    def __init__(self, use_colors: bool = True):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        # Copy so other handlers see the unmodified record
        record = logging.makeLogRecord(record.__dict__)

        correlation_id = get_correlation_id()
        if correlation_id:
            short_cid = correlation_id[:8]
            if self.use_colors:
                cid_str = f"{self.CORRELATION_COLOR}[{short_cid}]{self.RESET} "
            else:
                cid_str = f"[{short_cid}] "
            record.msg = cid_str + str(record.msg)

        if self.use_colors:
            color = self.COLORS.get(record.levelname, "")
            record.levelname = f"{color}{record.levelname}{self.RESET}"

        return super().format(record)


def configure_logging(
    level: str | int = "INFO",
    json_format: bool | None = None,
    log_file: str | None = None,
) -> None:
    """Configure root logging for Emergence tools.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (auto-detect if None)
        log_file: Optional file to write logs to

    Environment variables:
        EMERGENCE_LOG_LEVEL: Override log level
        EMERGENCE_LOG_FORMAT: Log format ("json" or "text", auto-detect if unset)
        EMERGENCE_LOG_FILE: Log file path
    """
    from .config import get_config

    config = get_config()

    level = config.log_level if level == "INFO" else level
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if json_format is None:
        format_env = config.log_format.lower()
        if format_env == "json":
            json_format = True
        elif format_env == "text":
            json_format = False
        else:
            json_format = not sys.stderr.isatty()

    log_file = config.log_file if log_file is None else log_file

    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = StandardFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        # Files always get JSON
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name (typically __name__)."""
    return logging.getLogger(name)


class AttestationLogger:
    """Logs attestation lifecycle events without leaking answer content.

    Free-text answers are replaced by their length and a short digest so log
    aggregation never stores what a participant wrote.
    """

    MAX_TEXT_PREVIEW = 0

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger("emergence.attestations")

    def log_event(
        self,
        event: str,
        attestation: Attestation,
        level: int = logging.DEBUG,
        **fields: Any,
    ) -> None:
        """Log an attestation event (accepted, rejected, duplicate, ...).

        Args:
            event: Short event name
            attestation: The attestation concerned
            level: Log level
            **fields: Extra structured fields (reason, convergence, ...)
        """
        data = {
            "event": event,
            "attestation_id": attestation.id,
            "question_id": attestation.question_id,
            "attester_id": attestation.attester_id,
            "kind": attestation.kind.value,
            "answer": self.redact_answer(attestation),
            **fields,
        }
        self.logger.log(
            level,
            f"Attestation {event}: {attestation.id} on {attestation.question_id}",
            extra={"extra_data": data},
        )

    @staticmethod
    def redact_answer(attestation: Attestation) -> dict[str, Any]:
        """Return a log-safe summary of an attestation's answer."""
        from ..consensus.models import FrqAnswer, McqAnswer

        answer = attestation.answer
        if isinstance(answer, McqAnswer):
            return {"digest": answer.digest[:12]}
        if isinstance(answer, FrqAnswer):
            text_digest = hashlib.sha256(answer.text.encode()).hexdigest()[:12]
            return {"score": answer.score, "text_length": len(answer.text), "text_digest": text_digest}
        raise TypeError(f"Unknown answer variant: {type(answer).__name__}")


attestation_logger = AttestationLogger()
