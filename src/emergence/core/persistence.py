"""Serialized state format for the persistence boundary.

State is a JSON object with a ``schema_version`` and one section per
component. Keys are sorted so equal states serialize to equal bytes.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, TypeVar

from .exceptions import PersistenceError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
SECTIONS = ("distributions", "rate_limits", "reputation", "reveals")

# File I/O at the persistence boundary is retried with exponential backoff
IO_ATTEMPTS = 3
IO_RETRY_DELAY = 0.1

T = TypeVar("T")


def dump_state(sections: Mapping[str, Any]) -> bytes:
    """Serialize component sections into a state blob."""
    missing = [name for name in SECTIONS if name not in sections]
    if missing:
        raise PersistenceError(f"Cannot export state, missing sections: {', '.join(missing)}")
    payload = {"schema_version": SCHEMA_VERSION, **{name: sections[name] for name in SECTIONS}}
    try:
        return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise PersistenceError("State is not serializable", cause=str(e)) from e


def load_state(blob: bytes | str) -> dict[str, Any]:
    """Parse and validate a state blob.

    Raises:
        PersistenceError: if the blob is not valid JSON, has an unsupported
            schema version, or lacks a section.
    """
    try:
        payload = json.loads(blob)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise PersistenceError("State blob is not valid JSON", cause=str(e)) from e

    if not isinstance(payload, dict):
        raise PersistenceError("State blob must be a JSON object")

    version = payload.get("schema_version")
    if version != SCHEMA_VERSION:
        raise PersistenceError(f"Unsupported schema version: {version!r}")

    missing = [name for name in SECTIONS if name not in payload]
    if missing:
        raise PersistenceError(f"State blob missing sections: {', '.join(missing)}")

    return {name: payload[name] for name in SECTIONS}

def _with_retries(operation: Callable[[], T], description: str, attempts: int, delay: float) -> T:
    """Run a file operation, backing off between transient failures.

    A missing file or directory is not transient and fails immediately.
    """
    for attempt in range(attempts):
        try:
            return operation()
        except (FileNotFoundError, NotADirectoryError) as e:
            raise PersistenceError(f"Cannot {description}", cause=str(e)) from e
        except OSError as e:
            if attempt == attempts - 1:
                raise PersistenceError(f"Cannot {description}", cause=str(e)) from e
            logger.warning(f"Failed to {description} (attempt {attempt + 1}/{attempts}): {e}")
            time.sleep(delay * (2**attempt))
    raise PersistenceError(f"Cannot {description}")


def read_state_file(path: Path, attempts: int = IO_ATTEMPTS, delay: float = IO_RETRY_DELAY) -> bytes:
    return _with_retries(path.read_bytes, f"read state file {path}", attempts, delay)


def write_state_file(path: Path, blob: bytes, attempts: int = IO_ATTEMPTS, delay: float = IO_RETRY_DELAY) -> None:
    """Write a state blob, replacing the file only once the write succeeded."""
    tmp = path.with_suffix(path.suffix + ".tmp")

    def write() -> None:
        tmp.write_bytes(blob)
        tmp.replace(path)

    _with_retries(write, f"write state file {path}", attempts, delay)
    logger.debug(f"Wrote {len(blob)} bytes of state to {path}")
