"""Utility functions for the Emergence CLI."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..consensus.models import Attestation, McqAnswer, answer_from_dict
from ..core.config import get_config
from ..core.engine import EmergenceCore
from ..core.exceptions import ConfigException, ValidationException
from ..core.persistence import read_state_file, write_state_file

logger = logging.getLogger(__name__)


def build_core() -> EmergenceCore:
    """Core configured from ``EMERGENCE_*`` settings.

    Raises:
        ConfigException: if a setting is out of range.
    """
    try:
        config = get_config().consensus_config()
    except PydanticValidationError as e:
        invalid = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise ConfigException(f"Invalid consensus settings: {', '.join(invalid)}", invalid) from e
    return EmergenceCore(config)


def load_core(state_path: Path | None) -> EmergenceCore:
    """Build a core, restoring state from ``state_path`` when it exists."""
    core = build_core()
    if state_path is not None and state_path.exists():
        core.import_state(read_state_file(state_path))
        logger.info(f"Loaded state from {state_path}")
    return core


def save_core(core: EmergenceCore, state_path: Path) -> None:
    write_state_file(state_path, core.export_state())
    logger.info(f"Saved state to {state_path}")


def parse_attestation(record: dict[str, Any]) -> Attestation:
    """Build an attestation from one log record.

    Records may omit ``id`` (derived from content) and may give an MCQ
    ``choice`` without its ``digest``.
    """
    answer_data = dict(record.get("answer") or {})
    if answer_data.get("kind") == "mcq" and "digest" not in answer_data and "choice" in answer_data:
        answer = McqAnswer.for_choice(answer_data["choice"])
        answer_data["digest"] = answer.digest

    if "id" in record:
        return Attestation.from_dict({**record, "answer": answer_data})

    try:
        return Attestation.create(
            question_id=record["question_id"],
            attester_id=record["attester_id"],
            answer=answer_from_dict(answer_data),
            confidence=record["confidence"],
            timestamp=datetime.fromisoformat(record["timestamp"]),
        )
    except KeyError as e:
        raise ValidationException(f"Attestation record is missing {e.args[0]}", field=str(e.args[0])) from e


def read_attestation_log(path: Path) -> Iterator[tuple[int, Attestation | None, str | None]]:
    """Yield ``(line_number, attestation, error)`` for each non-blank line."""
    with open(path, encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                record = json.loads(line)
                if not isinstance(record, dict):
                    raise ValidationException("Log record must be a JSON object")
                yield line_number, parse_attestation(record), None
            except json.JSONDecodeError as e:
                yield line_number, None, f"invalid JSON: {e.msg}"
            except (ValidationException, ValueError, TypeError) as e:
                yield line_number, None, str(e)
