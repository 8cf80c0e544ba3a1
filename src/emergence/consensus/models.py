"""Attestation and distribution data models.

Attestations are immutable records of one participant's answer to one
question. Distributions are immutable per-question aggregates; the tracker
replaces them on every update so readers always see a consistent snapshot.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union

from ..core.exceptions import ValidationException

# =============================================================================
# CONSTANTS
# =============================================================================

VALID_CHOICES: tuple[str, ...] = ("A", "B", "C", "D", "E")
MIN_CONFIDENCE = 1
MAX_CONFIDENCE = 5
MIN_SCORE = 1.0
MAX_SCORE = 5.0
SYSTEM_ATTESTER_PREFIX = "system:"


class AttestationKind(str, Enum):
    """Question format an attestation answers."""

    MCQ = "mcq"
    FRQ = "frq"


def mcq_digest(choice: str) -> str:
    """Return the lowercase hex SHA-256 digest of an MCQ choice letter."""
    return hashlib.sha256(choice.upper().encode()).hexdigest()


_DIGEST_TO_CHOICE: dict[str, str] = {mcq_digest(c): c for c in VALID_CHOICES}


def choice_for_digest(digest: str) -> str | None:
    """Reverse lookup of a choice letter from its digest, or None if unknown."""
    return _DIGEST_TO_CHOICE.get(digest.lower())


# =============================================================================
# ANSWERS
# =============================================================================


@dataclass(frozen=True)
class McqAnswer:
    """Multiple-choice answer, carried as a digest of the chosen letter.

    ``choice`` is the optional plaintext letter; when present it must hash to
    ``digest`` (checked by the hash-validation invariant).
    """

    digest: str
    choice: str | None = None

    @classmethod
    def for_choice(cls, choice: str) -> McqAnswer:
        return cls(digest=mcq_digest(choice), choice=choice.upper())

    @property
    def letter(self) -> str | None:
        """Plaintext letter if given, else the digest reverse lookup."""
        return self.choice or choice_for_digest(self.digest)


@dataclass(frozen=True)
class FrqAnswer:
    """Free-response answer with its rubric score."""

    text: str
    score: float


Answer = Union[McqAnswer, FrqAnswer]


def answer_to_dict(answer: Answer) -> dict[str, Any]:
    if isinstance(answer, McqAnswer):
        data: dict[str, Any] = {"kind": AttestationKind.MCQ.value, "digest": answer.digest}
        if answer.choice is not None:
            data["choice"] = answer.choice
        return data
    if isinstance(answer, FrqAnswer):
        return {"kind": AttestationKind.FRQ.value, "text": answer.text, "score": answer.score}
    raise TypeError(f"Unknown answer variant: {type(answer).__name__}")


def answer_from_dict(data: Mapping[str, Any]) -> Answer:
    kind = data.get("kind")
    if kind == AttestationKind.MCQ.value:
        return McqAnswer(digest=data["digest"], choice=data.get("choice"))
    if kind == AttestationKind.FRQ.value:
        return FrqAnswer(text=data["text"], score=float(data["score"]))
    raise ValidationException(f"Unknown answer kind: {kind}", field="answer.kind", value=kind)


# =============================================================================
# ATTESTATION
# =============================================================================


def compute_attestation_id(
    question_id: str,
    attester_id: str,
    answer: Answer,
    confidence: int,
    timestamp: datetime,
) -> str:
    """Derive a content hash over the canonical attestation fields."""
    canonical = json.dumps(
        {
            "question_id": question_id,
            "attester_id": attester_id,
            "answer": answer_to_dict(answer),
            "confidence": confidence,
            "timestamp": timestamp.isoformat(),
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode()).hexdigest()


@dataclass(frozen=True)
class Attestation:
    """One participant's answer to one question."""

    id: str
    question_id: str
    attester_id: str
    answer: Answer
    confidence: int
    timestamp: datetime

    @classmethod
    def create(
        cls,
        question_id: str,
        attester_id: str,
        answer: Answer,
        confidence: int,
        timestamp: datetime,
    ) -> Attestation:
        """Build an attestation with a derived content-hash id."""
        attestation_id = compute_attestation_id(question_id, attester_id, answer, confidence, timestamp)
        return cls(
            id=attestation_id,
            question_id=question_id,
            attester_id=attester_id,
            answer=answer,
            confidence=confidence,
            timestamp=timestamp,
        )

    @property
    def kind(self) -> AttestationKind:
        if isinstance(self.answer, McqAnswer):
            return AttestationKind.MCQ
        if isinstance(self.answer, FrqAnswer):
            return AttestationKind.FRQ
        raise TypeError(f"Unknown answer variant: {type(self.answer).__name__}")

    @property
    def is_system(self) -> bool:
        return self.attester_id.startswith(SYSTEM_ATTESTER_PREFIX)

    def validate(self) -> None:
        """Reject malformed attestations.

        Raises:
            ValidationException: on missing identifiers, an unknown digest,
                empty free text, or confidence/score out of range.
        """
        for name in ("id", "question_id", "attester_id"):
            if not getattr(self, name):
                raise ValidationException(f"Attestation is missing {name}", field=name)

        if isinstance(self.confidence, bool) or not isinstance(self.confidence, int):
            raise ValidationException("Confidence must be an integer", field="confidence", value=self.confidence)
        if not MIN_CONFIDENCE <= self.confidence <= MAX_CONFIDENCE:
            raise ValidationException(
                f"Confidence must be between {MIN_CONFIDENCE} and {MAX_CONFIDENCE}",
                field="confidence",
                value=self.confidence,
            )

        if self.timestamp.tzinfo is None:
            raise ValidationException("Timestamp must be timezone-aware", field="timestamp", value=self.timestamp)

        answer = self.answer
        if isinstance(answer, McqAnswer):
            if not answer.digest:
                raise ValidationException("MCQ attestation is missing its digest", field="digest")
            if choice_for_digest(answer.digest) is None:
                raise ValidationException("Digest does not match any valid choice", field="digest", value=answer.digest)
            if answer.choice is not None and answer.choice.upper() not in VALID_CHOICES:
                raise ValidationException("Invalid choice letter", field="choice", value=answer.choice)
        elif isinstance(answer, FrqAnswer):
            if not answer.text or not answer.text.strip():
                raise ValidationException("FRQ attestation is missing its text", field="text")
            if not MIN_SCORE <= answer.score <= MAX_SCORE:
                raise ValidationException(
                    f"Score must be between {MIN_SCORE:g} and {MAX_SCORE:g}",
                    field="score",
                    value=answer.score,
                )
        else:
            raise TypeError(f"Unknown answer variant: {type(answer).__name__}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "question_id": self.question_id,
            "attester_id": self.attester_id,
            "answer": answer_to_dict(self.answer),
            "confidence": self.confidence,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Attestation:
        try:
            return cls(
                id=data["id"],
                question_id=data["question_id"],
                attester_id=data["attester_id"],
                answer=answer_from_dict(data["answer"]),
                confidence=data["confidence"],
                timestamp=datetime.fromisoformat(data["timestamp"]),
            )
        except KeyError as e:
            raise ValidationException(f"Attestation record is missing {e.args[0]}", field=str(e.args[0])) from e


# =============================================================================
# DISTRIBUTIONS
# =============================================================================


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class McqDistribution:
    """Choice counts for one multiple-choice question."""

    question_id: str
    choices: Mapping[str, int] = field(default_factory=lambda: {c: 0 for c in VALID_CHOICES})
    total_attestations: int = 0
    convergence: float = 0.0
    has_consensus: bool = False
    last_updated: datetime | None = None

    @property
    def kind(self) -> AttestationKind:
        return AttestationKind.MCQ

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "question_id": self.question_id,
            "choices": dict(self.choices),
            "total_attestations": self.total_attestations,
            "convergence": self.convergence,
            "has_consensus": self.has_consensus,
            "last_updated": _ts(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> McqDistribution:
        return cls(
            question_id=data["question_id"],
            choices={k: int(v) for k, v in data["choices"].items()},
            total_attestations=int(data["total_attestations"]),
            convergence=float(data["convergence"]),
            has_consensus=bool(data["has_consensus"]),
            last_updated=_parse_ts(data.get("last_updated")),
        )


@dataclass(frozen=True)
class FrqDistribution:
    """Scores and summary statistics for one free-response question."""

    question_id: str
    scores: tuple[float, ...] = ()
    mean: float = 0.0
    std_dev: float = 0.0
    total_attestations: int = 0
    convergence: float = 0.0
    has_consensus: bool = False
    last_updated: datetime | None = None

    @property
    def kind(self) -> AttestationKind:
        return AttestationKind.FRQ

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "question_id": self.question_id,
            "scores": list(self.scores),
            "mean": self.mean,
            "std_dev": self.std_dev,
            "total_attestations": self.total_attestations,
            "convergence": self.convergence,
            "has_consensus": self.has_consensus,
            "last_updated": _ts(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FrqDistribution:
        return cls(
            question_id=data["question_id"],
            scores=tuple(float(s) for s in data["scores"]),
            mean=float(data["mean"]),
            std_dev=float(data["std_dev"]),
            total_attestations=int(data["total_attestations"]),
            convergence=float(data["convergence"]),
            has_consensus=bool(data["has_consensus"]),
            last_updated=_parse_ts(data.get("last_updated")),
        )


QuestionDistribution = Union[McqDistribution, FrqDistribution]


def empty_distribution(kind: AttestationKind, question_id: str) -> QuestionDistribution:
    """Create the initial distribution for a question of the given kind."""
    if kind == AttestationKind.MCQ:
        return McqDistribution(question_id=question_id)
    if kind == AttestationKind.FRQ:
        return FrqDistribution(question_id=question_id)
    raise TypeError(f"Unknown attestation kind: {kind}")


def distribution_from_dict(data: Mapping[str, Any]) -> QuestionDistribution:
    kind = data.get("kind")
    if kind == AttestationKind.MCQ.value:
        return McqDistribution.from_dict(data)
    if kind == AttestationKind.FRQ.value:
        return FrqDistribution.from_dict(data)
    raise ValidationException(f"Unknown distribution kind: {kind}", field="kind", value=kind)
