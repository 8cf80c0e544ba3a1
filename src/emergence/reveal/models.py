"""Reveal data models."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..consensus.models import AttestationKind


class RevealReason(str, Enum):
    """Why a reveal was refused."""

    CONVERGENCE_BELOW_THRESHOLD = "convergence_below_threshold"
    INSUFFICIENT_ATTESTATIONS = "insufficient_attestations"
    COOLDOWN_ACTIVE = "cooldown_active"
    INSUFFICIENT_SHIFT = "insufficient_shift"


@dataclass(frozen=True)
class RevealHint:
    """Guidance released on reveal. Never contains the emergent answer itself."""

    text: str
    explanation: str | None = None
    rubric_points: tuple[str, ...] = ()
    common_mistakes: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "explanation": self.explanation,
            "rubric_points": list(self.rubric_points),
            "common_mistakes": list(self.common_mistakes),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RevealHint:
        return cls(
            text=data["text"],
            explanation=data.get("explanation"),
            rubric_points=tuple(data.get("rubric_points", ())),
            common_mistakes=tuple(data.get("common_mistakes", ())),
        )


@dataclass(frozen=True)
class RevealRecord:
    """One reveal of one question."""

    question_id: str
    hint: RevealHint
    convergence_at_reveal: float
    total_attestations: int
    kind: AttestationKind
    timestamp: datetime
    signature: str | None = None  # opaque, validated by the host

    def to_dict(self) -> dict[str, Any]:
        return {
            "question_id": self.question_id,
            "hint": self.hint.to_dict(),
            "convergence_at_reveal": self.convergence_at_reveal,
            "total_attestations": self.total_attestations,
            "kind": self.kind.value,
            "timestamp": self.timestamp.isoformat(),
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RevealRecord:
        return cls(
            question_id=data["question_id"],
            hint=RevealHint.from_dict(data["hint"]),
            convergence_at_reveal=float(data["convergence_at_reveal"]),
            total_attestations=int(data["total_attestations"]),
            kind=AttestationKind(data["kind"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            signature=data.get("signature"),
        )


@dataclass
class RevealDecision:
    """Result of evaluating the reveal guard."""

    allowed: bool
    reason: RevealReason | None = None
    message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
