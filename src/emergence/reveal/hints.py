"""Deterministic hint generation from a distribution's shape."""

from __future__ import annotations

from ..consensus.convergence import consensus_answer
from ..consensus.models import VALID_CHOICES, FrqDistribution, McqDistribution, QuestionDistribution
from .models import RevealHint

POSITIONAL_HINTS: dict[str, str] = {
    "A": "Consider the first option more carefully",
    "B": "The second choice has important implications",
    "C": "The middle option often requires careful analysis",
    "D": "Later options deserve consideration",
    "E": "Don't overlook the final choice",
}
DEFAULT_MCQ_HINT = "Review all options systematically"

# (mean below, rubric points), highest tier last
RUBRIC_TIERS: tuple[tuple[float, tuple[str, ...]], ...] = (
    (3.0, ("Focus on key concepts", "Provide specific examples", "Structure your response clearly")),
    (4.0, ("Add more detail to support points", "Connect ideas more explicitly", "Consider alternative perspectives")),
)
TOP_RUBRIC = ("Strong responses overall", "Minor improvements in clarity possible")

FRQ_HINT_TIERS: tuple[tuple[float, str], ...] = (
    (2.0, "Review the fundamental concepts for this topic"),
    (3.0, "Focus on providing more complete explanations"),
    (4.0, "Good foundation - enhance with specific examples"),
)
TOP_FRQ_HINT = "Strong understanding demonstrated by most"


def runner_up_choice(distribution: McqDistribution) -> str | None:
    """Most chosen letter other than the emergent answer, if anyone chose it."""
    leader = consensus_answer(distribution)
    if leader is None:
        counts = distribution.choices
        best = max(counts.values(), default=0)
        leader = next((c for c in VALID_CHOICES if counts.get(c, 0) == best), None)
    candidates = [(distribution.choices.get(c, 0), c) for c in VALID_CHOICES if c != leader]
    count, choice = max(candidates, key=lambda item: (item[0], -VALID_CHOICES.index(item[1])))
    return choice if count > 0 else None


def mcq_hint(distribution: McqDistribution) -> RevealHint:
    runner_up = runner_up_choice(distribution)
    if runner_up is None:
        return RevealHint(text=DEFAULT_MCQ_HINT, explanation=DEFAULT_MCQ_HINT)
    mistake = f"Many chose {runner_up} - reconsider how it differs from the other options"
    return RevealHint(
        text=mistake,
        explanation=POSITIONAL_HINTS.get(runner_up, DEFAULT_MCQ_HINT),
        common_mistakes=(mistake,),
    )


def rubric_points(mean: float) -> tuple[str, ...]:
    for below, points in RUBRIC_TIERS:
        if mean < below:
            return points
    return TOP_RUBRIC


def frq_hint_text(mean: float) -> str:
    for below, text in FRQ_HINT_TIERS:
        if mean < below:
            return text
    return TOP_FRQ_HINT


def frq_hint(distribution: FrqDistribution) -> RevealHint:
    text = frq_hint_text(distribution.mean)
    return RevealHint(text=text, explanation=text, rubric_points=rubric_points(distribution.mean))


def generate_hint(distribution: QuestionDistribution) -> RevealHint:
    if isinstance(distribution, McqDistribution):
        return mcq_hint(distribution)
    if isinstance(distribution, FrqDistribution):
        return frq_hint(distribution)
    raise TypeError(f"Unknown distribution type: {type(distribution).__name__}")
