"""Anti-gaming pattern detection across attesters.

Implements advisory detectors for coordinated or automated behaviour:
- Collusion: pairs of attesters whose answers agree far more than chance
- Time clustering: bursts of attesters answering one question within a minute
- Sybil: identities with near-identical timing and answers, or near-identical keys
- Gaming strategies: per-attester habits (copying, rushing, rote answering)

Outputs are signals for downstream policy, never rejections.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from rapidfuzz.distance import Levenshtein

from .models import Attestation, FrqAnswer, McqAnswer
from .outliers import COPY_PASTE_UNIQUENESS, frq_texts, uniqueness_ratio

logger = logging.getLogger(__name__)

# =============================================================================
# ANTI-GAMING THRESHOLDS
# =============================================================================

# Collusion detection
COLLUSION_THRESHOLD = 0.8  # Flag pairs with >80% matching answers
FRQ_MATCH_BAND = 0.5  # FRQ scores this close count as matching
TIME_WINDOW_SECONDS = 60.0
MIN_TIME_CLUSTER = 3

# Sybil detection
SYBIL_THRESHOLD = 0.9
SEQUENTIAL_KEY_SIMILARITY = 0.95

# Gaming strategies
MIN_HISTORY_FOR_STRATEGIES = 3
RAPID_FIRE_AVERAGE_SECONDS = 10.0
VALUE_PREFERENCE_RATIO = 0.7
MIN_VALUES_FOR_PREFERENCE = 3
MIN_CHOICES_FOR_PATTERN = 5
PATTERN_PERIODS = range(2, 6)
MAX_CLUSTERED_HOURS = 3
MIN_ATTESTATIONS_FOR_CLUSTERING = 5
MAX_RISK = 100

EXTREME_SCORES = (1.0, 5.0)
MIDDLE_SCORE_RANGE = (2.5, 3.5)
EXTREME_CHOICES = ("A", "E")
MIDDLE_CHOICES = ("C",)


class GamingStrategy(str, Enum):
    """Known per-attester gaming strategies."""

    COPY_PASTE = "copy_paste"
    RAPID_FIRE = "rapid_fire"
    ALWAYS_EXTREME = "always_extreme"
    ALWAYS_MIDDLE = "always_middle"
    PATTERN_ANSWER = "pattern_answer"
    TIME_CLUSTERING = "time_clustering"
    SCORE_MANIPULATION = "score_manipulation"


STRATEGY_WEIGHTS: dict[GamingStrategy, int] = {
    GamingStrategy.COPY_PASTE: 30,
    GamingStrategy.RAPID_FIRE: 20,
    GamingStrategy.ALWAYS_EXTREME: 15,
    GamingStrategy.ALWAYS_MIDDLE: 10,
    GamingStrategy.PATTERN_ANSWER: 25,
    GamingStrategy.TIME_CLUSTERING: 15,
    GamingStrategy.SCORE_MANIPULATION: 40,
}

STRATEGY_RECOMMENDATIONS: dict[GamingStrategy, str] = {
    GamingStrategy.COPY_PASTE: "Provide original responses, not copied content",
    GamingStrategy.RAPID_FIRE: "Take time to consider questions carefully",
    GamingStrategy.ALWAYS_EXTREME: "Consider using the full range of scoring options",
    GamingStrategy.ALWAYS_MIDDLE: "Consider using the full range of scoring options",
    GamingStrategy.PATTERN_ANSWER: "Evaluate each question independently",
    GamingStrategy.TIME_CLUSTERING: "Spread attestations across separate sessions",
}

# Reported as not yet detectable rather than as a negative result
UNIMPLEMENTED_STRATEGIES: tuple[GamingStrategy, ...] = (GamingStrategy.SCORE_MANIPULATION,)

NO_STRATEGIES_MESSAGE = "Good attestation behavior detected"
INSUFFICIENT_DATA_MESSAGE = "Insufficient data for pattern detection"


# =============================================================================
# REPORTS
# =============================================================================


@dataclass
class CollusionReport:
    detected: bool
    groups: list[list[str]] = field(default_factory=list)
    confidence: float = 0.0
    evidence: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "detected": self.detected,
            "groups": self.groups,
            "confidence": self.confidence,
            "evidence": self.evidence,
        }


@dataclass
class SybilReport:
    detected: bool
    suspects: list[str] = field(default_factory=list)
    master_account: str | None = None
    confidence: float = 0.0
    patterns: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "detected": self.detected,
            "suspects": self.suspects,
            "master_account": self.master_account,
            "confidence": self.confidence,
            "patterns": self.patterns,
        }


@dataclass
class StrategyReport:
    user_id: str
    strategies: list[GamingStrategy] = field(default_factory=list)
    risk_score: int = 0
    recommendations: list[str] = field(default_factory=list)
    unimplemented: list[GamingStrategy] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "strategies": [s.value for s in self.strategies],
            "risk_score": self.risk_score,
            "recommendations": self.recommendations,
            "unimplemented": [s.value for s in self.unimplemented],
        }


# =============================================================================
# HELPERS
# =============================================================================


def group_by_user(attestations: Sequence[Attestation]) -> dict[str, list[Attestation]]:
    grouped: dict[str, list[Attestation]] = defaultdict(list)
    for attestation in attestations:
        grouped[attestation.attester_id].append(attestation)
    return grouped


def answers_match(a: Attestation, b: Attestation) -> bool:
    """MCQ: same digest. FRQ: scores within half a point."""
    if isinstance(a.answer, McqAnswer) and isinstance(b.answer, McqAnswer):
        return a.answer.digest == b.answer.digest
    if isinstance(a.answer, FrqAnswer) and isinstance(b.answer, FrqAnswer):
        return abs(a.answer.score - b.answer.score) <= FRQ_MATCH_BAND
    return False


def answer_similarity(first: Sequence[Attestation], second: Sequence[Attestation]) -> float:
    """Share of matching answers over questions both users answered."""
    if not first or not second:
        return 0.0
    by_question: dict[str, list[Attestation]] = defaultdict(list)
    for attestation in second:
        by_question[attestation.question_id].append(attestation)

    matches = 0
    comparisons = 0
    for a in first:
        for b in by_question.get(a.question_id, ()):
            comparisons += 1
            if answers_match(a, b):
                matches += 1
    return matches / comparisons if comparisons else 0.0


def intervals(attestations: Sequence[Attestation]) -> list[float]:
    """Seconds between consecutive attestations, in time order."""
    ordered = sorted(attestations, key=lambda a: a.timestamp)
    return [(b.timestamp - a.timestamp).total_seconds() for a, b in zip(ordered, ordered[1:])]


def timing_similarity(first: Sequence[Attestation], second: Sequence[Attestation]) -> float:
    gaps1 = intervals(first)
    gaps2 = intervals(second)
    if not gaps1 or not gaps2:
        return 0.0
    avg1 = sum(gaps1) / len(gaps1)
    avg2 = sum(gaps2) / len(gaps2)
    largest = max(avg1, avg2)
    if largest <= 0:
        return 0.0
    return 1.0 - abs(avg1 - avg2) / largest


def string_similarity(a: str, b: str) -> float:
    """Normalised similarity ``(max_len - distance) / max_len``."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return (longest - Levenshtein.distance(a, b)) / longest


def choice_letters(attestations: Sequence[Attestation]) -> list[str]:
    """MCQ letters in time order, from plaintext or digest reverse lookup."""
    letters = []
    for attestation in sorted(attestations, key=lambda a: a.timestamp):
        if isinstance(attestation.answer, McqAnswer):
            letter = attestation.answer.letter
            if letter:
                letters.append(letter)
    return letters


# =============================================================================
# COLLUSION
# =============================================================================


def _time_clusters(attestations: Sequence[Attestation]) -> tuple[list[list[str]], list[str]]:
    by_question: dict[str, list[Attestation]] = defaultdict(list)
    for attestation in attestations:
        by_question[attestation.question_id].append(attestation)

    groups: list[list[str]] = []
    evidence: list[str] = []
    for question_id, question_atts in by_question.items():
        ordered = sorted(question_atts, key=lambda a: a.timestamp)
        runs: list[list[Attestation]] = [[ordered[0]]]
        for prev, cur in zip(ordered, ordered[1:]):
            if (cur.timestamp - prev.timestamp).total_seconds() <= TIME_WINDOW_SECONDS:
                runs[-1].append(cur)
            else:
                runs.append([cur])

        for run in runs:
            users = list(dict.fromkeys(a.attester_id for a in run))
            if len(users) >= MIN_TIME_CLUSTER:
                groups.append(users)
                evidence.append(f"{len(users)} users answered question {question_id} within 1 minute")
    return groups, evidence


def detect_collusion(users: Sequence[str], attestations: Sequence[Attestation]) -> CollusionReport:
    """Find groups of users whose answers agree suspiciously often.

    Pairs above the threshold join the first existing group that shares a
    member, otherwise they start a new group. Time clusters are appended as
    extra groups.
    """
    by_user = group_by_user(attestations)
    groups: list[list[str]] = []
    evidence: list[str] = []
    max_similarity = 0.0

    for i, first in enumerate(users):
        for second in users[i + 1 :]:
            similarity = answer_similarity(by_user.get(first, []), by_user.get(second, []))
            if similarity <= COLLUSION_THRESHOLD:
                continue

            for group in groups:
                if first in group or second in group:
                    for user in (first, second):
                        if user not in group:
                            group.append(user)
                    break
            else:
                groups.append([first, second])

            evidence.append(f"Users {first} and {second} have {similarity * 100:.1f}% similar answers")
            max_similarity = max(max_similarity, similarity)

    time_groups, time_evidence = _time_clusters(attestations)
    groups.extend(time_groups)
    evidence.extend(time_evidence)

    if groups:
        logger.warning(f"Collusion signals: {len(groups)} group(s) across {len(users)} users")

    return CollusionReport(
        detected=bool(groups),
        groups=groups,
        confidence=max_similarity,
        evidence=evidence,
    )


# =============================================================================
# SYBIL
# =============================================================================


def detect_sequential_keys(keys: Sequence[str]) -> list[str]:
    """Identities whose sorted neighbours are near-identical strings."""
    ordered = sorted(keys)
    flagged: list[str] = []
    for prev, cur in zip(ordered, ordered[1:]):
        if string_similarity(prev, cur) > SEQUENTIAL_KEY_SIMILARITY:
            flagged.extend((prev, cur))
    return list(dict.fromkeys(flagged))


def detect_sybils(attestations: Sequence[Attestation]) -> SybilReport:
    """Flag identities that behave like one actor."""
    by_user = group_by_user(attestations)
    users = list(by_user)
    suspects: list[str] = []
    patterns: list[str] = []
    master: str | None = None
    max_similarity = 0.0

    for i, first in enumerate(users):
        for second in users[i + 1 :]:
            own1, own2 = by_user[first], by_user[second]
            overall = (timing_similarity(own1, own2) + answer_similarity(own1, own2)) / 2
            if overall <= SYBIL_THRESHOLD:
                continue
            suspects.extend((first, second))
            patterns.append(f"Users {first} and {second} show sybil-like behavior")
            master = first if len(own1) > len(own2) else second
            max_similarity = max(max_similarity, overall)

    sequential = detect_sequential_keys(users)
    if sequential:
        patterns.append(f"Sequential key generation detected: {', '.join(sequential)}")
        suspects.extend(sequential)

    unique_suspects = list(dict.fromkeys(suspects))
    if unique_suspects:
        logger.warning(f"Sybil signals: {len(unique_suspects)} suspect identities")

    return SybilReport(
        detected=bool(unique_suspects),
        suspects=unique_suspects,
        master_account=master,
        confidence=max_similarity,
        patterns=patterns,
    )


# =============================================================================
# GAMING STRATEGIES
# =============================================================================


def _detect_copy_paste(history: Sequence[Attestation]) -> bool:
    texts = frq_texts(history)
    return len(texts) >= 2 and uniqueness_ratio(texts) < COPY_PASTE_UNIQUENESS


def _detect_rapid_fire(history: Sequence[Attestation]) -> bool:
    gaps = intervals(history)
    if len(history) < MIN_HISTORY_FOR_STRATEGIES or not gaps:
        return False
    return sum(gaps) / len(gaps) < RAPID_FIRE_AVERAGE_SECONDS


def _preference_of(values: Sequence, is_extreme, is_middle) -> GamingStrategy | None:
    if len(values) < MIN_VALUES_FOR_PREFERENCE:
        return None
    if sum(1 for v in values if is_extreme(v)) / len(values) >= VALUE_PREFERENCE_RATIO:
        return GamingStrategy.ALWAYS_EXTREME
    if sum(1 for v in values if is_middle(v)) / len(values) >= VALUE_PREFERENCE_RATIO:
        return GamingStrategy.ALWAYS_MIDDLE
    return None


def _detect_value_preference(history: Sequence[Attestation]) -> list[GamingStrategy]:
    """Extreme or middle preference, judged separately for FRQ scores and MCQ letters."""
    scores = [a.answer.score for a in history if isinstance(a.answer, FrqAnswer)]
    found = [
        _preference_of(
            scores,
            lambda s: s in EXTREME_SCORES,
            lambda s: MIDDLE_SCORE_RANGE[0] <= s <= MIDDLE_SCORE_RANGE[1],
        ),
        _preference_of(choice_letters(history), lambda c: c in EXTREME_CHOICES, lambda c: c in MIDDLE_CHOICES),
    ]
    return list(dict.fromkeys(s for s in found if s is not None))


def _detect_pattern_answering(history: Sequence[Attestation]) -> bool:
    letters = choice_letters(history)
    if len(letters) < MIN_CHOICES_FOR_PATTERN:
        return False
    # A period must repeat at least once to count
    return any(
        all(letters[i] == letters[i % period] for i in range(period, len(letters)))
        for period in PATTERN_PERIODS
        if period < len(letters)
    )


def _detect_time_clustering(history: Sequence[Attestation]) -> bool:
    if len(history) < MIN_ATTESTATIONS_FOR_CLUSTERING:
        return False
    hours = {a.timestamp.utctimetuple().tm_hour for a in history}
    return len(hours) <= MAX_CLUSTERED_HOURS


def detect_gaming_strategies(user_id: str, history: Sequence[Attestation]) -> StrategyReport:
    """Enumerate gaming strategies in one user's attestation history.

    ``history`` may include other users' attestations; only ``user_id``'s
    are considered.
    """
    own = [a for a in history if a.attester_id == user_id]
    if len(own) < MIN_HISTORY_FOR_STRATEGIES:
        return StrategyReport(user_id=user_id, recommendations=[INSUFFICIENT_DATA_MESSAGE])

    strategies: list[GamingStrategy] = []
    if _detect_copy_paste(own):
        strategies.append(GamingStrategy.COPY_PASTE)
    if _detect_rapid_fire(own):
        strategies.append(GamingStrategy.RAPID_FIRE)
    strategies.extend(_detect_value_preference(own))
    if _detect_pattern_answering(own):
        strategies.append(GamingStrategy.PATTERN_ANSWER)
    if _detect_time_clustering(own):
        strategies.append(GamingStrategy.TIME_CLUSTERING)

    risk = min(MAX_RISK, sum(STRATEGY_WEIGHTS[s] for s in strategies))
    recommendations = list(dict.fromkeys(STRATEGY_RECOMMENDATIONS[s] for s in strategies))
    if not strategies:
        recommendations.append(NO_STRATEGIES_MESSAGE)

    if strategies:
        logger.info(f"Gaming strategies for {user_id}: {[s.value for s in strategies]} (risk {risk})")

    return StrategyReport(
        user_id=user_id,
        strategies=strategies,
        risk_score=risk,
        recommendations=recommendations,
        unimplemented=list(UNIMPLEMENTED_STRATEGIES),
    )
