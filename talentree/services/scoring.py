"""
Scoring engine: answer correctness and response totals.

Everything here is pure. The response ledger loads answers and questions,
hands them over as `SheetItem`s and writes the results back.
"""
from dataclasses import dataclass
from typing import Any, FrozenSet, Iterable, List, Optional, Sequence, Tuple, Union


@dataclass(frozen=True)
class Scalar:
    """A single submitted value, compared by its text form."""
    text: str


@dataclass(frozen=True)
class MultiChoice:
    """A list of selected options, compared as a set."""
    values: Tuple[str, ...]


AnswerValue = Union[Scalar, MultiChoice]


def _text(raw: Any) -> str:
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, float) and raw.is_integer():
        return str(int(raw))
    return str(raw)


def to_answer_value(raw: Any) -> AnswerValue:
    """Normalise a stored JSON value into the tagged answer variant."""
    if isinstance(raw, (list, tuple)):
        return MultiChoice(tuple(_text(v) for v in raw))
    return Scalar(_text(raw))


def normalize_correct_answers(values: Optional[Iterable[Any]]) -> Optional[List[str]]:
    """Collapse duplicates and treat an empty key as "manual grading only"."""
    if values is None:
        return None
    seen: List[str] = []
    for v in values:
        t = _text(v)
        if t not in seen:
            seen.append(t)
    return seen or None


def is_correct(value: AnswerValue, correct_answers: Iterable[str]) -> bool:
    correct = frozenset(correct_answers)
    if isinstance(value, MultiChoice):
        # Same size and same members: order is irrelevant, repeats earn nothing.
        return len(value.values) == len(correct) and set(value.values) == correct
    if isinstance(value, Scalar):
        return value.text in correct
    raise TypeError(f"Unsupported answer value: {value!r}")


def is_passing(score: int, passing_score: Optional[int]) -> bool:
    return passing_score is not None and score >= passing_score


@dataclass(frozen=True)
class SheetItem:
    """One answered question as seen by the scoring engine."""
    points: int
    correct_answers: Optional[FrozenSet[str]]
    value: AnswerValue
    score: Optional[int] = None

    @property
    def auto_gradable(self) -> bool:
        return bool(self.correct_answers)


@dataclass(frozen=True)
class Grade:
    is_correct: bool
    score: int


@dataclass(frozen=True)
class ScoreSummary:
    score: int
    max_score: int
    passed: bool


def grade(item: SheetItem) -> Optional[Grade]:
    """Grade one answer against its key, or None when the question needs a human."""
    if not item.auto_gradable:
        return None
    ok = is_correct(item.value, item.correct_answers)
    return Grade(is_correct=ok, score=item.points if ok else 0)


def auto_evaluate(items: Sequence[SheetItem], passing_score: Optional[int]) -> Tuple[List[Optional[Grade]], ScoreSummary]:
    """
    Grade every auto-gradable answer and total the sheet.

    The max score covers every answered question; the score only counts
    auto-graded answers. Manually graded answers are left untouched and only
    enter the total through `recalculate`.
    """
    grades: List[Optional[Grade]] = []
    total = 0
    max_score = 0
    for item in items:
        max_score += item.points
        g = grade(item)
        grades.append(g)
        if g is not None:
            total += g.score
    return grades, ScoreSummary(score=total, max_score=max_score, passed=is_passing(total, passing_score))


def recalculate(items: Iterable[SheetItem], passing_score: Optional[int]) -> ScoreSummary:
    """Totals from the answers' current scores, however they were graded."""
    total = 0
    max_score = 0
    for item in items:
        max_score += item.points
        total += item.score or 0
    return ScoreSummary(score=total, max_score=max_score, passed=is_passing(total, passing_score))
