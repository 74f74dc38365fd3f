"""
Aggregate scoring over a whole submission.

Every question's points count toward the total. A question contributes to the
awarded sum once it has a result: a manual mark if one was entered, otherwise
an automatic result for select types. Ungraded manual questions count as zero,
so the score only rises as marks come in.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional

from quizzes.exceptions import InvalidGrade
from quizzes.questions import to_decimal
from .automatic import compute_automatic

HUNDRED = Decimal('100')


def awarded_points(question, answer) -> Optional[Decimal]:
    """Points awarded for one question, or None while it awaits a manual mark."""
    if answer is not None and getattr(answer, 'mark', None) is not None:
        return to_decimal(answer.mark)
    result = compute_automatic(question, answer)
    if result is None:
        return None
    return result.points_awarded


def compute_aggregate(questions, answers) -> Optional[int]:
    """
    Percentage score (0-100, half-up rounding) for a submission.

    Returns None when no question has a result yet or the quiz is worth no points.
    """
    by_question = {answer.question_id: answer for answer in answers}
    total = Decimal('0')
    awarded = Decimal('0')
    has_result = False

    for question in questions:
        total += to_decimal(question.points)
        points = awarded_points(question, by_question.get(question.id))
        if points is not None:
            has_result = True
            awarded += points

    if not has_result or total <= 0:
        return None
    score = (awarded * HUNDRED / total).quantize(Decimal('1'), rounding=ROUND_HALF_UP)
    return max(0, min(100, int(score)))


def effective_score(score, override):
    return override if override is not None else score


def _as_number(value, what):
    if isinstance(value, bool):
        raise InvalidGrade(f"{what} must be a number.")
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidGrade(f"{what} must be a number.")
    if not number.is_finite():
        raise InvalidGrade(f"{what} must be a number.")
    return number


def validate_mark(question, mark) -> Optional[Decimal]:
    """A manual mark must lie in [0, question.points]; None clears it."""
    if mark is None:
        return None
    value = _as_number(mark, "Mark")
    max_points = to_decimal(question.points)
    if value < 0 or value > max_points:
        raise InvalidGrade(f"Mark must be between 0 and {max_points}.")
    return value


def validate_override(override) -> Optional[int]:
    """A score override must be a whole number in [0, 100]; None clears it."""
    if override is None:
        return None
    value = _as_number(override, "Score override")
    if value < 0 or value > HUNDRED:
        raise InvalidGrade("Score override must be between 0 and 100.")
    if value != value.to_integral_value():
        raise InvalidGrade("Score override must be a whole number.")
    return int(value)
