"""
Automatic grading for select-type questions.
All-or-nothing: the selected set must equal the answer key exactly.
"""
from decimal import Decimal
from typing import Optional

from quizzes.questions import QuestionType, SELECT_TYPES, to_decimal
from .base import GradingResult

AUTOMATIC = 'automatic'


def selected_set(answer) -> frozenset:
    if answer is None:
        return frozenset()
    selected = getattr(answer, 'selected_options', None) or []
    return frozenset(str(option) for option in selected)


def is_auto_gradable(question) -> bool:
    return question.question_type in SELECT_TYPES


def compute_automatic(question, answer) -> Optional[GradingResult]:
    """
    Grade ``answer`` against the question's current answer key.

    Returns None for question types that need a manual mark. An unanswered
    select question is graded as incorrect. An empty answer key never matches.
    """
    if not is_auto_gradable(question):
        return None

    max_points = to_decimal(question.points)
    selected = selected_set(answer)
    correct = frozenset(str(option) for option in (question.correct_answers or []))

    if question.question_type == QuestionType.SINGLE_SELECT:
        is_correct = len(correct) == 1 and selected == correct
    else:
        is_correct = bool(correct) and selected == correct

    return GradingResult(
        points_awarded=max_points if is_correct else Decimal('0'),
        max_points=max_points,
        is_correct=is_correct,
        grading_method=AUTOMATIC,
    )
