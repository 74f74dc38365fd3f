"""
Question model shared by authoring and the take-quiz flow.

Questions are typed; media-prompt questions may own sub-questions, which are
shown right after their parent. Both the authoring view and learner navigation
index into the sequence produced by ``flatten`` so positions agree.
"""
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Optional

from django.db import models

from .exceptions import ValidationError


class QuestionType(models.TextChoices):
    FREE_TEXT = 'free_text', 'Free Text'
    SINGLE_SELECT = 'single_select', 'Single Select'
    MULTI_SELECT = 'multi_select', 'Multi Select'
    AUDIO_RECORDING = 'audio_recording', 'Audio Recording'
    MEDIA_PROMPT = 'media_prompt', 'Watch + Answer'
    FILE_UPLOAD = 'file_upload', 'File Upload'


SELECT_TYPES = (QuestionType.SINGLE_SELECT, QuestionType.MULTI_SELECT)
TEXT_TYPES = (QuestionType.FREE_TEXT, QuestionType.MEDIA_PROMPT)
MEDIA_TYPES = (QuestionType.AUDIO_RECORDING, QuestionType.FILE_UPLOAD)


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"'{value}' is not a number.", field='points')


@dataclass
class QuestionDef:
    """Plain question record used outside the ORM (engine, HTTP client)."""
    question_type: str
    prompt: str
    points: Decimal = Decimal('1')
    options: list = field(default_factory=list)
    correct_answers: list = field(default_factory=list)
    media_url: str = ''
    order: Optional[int] = None
    parent_id: Optional[int] = None
    quiz_id: Optional[int] = None
    id: Optional[int] = None

    @property
    def is_select(self) -> bool:
        return self.question_type in SELECT_TYPES

    @classmethod
    def from_dict(cls, data: dict) -> 'QuestionDef':
        return cls(
            id=data.get('id'),
            quiz_id=data.get('quiz'),
            question_type=data.get('question_type', ''),
            prompt=data.get('prompt', ''),
            points=to_decimal(data.get('points', 1)),
            options=list(data.get('options') or []),
            correct_answers=list(data.get('correct_answers') or []),
            media_url=data.get('media_url') or '',
            order=data.get('order'),
            parent_id=data.get('parent'),
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'quiz': self.quiz_id,
            'question_type': self.question_type,
            'prompt': self.prompt,
            'points': str(self.points),
            'options': list(self.options),
            'correct_answers': list(self.correct_answers),
            'media_url': self.media_url,
            'order': self.order,
            'parent': self.parent_id,
        }


def validate_question(defn, parent=None):
    """
    Check a question definition and return it with options cleaned.

    ``parent`` is the parent question (any object with ``question_type``) when
    ``defn`` is a sub-question. Raises ValidationError on the first problem.
    """
    if defn.question_type not in QuestionType.values:
        raise ValidationError(f"Unknown question type '{defn.question_type}'.", field='question_type')

    if not (defn.prompt or '').strip():
        raise ValidationError("Question text is required.", field='prompt')
    defn.prompt = defn.prompt.strip()

    points = to_decimal(defn.points)
    if points < 0:
        raise ValidationError("Points cannot be negative.", field='points')
    defn.points = points

    if defn.question_type in SELECT_TYPES:
        options = [str(o).strip() for o in (defn.options or []) if str(o).strip()]
        if len(options) < 2:
            raise ValidationError("At least 2 options required.", field='options')
        if len(set(options)) != len(options):
            raise ValidationError("Options must be unique.", field='options')
        correct = [str(c).strip() for c in (defn.correct_answers or []) if str(c).strip()]
        unknown = [c for c in correct if c not in options]
        if unknown:
            raise ValidationError(
                f"Correct answers not among options: {', '.join(unknown)}", field='correct_answers'
            )
        if defn.question_type == QuestionType.SINGLE_SELECT and len(correct) > 1:
            raise ValidationError("Single select questions take one correct answer.", field='correct_answers')
        defn.options = options
        defn.correct_answers = list(dict.fromkeys(correct))
    else:
        defn.options = []
        defn.correct_answers = []

    if defn.question_type == QuestionType.MEDIA_PROMPT:
        if not (defn.media_url or '').strip():
            raise ValidationError("Media prompt questions need a media reference.", field='media_url')
        defn.media_url = defn.media_url.strip()
    else:
        defn.media_url = ''

    if defn.parent_id is not None or parent is not None:
        if defn.question_type == QuestionType.MEDIA_PROMPT:
            raise ValidationError("A sub-question cannot be a media prompt.", field='question_type')
        if parent is not None and parent.question_type != QuestionType.MEDIA_PROMPT:
            raise ValidationError("Only media prompt questions can have sub-questions.", field='parent')

    return defn


def _sort_key(question):
    return (question.order or 0, question.id if question.id is not None else 0)


def flatten(questions):
    """
    Order questions for display: each top-level question by order index, with a
    media prompt immediately followed by its sub-questions.
    """
    questions = list(questions)
    children = {}
    top_level = []
    for question in questions:
        if question.parent_id is None:
            top_level.append(question)
        else:
            children.setdefault(question.parent_id, []).append(question)

    ordered = []
    for question in sorted(top_level, key=_sort_key):
        ordered.append(question)
        ordered.extend(sorted(children.pop(question.id, []), key=_sort_key))

    # Sub-questions whose parent is missing from the input keep their relative order at the end.
    for orphans in children.values():
        ordered.extend(sorted(orphans, key=_sort_key))
    return ordered
