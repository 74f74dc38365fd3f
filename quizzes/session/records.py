"""Plain snapshots of server records as seen by the learner engine."""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from django.utils.dateparse import parse_datetime

from quizzes.questions import QuestionDef, to_decimal


def _parse_dt(value):
    if value is None or isinstance(value, datetime):
        return value
    return parse_datetime(value)


@dataclass
class QuizSnapshot:
    id: int
    title: str
    status: str
    time_limit_minutes: Optional[int] = None
    questions: list = field(default_factory=list)

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data['id'],
            title=data.get('title', ''),
            status=data.get('status', ''),
            time_limit_minutes=data.get('time_limit_minutes'),
            questions=[QuestionDef.from_dict(q) for q in data.get('questions') or []],
        )


@dataclass
class AnswerSnapshot:
    id: int
    question_id: int
    answer_text: str = ''
    selected_options: Optional[list] = None
    media_url: str = ''
    file_name: str = ''
    mark: Optional[Decimal] = None
    feedback: str = ''

    @classmethod
    def from_dict(cls, data):
        mark = data.get('mark')
        return cls(
            id=data['id'],
            question_id=data['question'],
            answer_text=data.get('answer_text') or '',
            selected_options=data.get('selected_options'),
            media_url=data.get('media_url') or '',
            file_name=data.get('file_name') or '',
            mark=to_decimal(mark) if mark is not None else None,
            feedback=data.get('feedback') or '',
        )


@dataclass
class SubmissionSnapshot:
    id: int
    quiz_id: int
    learner_name: str
    started_at: datetime
    submitted_at: Optional[datetime] = None
    score: Optional[int] = None
    score_override: Optional[int] = None
    overall_feedback: str = ''
    answers: list = field(default_factory=list)

    @property
    def is_submitted(self):
        return self.submitted_at is not None

    @property
    def effective_score(self):
        return self.score_override if self.score_override is not None else self.score

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data['id'],
            quiz_id=data['quiz'],
            learner_name=data.get('learner_name', ''),
            started_at=_parse_dt(data['started_at']),
            submitted_at=_parse_dt(data.get('submitted_at')),
            score=data.get('score'),
            score_override=data.get('score_override'),
            overall_feedback=data.get('overall_feedback') or '',
            answers=[AnswerSnapshot.from_dict(a) for a in data.get('answers') or []],
        )
