from .quiz import Quiz
from .question import Question
from .submission import Submission
from .answer import Answer
from .audit import AuditLog
from .user_profile import UserProfile

__all__ = [
    'Quiz', 'Question', 'Submission', 'Answer',
    'AuditLog', 'UserProfile',
]
