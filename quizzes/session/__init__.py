"""
Learner-side quiz engine.

``TakeQuizSession`` drives one attempt; concrete collaborators live in
``quizzes.session.clients`` so this package imports without the ORM.
"""
from .answers import MediaAnswer, MultiChoiceAnswer, SingleChoiceAnswer, TextAnswer
from .autosave import AutosaveBuffer
from .capture import CaptureHandle, CaptureResult, LocalPreview, MediaCaptureAdapter
from .collaborators import AudioSource, AudioStream, BlobStorage, LoggingNotifier, Notifier, QuizClient
from .machine import Phase, TakeQuizState
from .records import AnswerSnapshot, QuizSnapshot, SubmissionSnapshot
from .runner import TakeQuizSession

__all__ = [
    'TakeQuizSession', 'TakeQuizState', 'Phase',
    'AutosaveBuffer', 'MediaCaptureAdapter', 'CaptureHandle', 'CaptureResult', 'LocalPreview',
    'TextAnswer', 'SingleChoiceAnswer', 'MultiChoiceAnswer', 'MediaAnswer',
    'QuizClient', 'BlobStorage', 'Notifier', 'LoggingNotifier', 'AudioSource', 'AudioStream',
    'QuizSnapshot', 'SubmissionSnapshot', 'AnswerSnapshot',
]
