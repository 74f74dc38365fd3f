from .quiz_service import QuizService, UNSET, INSTRUCTOR, LEARNER
from .storage import MediaStorageService

__all__ = ['QuizService', 'MediaStorageService', 'UNSET', 'INSTRUCTOR', 'LEARNER']
