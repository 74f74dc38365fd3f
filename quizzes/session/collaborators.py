"""
Contracts for the services the take-quiz engine depends on.
Concrete transports live in ``quizzes.session.clients``.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

from quizzes.conf import UNSET
from quizzes.questions import QuestionDef
from .records import QuizSnapshot, SubmissionSnapshot

logger = logging.getLogger(__name__)


class QuizClient(ABC):
    """Persistence/query service. Every method may raise a QuizError subclass."""

    # Authoring
    @abstractmethod
    async def create_quiz(self, title: str, time_limit_minutes: Optional[int] = None) -> QuizSnapshot:
        pass

    @abstractmethod
    async def list_quizzes(self, **filters) -> list:
        pass

    @abstractmethod
    async def get_quiz(self, quiz_id: int, role: str = 'learner') -> QuizSnapshot:
        pass

    @abstractmethod
    async def create_question(self, quiz_id: int, defn: QuestionDef) -> QuestionDef:
        pass

    @abstractmethod
    async def update_question(self, question_id: int, changes: dict) -> QuestionDef:
        pass

    @abstractmethod
    async def delete_question(self, question_id: int) -> None:
        pass

    # Taking
    @abstractmethod
    async def start_submission(self, quiz_id: int, learner_name: Optional[str] = None) -> SubmissionSnapshot:
        pass

    @abstractmethod
    async def upsert_answers(self, submission_id: int, answers: list) -> None:
        pass

    @abstractmethod
    async def submit(self, submission_id: int) -> Optional[int]:
        pass

    # Grading
    @abstractmethod
    async def list_submissions(self, quiz_id: int) -> list:
        pass

    @abstractmethod
    async def grade_answer(self, answer_id: int, mark, feedback=UNSET) -> Optional[int]:
        pass

    @abstractmethod
    async def set_submission_feedback(self, submission_id: int, feedback=UNSET, override=UNSET) -> Optional[int]:
        pass


class BlobStorage(ABC):
    @abstractmethod
    async def upload(self, data: bytes, mime_type: str, file_name: Optional[str] = None) -> str:
        """Store bytes and return a durable URL. Raises UploadFailure."""


class Notifier(ABC):
    """Confirm/alert surface owned by the UI."""

    @abstractmethod
    async def confirm(self, message: str) -> bool:
        pass

    @abstractmethod
    async def alert(self, message: str) -> None:
        pass


class AudioStream(ABC):
    mime_type: str = 'audio/webm'

    @abstractmethod
    def level(self) -> float:
        """Current input level between 0.0 and 1.0."""

    @abstractmethod
    async def stop(self) -> bytes:
        """Finish recording and return the encoded audio."""

    @abstractmethod
    def release(self) -> None:
        """Free the underlying device."""


class AudioSource(ABC):
    @abstractmethod
    async def open(self, device_id: Optional[str] = None, mime_types=()) -> AudioStream:
        """Start capturing. Raises DeviceUnavailable when permission or hardware is missing."""


class LoggingNotifier(Notifier):
    """Headless notifier: confirms everything and logs alerts."""

    async def confirm(self, message):
        logger.info(f"Auto-confirming: {message}")
        return True

    async def alert(self, message):
        logger.warning(f"Alert: {message}")
