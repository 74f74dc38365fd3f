"""Client-side answer buffer with periodic flushes to the persistence service."""
import asyncio
import logging

from django.utils import timezone

from quizzes.conf import engine_setting
from quizzes.exceptions import QuizError
from .answers import MediaAnswer, check_shape, to_payload

logger = logging.getLogger(__name__)


class AutosaveBuffer:
    """
    Latest answer per question for one submission.

    ``flush`` always sends the whole buffer, so repeating it is harmless.
    Media answers whose upload has not finished are left out until they
    have a durable reference.
    """

    def __init__(self, client, submission_id, questions, interval=None):
        self._client = client
        self.submission_id = submission_id
        self._questions = {q.id: q for q in questions}
        self.interval = interval if interval is not None else engine_setting('AUTOSAVE_INTERVAL_SECONDS')
        self._answers = {}
        self._retries = {}
        self.last_flushed_at = None

    def __contains__(self, question_id):
        return question_id in self._answers

    def __len__(self):
        return len(self._answers)

    def _question(self, question_id):
        try:
            return self._questions[question_id]
        except KeyError:
            raise QuizError(f"Question {question_id} is not part of this quiz.")

    def record(self, question_id, answer):
        check_shape(self._question(question_id), answer)
        self._answers[question_id] = answer

    def prefill(self, question_id, answer):
        """Load a saved answer without shape checks."""
        if question_id in self._questions:
            self._answers[question_id] = answer

    def get(self, question_id):
        return self._answers.get(question_id)

    def snapshot(self) -> dict:
        return dict(self._answers)

    def payloads(self) -> list:
        payloads = []
        for question_id, answer in self._answers.items():
            payload = to_payload(self._questions[question_id], answer)
            if payload is not None:
                payloads.append(payload)
        return payloads

    def flag_upload_retry(self, question_id, retry):
        """Register a callable that restarts a failed upload on the next flush."""
        self._retries[question_id] = retry

    def clear_upload_retry(self, question_id):
        self._retries.pop(question_id, None)

    def restart_uploads(self) -> list:
        """Restart every flagged upload; returns the new upload tasks."""
        retries, self._retries = self._retries, {}
        tasks = [retry() for retry in retries.values()]
        return [task for task in tasks if task is not None]

    def pending_media(self) -> list:
        """Question ids whose media answer only has a local reference."""
        return [
            question_id for question_id, answer in self._answers.items()
            if isinstance(answer, MediaAnswer) and answer.local_ref and not answer.is_durable
        ]

    async def flush(self) -> int:
        """Persist the buffer; returns how many answers were sent."""
        payloads = self.payloads()
        self.restart_uploads()

        if not payloads:
            return 0
        await self._client.upsert_answers(self.submission_id, payloads)
        self.last_flushed_at = timezone.now()
        logger.debug(f"Flushed {len(payloads)} answers for submission {self.submission_id}")
        return len(payloads)

    async def run(self):
        """Flush every ``interval`` seconds until cancelled."""
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.flush()
            except QuizError as exc:
                logger.warning(f"Autosave for submission {self.submission_id} failed: {exc.message}")
