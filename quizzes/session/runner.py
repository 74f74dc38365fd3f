"""The take-quiz session: drives the state machine against real collaborators."""
import asyncio
import logging
from functools import partial

from django.utils import timezone

from quizzes.conf import engine_setting
from quizzes.exceptions import (
    DeviceUnavailable, QuizError, StateConflict, SubmitFailure, UploadFailure, ValidationError,
)
from quizzes.questions import QuestionType, flatten
from . import machine
from .answers import (
    MediaAnswer, MultiChoiceAnswer, SingleChoiceAnswer, TextAnswer, check_shape, empty_answer,
    from_saved, is_answered,
)
from .autosave import AutosaveBuffer
from .collaborators import LoggingNotifier
from .machine import Phase, TakeQuizState

logger = logging.getLogger(__name__)


class TakeQuizSession:
    """
    One learner taking one quiz.

    Usage::

        async with TakeQuizSession(client, quiz_id, media=adapter) as session:
            session.write_text('Paris')
            await session.next()
            await session.request_submit()
    """

    def __init__(self, client, quiz_id, learner_name=None, media=None, notifier=None, clock=None,
                 autosave_interval=None, deadline_tick=None):
        self._client = client
        self.quiz_id = quiz_id
        self.learner_name = learner_name
        self._media = media
        self._notifier = notifier or LoggingNotifier()
        self._clock = clock or timezone.now
        self._autosave_interval = autosave_interval
        self._tick = deadline_tick or engine_setting('DEADLINE_TICK_SECONDS')

        self.state = TakeQuizState()
        self.quiz = None
        self.submission = None
        self.questions = []
        self.buffer = None
        self._by_id = {}
        self._active = False
        self._timers = []
        self._submit_lock = asyncio.Lock()
        self._capture = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # Loading

    async def start(self):
        submission = await self._client.start_submission(self.quiz_id, learner_name=self.learner_name)
        quiz = await self._client.get_quiz(self.quiz_id, role='learner')
        self.submission = submission
        self.quiz = quiz
        self.questions = flatten(quiz.questions)
        self._by_id = {q.id: q for q in self.questions}
        self.buffer = AutosaveBuffer(self._client, submission.id, self.questions, interval=self._autosave_interval)
        for saved in submission.answers:
            question = self._by_id.get(saved.question_id)
            if question is not None:
                self.buffer.prefill(question.id, from_saved(question, saved))

        question_ids = [q.id for q in self.questions]
        if submission.is_submitted:
            self.state = machine.enter_done(self.state, question_ids, submission.effective_score)
            logger.info(f"Submission {submission.id} was already submitted")
            return self.state

        self.state = machine.enter_active(self.state, question_ids, submission.started_at, quiz.time_limit_minutes)
        self._active = True
        logger.info(
            f"Started quiz {quiz.id} (submission {submission.id}, {len(question_ids)} questions, "
            f"deadline {self.state.deadline})"
        )

        if machine.is_expired(self.state, self._clock()):
            logger.info(f"Time already expired for submission {submission.id}")
            await self._force_submit()
            return self.state

        self._timers.append(asyncio.create_task(self.buffer.run()))
        if self.state.deadline is not None:
            self._timers.append(asyncio.create_task(self._watch_deadline()))
        return self.state

    async def _watch_deadline(self):
        while self.state.phase == Phase.ACTIVE:
            if machine.is_expired(self.state, self._clock()):
                logger.info(f"Time is up for submission {self.submission.id}")
                await self._force_submit()
                return
            remaining = machine.remaining_seconds(self.state, self._clock())
            await asyncio.sleep(min(remaining, self._tick))

    async def _force_submit(self):
        try:
            await self.submit(forced=True)
        except SubmitFailure as exc:
            logger.warning(f"Forced submit of {self.submission.id} failed, waiting for retry: {exc.message}")

    # Questions and answers

    @property
    def current_question(self):
        return self._by_id.get(self.state.current_question_id)

    @property
    def position(self):
        return self.state.index + 1, len(self.questions)

    def remaining_seconds(self):
        return machine.remaining_seconds(self.state, self._clock())

    def answer_for(self, question_id=None):
        question = self._question(question_id)
        return self.buffer.get(question.id)

    def _question(self, question_id=None):
        if question_id is None:
            question = self.current_question
        else:
            question = self._by_id.get(question_id)
        if question is None:
            raise ValidationError(f"No question {question_id}.", field='question_id')
        return question

    def _require_active(self):
        if self.state.phase != Phase.ACTIVE:
            raise StateConflict("The quiz is not accepting answers.")

    def record_answer(self, answer, question_id=None):
        self._require_active()
        question = self._question(question_id)
        check_shape(question, answer)
        self.buffer.record(question.id, answer)
        return answer

    def write_text(self, text):
        return self.record_answer(TextAnswer(text))

    def select_option(self, option):
        question = self._question()
        if question.question_type == QuestionType.MULTI_SELECT:
            current = self.buffer.get(question.id) or MultiChoiceAnswer()
            return self.record_answer(MultiChoiceAnswer(current.options | {option}))
        return self.record_answer(SingleChoiceAnswer(option))

    def toggle_option(self, option):
        question = self._question()
        if question.question_type != QuestionType.MULTI_SELECT:
            raise ValidationError("Only multi select questions toggle options.", field='selected_options')
        current = self.buffer.get(question.id) or empty_answer(question)
        return self.record_answer(current.toggled(option))

    def unanswered(self):
        return [q for q in self.questions if not is_answered(q, self.buffer.get(q.id))]

    # Navigation

    async def next(self) -> bool:
        return await self._move(machine.go_next(self.state))

    async def prev(self) -> bool:
        return await self._move(machine.go_prev(self.state))

    async def go_to(self, index) -> bool:
        return await self._move(machine.go_to(self.state, index))

    async def _move(self, new_state) -> bool:
        if new_state.index == self.state.index:
            return False
        if self._capture is not None and self._capture.slot == self.state.current_question_id:
            await self._cancel_capture()
        self.state = new_state
        return True

    # Media

    @property
    def amplitude(self):
        if self._capture is None or not self._capture.active:
            return 0
        return self._capture.amplitude

    @property
    def is_recording(self):
        return self._capture is not None and self._capture.active

    def _media_question(self, question_type):
        self._require_active()
        question = self._question()
        if question.question_type != question_type:
            raise ValidationError(f"This question does not take a {question_type.label.lower()}.", field='answer')
        return question

    async def start_recording(self, device_id=None):
        question = self._media_question(QuestionType.AUDIO_RECORDING)
        try:
            if self._media is None:
                raise DeviceUnavailable("No audio input configured.")
            self._capture = await self._media.begin_capture(device_id=device_id, slot=question.id)
        except DeviceUnavailable as exc:
            await self._notifier.alert(exc.message)
            raise
        return self._capture

    async def stop_recording(self) -> str:
        """Stop and return the local preview reference."""
        if self._capture is None:
            raise StateConflict("No recording in progress.")
        handle, self._capture = self._capture, None
        try:
            result = await handle.stop()
        except DeviceUnavailable as exc:
            await self._notifier.alert(exc.message)
            raise
        self._stage(result)
        return result.local_ref

    async def _cancel_capture(self):
        handle, self._capture = self._capture, None
        try:
            await handle.cancel()
        except DeviceUnavailable as exc:
            logger.warning(f"Discarding recording failed: {exc.message}")

    async def attach_file(self, data: bytes, file_name: str, mime_type='application/octet-stream') -> str:
        question = self._media_question(QuestionType.FILE_UPLOAD)
        if self._media is None:
            raise UploadFailure("No media storage configured.")
        result = self._media.stage(data, mime_type, file_name=file_name, slot=question.id)
        self._stage(result)
        return result.local_ref

    def _stage(self, result):
        question_id = result.slot
        self.buffer.record(question_id, MediaAnswer(local_ref=result.local_ref, file_name=result.file_name))
        self.buffer.clear_upload_retry(question_id)
        self.state = machine.upload_started(self.state, question_id)
        result.upload.add_done_callback(partial(self._upload_done, result))

    def _upload_done(self, result, task):
        question_id = result.slot
        cancelled = task.cancelled()
        error = None if cancelled else task.exception()
        # A newer capture for the same question, or a closed session, wins.
        if not self._active or self._media.staged(question_id) is not result:
            return
        self.state = machine.upload_settled(self.state, question_id)
        if cancelled:
            return
        if error is None:
            self.buffer.record(
                question_id,
                MediaAnswer(local_ref=result.local_ref, durable_ref=task.result(), file_name=result.file_name),
            )
            return
        logger.warning(f"Keeping local copy for question {question_id} after upload error: {error}")
        self.buffer.record(
            question_id, MediaAnswer(local_ref=result.local_ref, file_name=result.file_name, upload_failed=True),
        )
        self.buffer.flag_upload_retry(question_id, partial(self._retry_upload, result))

    def _retry_upload(self, result):
        if not self._active or self._media.staged(result.slot) is not result:
            return None
        logger.info(f"Retrying upload for question {result.slot}")
        task = self._media.retry_upload(result)
        task.add_done_callback(partial(self._upload_done, result))
        return task

    def _uploads_in_flight(self):
        tasks = []
        for question_id in self.buffer.pending_media():
            result = self._media.staged(question_id)
            if result is not None and not result.upload.done():
                tasks.append(result.upload)
        return tasks

    async def _settle_uploads(self):
        """
        Wait for staged uploads, retrying failed ones once, so that every
        attached file has a durable reference before the attempt closes.
        """
        if self._media is None:
            return
        timeout = engine_setting('UPLOAD_SETTLE_SECONDS')
        remaining = machine.remaining_seconds(self.state, self._clock())
        if remaining is not None:
            timeout = min(timeout, remaining)
        in_flight = self._uploads_in_flight()
        if in_flight:
            logger.info(f"Waiting for {len(in_flight)} uploads before submitting {self.submission.id}")
            await asyncio.wait(in_flight, timeout=timeout)
        retries = self.buffer.restart_uploads()
        if retries:
            await asyncio.wait(retries, timeout=timeout)
        unsaved = self.buffer.pending_media()
        if unsaved:
            raise UploadFailure(f"{len(unsaved)} attached files have not been uploaded yet.")

    # Submitting

    async def request_submit(self):
        """Ask for confirmation, then submit. Returns False if the learner declined."""
        missing = self.unanswered()
        message = "Submit quiz? You cannot change your answers afterwards."
        if missing:
            message = f"{len(missing)} of {len(self.questions)} questions are unanswered. {message}"
        uploading = self.buffer.pending_media()
        if uploading:
            message = f"{message} {len(uploading)} files are still uploading and will be sent first."
        if not await self._notifier.confirm(message):
            return False
        await self.submit()
        return True

    async def submit(self, forced=False):
        """
        Flush and submit. Safe to call concurrently or repeatedly; the first
        successful call wins and later ones return its score.

        A manual submit waits for pending uploads first and fails with
        SubmitFailure if a file still has no durable reference. A forced
        submit at the deadline sends what is durable and moves on.
        """
        async with self._submit_lock:
            if self.state.phase == Phase.DONE:
                return self.state.score
            self.state = machine.begin_submit(self.state, forced=forced)
            self._stop_timers()
            if self._capture is not None:
                await self._cancel_capture()

            try:
                if not self.state.forced and not machine.is_expired(self.state, self._clock()):
                    await self._settle_uploads()
                try:
                    await self.buffer.flush()
                except StateConflict as exc:
                    # Already closed server-side; submit below returns the stored score.
                    logger.info(f"Flush before submit rejected: {exc.message}")
                score = await self._client.submit(self.submission.id)
            except QuizError as exc:
                self.state = machine.submit_failed(self.state, exc.message)
                logger.warning(f"Submit of {self.submission.id} failed: {exc.message}")
                if isinstance(exc, SubmitFailure):
                    raise
                raise SubmitFailure(exc.message) from exc

            self.state = machine.submit_succeeded(self.state, score)
            self._active = False
            expired = ' (time expired)' if self.state.forced else ''
            logger.info(f"Submitted {self.submission.id}{expired}, score {score}")
            return score

    def _stop_timers(self):
        current = asyncio.current_task()
        for task in self._timers:
            if task is not current:
                task.cancel()
        self._timers = []

    async def close(self):
        self._active = False
        timers = [t for t in self._timers if t is not asyncio.current_task()]
        self._stop_timers()
        await asyncio.gather(*timers, return_exceptions=True)
        if self._capture is not None:
            await self._cancel_capture()
        if self._media is not None:
            await self._media.close()
