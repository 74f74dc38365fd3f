"""
Concrete collaborators for TakeQuizSession.

``OrmQuizClient``/``DjangoBlobStorage`` run in-process over QuizService and
MediaStorageService; ``HttpQuizClient``/``HttpBlobStorage`` talk to the REST
API with httpx. Both sides exchange the same JSON shapes, produced by the API
serializers.
"""
import logging

import httpx
from asgiref.sync import sync_to_async
from django.db import DatabaseError

from quizzes import exceptions
from quizzes.api.serializers import QuizDetailSerializer, SubmissionSerializer
from quizzes.conf import UNSET, engine_setting
from quizzes.models import Answer, Question, Quiz, Submission
from quizzes.questions import QuestionDef
from quizzes.services import INSTRUCTOR, MediaStorageService, QuizService
from .collaborators import BlobStorage, QuizClient
from .records import QuizSnapshot, SubmissionSnapshot

logger = logging.getLogger(__name__)


# =============================================================================
# IN-PROCESS
# =============================================================================

class OrmQuizClient(QuizClient):
    """QuizClient bound to one Django user, calling QuizService directly."""

    def __init__(self, user):
        self.user = user

    @staticmethod
    def _quiz_snapshot(quiz, questions=None, include_correct=False):
        context = {'include_correct': include_correct}
        if questions is not None:
            context['questions'] = questions
        return QuizSnapshot.from_dict(QuizDetailSerializer(quiz, context=context).data)

    @staticmethod
    def _submission_snapshot(submission):
        return SubmissionSnapshot.from_dict(SubmissionSerializer(submission).data)

    @staticmethod
    def _get(model, pk, **filters):
        try:
            return model.objects.get(pk=pk, **filters)
        except model.DoesNotExist:
            raise exceptions.StateConflict(f"{model.__name__} {pk} does not exist.")

    @staticmethod
    async def _call(func, *args):
        """Run a service call off the event loop; database failures become ServiceUnavailable."""
        try:
            return await sync_to_async(func)(*args)
        except DatabaseError as exc:
            logger.warning(f"Database error in {func.__name__}: {exc}")
            raise exceptions.ServiceUnavailable(f"Database unavailable: {exc}") from exc

    # Authoring

    async def create_quiz(self, title, time_limit_minutes=None):
        return await self._call(self._create_quiz, title, time_limit_minutes)

    def _create_quiz(self, title, time_limit_minutes):
        quiz = QuizService.create_quiz(self.user, title, time_limit_minutes=time_limit_minutes)
        return self._quiz_snapshot(quiz, questions=[], include_correct=True)

    async def list_quizzes(self, **filters):
        return await self._call(self._list_quizzes, filters)

    def _list_quizzes(self, filters):
        return [
            QuizSnapshot(id=quiz.id, title=quiz.title, status=quiz.status, time_limit_minutes=quiz.time_limit_minutes)
            for quiz in QuizService.list_quizzes(**filters)
        ]

    async def get_quiz(self, quiz_id, role='learner'):
        return await self._call(self._get_quiz, quiz_id, role)

    def _get_quiz(self, quiz_id, role):
        quiz, questions = QuizService.get_quiz(quiz_id, role=role)
        return self._quiz_snapshot(quiz, questions=questions, include_correct=role == INSTRUCTOR)

    async def create_question(self, quiz_id, defn):
        return await self._call(self._create_question, quiz_id, defn)

    def _create_question(self, quiz_id, defn):
        quiz = self._get(Quiz, quiz_id)
        return QuizService.create_question(quiz, defn).to_def()

    async def update_question(self, question_id, changes):
        return await self._call(self._update_question, question_id, changes)

    def _update_question(self, question_id, changes):
        question = self._get(Question, question_id)
        return QuizService.update_question(question, changes).to_def()

    async def delete_question(self, question_id):
        await self._call(self._delete_question, question_id)

    def _delete_question(self, question_id):
        QuizService.delete_question(self._get(Question, question_id))

    # Taking

    async def start_submission(self, quiz_id, learner_name=None):
        return await self._call(self._start_submission, quiz_id, learner_name)

    def _start_submission(self, quiz_id, learner_name):
        submission, _ = QuizService.start_submission(self._get(Quiz, quiz_id), self.user, learner_name=learner_name)
        return self._submission_snapshot(submission)

    async def upsert_answers(self, submission_id, answers):
        await self._call(self._upsert_answers, submission_id, answers)

    def _upsert_answers(self, submission_id, answers):
        QuizService.upsert_answers(self._get(Submission, submission_id, learner=self.user), answers)

    async def submit(self, submission_id):
        return await self._call(self._submit, submission_id)

    def _submit(self, submission_id):
        return QuizService.submit(self._get(Submission, submission_id, learner=self.user), user=self.user)

    # Grading

    async def list_submissions(self, quiz_id):
        return await self._call(self._list_submissions, quiz_id)

    def _list_submissions(self, quiz_id):
        return [self._submission_snapshot(s) for s in QuizService.list_submissions(self._get(Quiz, quiz_id))]

    async def grade_answer(self, answer_id, mark, feedback=UNSET):
        return await self._call(self._grade_answer, answer_id, mark, feedback)

    def _grade_answer(self, answer_id, mark, feedback):
        return QuizService.grade_answer(self._get(Answer, answer_id), mark, feedback=feedback, user=self.user)

    async def set_submission_feedback(self, submission_id, feedback=UNSET, override=UNSET):
        return await self._call(self._set_submission_feedback, submission_id, feedback, override)

    def _set_submission_feedback(self, submission_id, feedback, override):
        return QuizService.set_submission_feedback(
            self._get(Submission, submission_id), feedback=feedback, override=override, user=self.user
        )


class DjangoBlobStorage(BlobStorage):
    """Stores bytes through Django's default storage backend."""

    async def upload(self, data, mime_type, file_name=None):
        return await sync_to_async(MediaStorageService.upload)(data, mime_type, file_name=file_name)


# =============================================================================
# HTTP
# =============================================================================

ERROR_CODES = {
    'validation_error': exceptions.ValidationError,
    'invalid_grade': exceptions.InvalidGrade,
    'state_conflict': exceptions.StateConflict,
    'upload_failure': exceptions.UploadFailure,
}


def _error_from_response(response):
    """Rebuild the server's error as a QuizError."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {'detail': str(body)}
    detail = body.get('detail') or response.reason_phrase or f"HTTP {response.status_code}"
    error_class = ERROR_CODES.get(body.get('code'))
    if error_class is exceptions.ValidationError:
        return error_class(detail, field=body.get('field'))
    if error_class is not None:
        return error_class(detail)
    if response.status_code == 409:
        return exceptions.StateConflict(detail)
    if response.status_code >= 500:
        return exceptions.ServiceUnavailable(detail)
    if 'detail' not in body and body:
        # DRF field errors: {"field": ["message"]}
        field, messages = next(iter(body.items()))
        message = messages[0] if isinstance(messages, list) and messages else messages
        return exceptions.ValidationError(f"{field}: {message}", field=field)
    return exceptions.ValidationError(detail)


def _build_client(base_url, token, timeout):
    headers = {'Accept': 'application/json'}
    if token:
        headers['Authorization'] = f'Token {token}'
    return httpx.AsyncClient(
        base_url=base_url,
        headers=headers,
        timeout=timeout or engine_setting('HTTP_TIMEOUT_SECONDS'),
    )


class HttpQuizClient(QuizClient):
    """
    QuizClient over the REST API.

    ``base_url`` points at the API root (``https://host/api/``). Pass
    ``client`` to share a configured ``httpx.AsyncClient``.
    """

    def __init__(self, base_url=None, token=None, client=None, timeout=None):
        self._http = client or _build_client(base_url, token, timeout)

    async def aclose(self):
        await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def _request(self, method, path, **kwargs):
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning(f"{method} {path} failed: {exc}")
            raise exceptions.ServiceUnavailable(f"Could not reach the quiz service: {exc}") from exc
        if response.is_error:
            raise _error_from_response(response)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # Authoring

    async def create_quiz(self, title, time_limit_minutes=None):
        data = await self._request('POST', 'quizzes/', json={'title': title, 'time_limit_minutes': time_limit_minutes})
        return QuizSnapshot.from_dict(data)

    async def list_quizzes(self, **filters):
        data = await self._request('GET', 'quizzes/', params=filters)
        results = data.get('results', []) if isinstance(data, dict) else data
        return [QuizSnapshot.from_dict(item) for item in results]

    async def get_quiz(self, quiz_id, role='learner'):
        data = await self._request('GET', f'quizzes/{quiz_id}/', params={'role': role})
        return QuizSnapshot.from_dict(data)

    async def create_question(self, quiz_id, defn):
        payload = defn.to_dict()
        payload.pop('id')
        payload['quiz'] = quiz_id
        if payload['order'] is None:
            payload.pop('order')
        return QuestionDef.from_dict(await self._request('POST', 'questions/', json=payload))

    async def update_question(self, question_id, changes):
        payload = dict(changes)
        if 'points' in payload:
            payload['points'] = str(payload['points'])
        return QuestionDef.from_dict(await self._request('PATCH', f'questions/{question_id}/', json=payload))

    async def delete_question(self, question_id):
        await self._request('DELETE', f'questions/{question_id}/')

    # Taking

    async def start_submission(self, quiz_id, learner_name=None):
        payload = {'learner_name': learner_name} if learner_name else {}
        data = await self._request('POST', f'quizzes/{quiz_id}/start/', json=payload)
        return SubmissionSnapshot.from_dict(data)

    async def upsert_answers(self, submission_id, answers):
        await self._request('POST', f'submissions/{submission_id}/answers/', json={'answers': answers})

    async def submit(self, submission_id):
        try:
            data = await self._request('POST', f'submissions/{submission_id}/submit/')
        except exceptions.ServiceUnavailable as exc:
            raise exceptions.SubmitFailure(exc.message) from exc
        return data['score']

    # Grading

    async def list_submissions(self, quiz_id):
        data = await self._request('GET', f'quizzes/{quiz_id}/submissions/')
        return [SubmissionSnapshot.from_dict(item) for item in data]

    async def grade_answer(self, answer_id, mark, feedback=UNSET):
        payload = {'mark': str(mark) if mark is not None else None}
        if feedback is not UNSET:
            payload['feedback'] = feedback
        data = await self._request('PATCH', f'answers/{answer_id}/grade/', json=payload)
        return data['new_score']

    async def set_submission_feedback(self, submission_id, feedback=UNSET, override=UNSET):
        payload = {}
        if feedback is not UNSET:
            payload['overall_feedback'] = feedback
        if override is not UNSET:
            payload['score_override'] = override
        data = await self._request('PATCH', f'submissions/{submission_id}/feedback/', json=payload)
        return data['effective_score']


class HttpBlobStorage(BlobStorage):
    """Uploads through ``POST uploads/`` as multipart form data."""

    def __init__(self, base_url=None, token=None, client=None, timeout=None):
        self._http = client or _build_client(base_url, token, timeout)

    async def aclose(self):
        await self._http.aclose()

    async def upload(self, data, mime_type, file_name=None):
        files = {'file': (file_name or 'upload', data, mime_type)}
        try:
            response = await self._http.post('uploads/', files=files)
        except httpx.HTTPError as exc:
            raise exceptions.UploadFailure(f"Upload failed: {exc}") from exc
        if response.is_error:
            error = _error_from_response(response)
            raise exceptions.UploadFailure(error.message)
        return response.json()['url']
