import asyncio
import shutil
import tempfile
from datetime import timedelta
from unittest.mock import patch

from asgiref.sync import sync_to_async
from django.contrib.auth.models import User
from django.db import OperationalError
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone

from quizzes.exceptions import DeviceUnavailable, ServiceUnavailable, StateConflict, SubmitFailure, ValidationError
from quizzes.models import Answer, Submission, UserProfile
from quizzes.services import QuizService
from quizzes.session import MediaCaptureAdapter, Phase, TakeQuizSession, TextAnswer
from quizzes.session.clients import DjangoBlobStorage, OrmQuizClient
from .fakes import (
    FakeAudioSource, FakeAudioStream, FakeBlobStorage, FakeClock, FakeNotifier, FakeQuizClient,
    make_questions, wait_until,
)


class SessionTestMixin:
    def make_session(self, client=None, storage=None, source=None, **kwargs):
        self.quiz_client = client or FakeQuizClient(make_questions(), score=70)
        self.storage = storage or FakeBlobStorage()
        self.notifier = kwargs.pop('notifier', FakeNotifier())
        media = MediaCaptureAdapter(self.storage, source=source or FakeAudioSource(), poll_interval=0.01)
        kwargs.setdefault('autosave_interval', 3600)
        return TakeQuizSession(self.quiz_client, 1, media=media, notifier=self.notifier, **kwargs)


class TakeQuizTests(SessionTestMixin, SimpleTestCase):
    """Tests for answering, navigating and submitting."""

    async def test_start_loads_questions(self):
        async with self.make_session() as session:
            self.assertEqual(session.state.phase, Phase.ACTIVE)
            self.assertEqual(session.position, (1, 5))
            self.assertEqual(session.current_question.id, 1)
            self.assertIsNone(session.remaining_seconds())

    async def test_answers_follow_question_type(self):
        async with self.make_session() as session:
            session.select_option('A')
            session.select_option('B')
            self.assertEqual(session.answer_for().option, 'B')
            with self.assertRaises(ValidationError):
                session.write_text('B')

            await session.next()
            session.select_option('X')
            session.toggle_option('Z')
            session.toggle_option('X')
            self.assertEqual(session.answer_for().options, frozenset({'Z'}))

            await session.next()
            session.write_text('Hola')
            self.assertEqual([q.id for q in session.unanswered()], [4, 5])

    async def test_navigation_is_bounded(self):
        async with self.make_session() as session:
            self.assertFalse(await session.prev())
            self.assertTrue(await session.go_to(4))
            self.assertFalse(await session.next())
            self.assertEqual(session.position, (5, 5))

    async def test_declined_confirmation_keeps_quiz_open(self):
        async with self.make_session(notifier=FakeNotifier(answer=False)) as session:
            self.assertFalse(await session.request_submit())
            self.assertEqual(session.state.phase, Phase.ACTIVE)
            self.assertIn('5 of 5 questions are unanswered', self.notifier.confirmations[0])
            self.assertEqual(self.quiz_client.submit_calls, 0)

    async def test_submit_flushes_first(self):
        """Test the buffer reaches the server before the submit call."""
        async with self.make_session() as session:
            session.select_option('B')
            self.assertTrue(await session.request_submit())
            self.assertEqual(self.quiz_client.saved[1]['selected_options'], ['B'])
            self.assertEqual(session.state.phase, Phase.DONE)
            self.assertEqual(session.state.score, 70)
            with self.assertRaises(StateConflict):
                session.write_text('late')

    async def test_concurrent_submits_call_once(self):
        async with self.make_session() as session:
            scores = await asyncio.gather(session.submit(), session.submit(), session.submit())
            self.assertEqual(scores, [70, 70, 70])
            self.assertEqual(self.quiz_client.submit_calls, 1)

    async def test_failed_submit_can_be_retried(self):
        """Test the session stays in Submitting after a failure."""
        async with self.make_session() as session:
            session.select_option('B')
            self.quiz_client.fail_submits = 1
            with self.assertRaises(SubmitFailure):
                await session.submit()
            self.assertEqual(session.state.phase, Phase.SUBMITTING)
            self.assertEqual(session.state.error, 'network down')
            self.assertEqual(await session.submit(), 70)
            self.assertEqual(session.state.phase, Phase.DONE)
            self.assertEqual(self.quiz_client.submit_calls, 2)

    async def test_failed_flush_blocks_submit(self):
        async with self.make_session() as session:
            session.select_option('B')
            self.quiz_client.fail_upserts = 1
            with self.assertRaises(SubmitFailure):
                await session.submit()
            self.assertEqual(self.quiz_client.submit_calls, 0)

    async def test_resuming_submitted_attempt(self):
        client = FakeQuizClient(make_questions())
        client.submission.submitted_at = timezone.now()
        client.submission.score = 40
        client.submission.score_override = 55
        async with self.make_session(client=client) as session:
            self.assertEqual(session.state.phase, Phase.DONE)
            self.assertEqual(session.state.score, 55)


class DeadlineSessionTests(SessionTestMixin, SimpleTestCase):
    """Tests for timed quizzes."""

    async def test_deadline_forces_submit(self):
        """Test a one minute quiz submits itself when the clock runs out."""
        clock = FakeClock()
        client = FakeQuizClient(make_questions(), time_limit_minutes=1, started_at=clock.now, score=0)
        async with self.make_session(client=client, clock=clock, deadline_tick=0.01) as session:
            session.select_option('A')
            self.assertEqual(session.remaining_seconds(), 60)
            clock.advance(30)
            self.assertEqual(session.remaining_seconds(), 30)
            clock.advance(30)
            await wait_until(lambda: session.state.phase == Phase.DONE)
            self.assertTrue(session.state.forced)
            self.assertEqual(client.saved[1]['selected_options'], ['A'])
            self.assertEqual(client.submit_calls, 1)

    async def test_expired_on_load(self):
        client = FakeQuizClient(
            make_questions(), time_limit_minutes=1, started_at=timezone.now() - timedelta(minutes=5), score=0
        )
        async with self.make_session(client=client) as session:
            self.assertEqual(session.state.phase, Phase.DONE)
            self.assertTrue(session.state.forced)

    async def test_zero_minute_limit(self):
        client = FakeQuizClient(make_questions(), time_limit_minutes=0, score=0)
        async with self.make_session(client=client) as session:
            self.assertEqual(session.state.phase, Phase.DONE)
            self.assertEqual(client.submit_calls, 1)

    async def test_failed_forced_submit_waits_for_retry(self):
        client = FakeQuizClient(
            make_questions(), time_limit_minutes=1, started_at=timezone.now() - timedelta(minutes=5), score=0
        )
        client.fail_submits = 1
        async with self.make_session(client=client) as session:
            self.assertEqual(session.state.phase, Phase.SUBMITTING)
            self.assertEqual(await session.submit(), 0)
            self.assertTrue(session.state.forced)


class MediaSessionTests(SessionTestMixin, SimpleTestCase):
    """Tests for recordings and attachments inside a session."""

    async def test_recording_blocks_navigation_until_uploaded(self):
        """Test the learner waits on the recording question until storage answers."""
        source = FakeAudioSource([FakeAudioStream(data=b'hola', levels=(0.8,))])
        async with self.make_session(source=source) as session:
            await session.go_to(3)
            self.storage.hold()
            await session.start_recording()
            await wait_until(lambda: session.amplitude == 80)
            local_ref = await session.stop_recording()

            self.assertTrue(local_ref.startswith('file://'))
            self.assertEqual(session.answer_for().ref, local_ref)
            self.assertFalse(await session.next())
            self.assertEqual(await session.buffer.flush(), 0)

            self.storage.release()
            await wait_until(lambda: not session.state.is_blocked)
            self.assertTrue(session.answer_for().is_durable)
            self.assertTrue(await session.next())
            await session.buffer.flush()
            self.assertIn(session.answer_for(4).durable_ref, self.storage.stored)
            self.assertEqual(self.quiz_client.saved[4]['media_url'], session.answer_for(4).durable_ref)

    async def test_failed_upload_retried_on_flush(self):
        async with self.make_session(storage=FakeBlobStorage(fail_times=1)) as session:
            await session.go_to(4)
            await session.attach_file(b'%PDF-1.4', 'essay.pdf', 'application/pdf')
            await wait_until(lambda: not session.state.is_blocked)
            self.assertTrue(session.answer_for().upload_failed)
            self.assertTrue(await session.prev())

            await session.buffer.flush()
            await wait_until(lambda: session.answer_for(5).is_durable)
            await session.buffer.flush()
            self.assertEqual(self.quiz_client.saved[5]['file_name'], 'essay.pdf')
            self.assertEqual(self.storage.attempts, 2)

    async def test_submit_waits_for_retried_upload(self):
        """Test a file whose first upload failed is uploaded again and sent before submitting."""
        async with self.make_session(storage=FakeBlobStorage(fail_times=1)) as session:
            await session.go_to(4)
            await session.attach_file(b'%PDF-1.4', 'essay.pdf', 'application/pdf')
            await wait_until(lambda: session.answer_for().upload_failed)

            self.assertEqual(await session.submit(), 70)
            self.assertEqual(session.state.phase, Phase.DONE)
            self.assertIn(self.quiz_client.saved[5]['media_url'], self.storage.stored)
            self.assertEqual(self.storage.attempts, 2)

    async def test_submit_waits_for_upload_in_flight(self):
        """Test confirming while the last file is still uploading sends that file."""
        async with self.make_session() as session:
            await session.go_to(4)
            self.storage.hold()
            await session.attach_file(b'%PDF-1.4', 'essay.pdf', 'application/pdf')

            submitting = asyncio.create_task(session.request_submit())
            await wait_until(lambda: session.state.phase == Phase.SUBMITTING)
            self.assertIn('1 files are still uploading', self.notifier.confirmations[0])
            self.assertEqual(self.quiz_client.submit_calls, 0)

            self.storage.release()
            self.assertTrue(await submitting)
            self.assertEqual(session.state.phase, Phase.DONE)
            self.assertEqual(self.quiz_client.saved[5]['file_name'], 'essay.pdf')

    async def test_submit_refused_while_upload_keeps_failing(self):
        async with self.make_session(storage=FakeBlobStorage(fail_times=2)) as session:
            await session.go_to(4)
            await session.attach_file(b'%PDF-1.4', 'essay.pdf', 'application/pdf')
            await wait_until(lambda: session.answer_for().upload_failed)

            with self.assertRaises(SubmitFailure):
                await session.submit()
            self.assertEqual(session.state.phase, Phase.SUBMITTING)
            self.assertEqual(self.quiz_client.submit_calls, 0)

            self.assertEqual(await session.submit(), 70)
            self.assertIn(self.quiz_client.saved[5]['media_url'], self.storage.stored)
            self.assertEqual(self.storage.attempts, 3)

    async def test_forced_submit_does_not_wait_for_uploads(self):
        clock = FakeClock()
        client = FakeQuizClient(make_questions(), time_limit_minutes=1, started_at=clock.now, score=0)
        async with self.make_session(client=client, clock=clock, deadline_tick=0.01) as session:
            await session.go_to(4)
            self.storage.hold()
            await session.attach_file(b'%PDF-1.4', 'essay.pdf', 'application/pdf')
            clock.advance(60)
            await wait_until(lambda: session.state.phase == Phase.DONE)
            self.assertTrue(session.state.forced)
            self.assertNotIn(5, client.saved)
            self.storage.release()
            await wait_until(lambda: self.storage.stored)
            self.assertFalse(session.answer_for(5).is_durable)

    async def test_denied_microphone_alerts(self):
        async with self.make_session(source=FakeAudioSource(error="Permission denied")) as session:
            await session.go_to(3)
            with self.assertRaises(DeviceUnavailable):
                await session.start_recording()
            self.assertEqual(self.notifier.alerts, ["Permission denied"])
            self.assertFalse(session.is_recording)

    async def test_media_actions_check_question_type(self):
        async with self.make_session() as session:
            with self.assertRaises(ValidationError):
                await session.start_recording()
            with self.assertRaises(ValidationError):
                await session.attach_file(b'x', 'x.txt')

    async def test_leaving_question_discards_recording(self):
        async with self.make_session() as session:
            await session.go_to(3)
            await session.start_recording()
            self.assertTrue(session.is_recording)
            await session.next()
            self.assertFalse(session.is_recording)
            self.assertIsNone(session.answer_for(4))

    async def test_submit_during_recording_cancels_it(self):
        async with self.make_session() as session:
            await session.go_to(3)
            await session.start_recording()
            await session.submit()
            self.assertFalse(session.is_recording)
            self.assertNotIn(4, self.quiz_client.saved)


class OrmSessionTests(TestCase):
    """End to end: a session against the database and local media storage."""

    def setUp(self):
        self.media_root = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.media_root, ignore_errors=True)
        media_override = override_settings(MEDIA_ROOT=self.media_root)
        media_override.enable()
        self.addCleanup(media_override.disable)

        instructor = User.objects.create_user('profe', 'profe@test.com', 'pass12345')
        instructor.profile.role = UserProfile.Role.INSTRUCTOR
        instructor.profile.save()
        self.learner = User.objects.create_user('ana', 'ana@test.com', 'pass12345')

        self.quiz = QuizService.create_quiz(instructor, 'Mixed', time_limit_minutes=30)
        self.select = QuizService.create_question(self.quiz, {
            'question_type': 'single_select', 'prompt': 'Pick', 'points': 5,
            'options': ['a', 'b'], 'correct_answers': ['a'],
        })
        self.text = QuizService.create_question(self.quiz, {
            'question_type': 'free_text', 'prompt': 'Explain', 'points': 5,
        })
        self.upload = QuizService.create_question(self.quiz, {
            'question_type': 'file_upload', 'prompt': 'Attach', 'points': 5,
        })
        QuizService.publish_quiz(self.quiz)

    def make_session(self):
        media = MediaCaptureAdapter(DjangoBlobStorage())
        return TakeQuizSession(
            OrmQuizClient(self.learner), self.quiz.id, media=media,
            notifier=FakeNotifier(), autosave_interval=3600,
        )

    async def test_full_attempt(self):
        """Test answering, attaching a file and submitting against the ORM."""
        async with self.make_session() as session:
            self.assertIsNotNone(session.state.deadline)
            session.select_option('a')
            await session.next()
            session.write_text('Porque si.')
            await session.next()
            await session.attach_file(b'%PDF-1.4 essay', 'essay.pdf', 'application/pdf')
            await wait_until(lambda: session.answer_for().is_durable)
            score = await session.submit()

        self.assertEqual(score, 33)
        submission = await sync_to_async(Submission.objects.get)(quiz=self.quiz, learner=self.learner)
        self.assertTrue(submission.is_submitted)
        answers = await sync_to_async(list)(Answer.objects.filter(submission=submission).order_by('question_id'))
        self.assertEqual(len(answers), 3)
        self.assertTrue(answers[2].media_url.startswith('/media/quiz-uploads/'))
        self.assertEqual(answers[2].file_name, 'essay.pdf')

    async def test_database_errors_do_not_stop_autosave(self):
        """Test a locked database is reported as unavailable and autosave keeps trying."""
        session = TakeQuizSession(
            OrmQuizClient(self.learner), self.quiz.id, media=MediaCaptureAdapter(DjangoBlobStorage()),
            notifier=FakeNotifier(), autosave_interval=0.01,
        )
        async with session:
            session.record_answer(TextAnswer('borrador'), question_id=self.text.id)
            with patch.object(QuizService, 'upsert_answers', side_effect=OperationalError('database is locked')) as upsert:
                with self.assertRaises(ServiceUnavailable):
                    await session.buffer.flush()
                await wait_until(lambda: upsert.call_count >= 3)

                with self.assertRaises(SubmitFailure):
                    await session.submit()
                self.assertEqual(session.state.phase, Phase.SUBMITTING)
                self.assertIn('database is locked', session.state.error)

            await session.submit()
            self.assertEqual(session.state.phase, Phase.DONE)

        answer = await sync_to_async(Answer.objects.get)(question=self.text)
        self.assertEqual(answer.answer_text, 'borrador')

    async def test_resume_restores_answers(self):
        async with self.make_session() as session:
            session.record_answer(TextAnswer('borrador'), question_id=self.text.id)
            await session.buffer.flush()

        async with self.make_session() as session:
            self.assertEqual(session.answer_for(self.text.id), TextAnswer('borrador'))
            self.assertEqual(session.state.phase, Phase.ACTIVE)
