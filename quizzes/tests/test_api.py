import shutil
import tempfile

from django.contrib.auth.models import User
from django.core.cache import cache
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import override_settings
from rest_framework import status
from rest_framework.authtoken.models import Token
from rest_framework.test import APITestCase

from quizzes.models import Answer, Quiz, Submission, UserProfile
from quizzes.services import QuizService


class QuizAPITestBase(APITestCase):
    """Shared users, tokens and a published quiz."""

    def setUp(self):
        cache.clear()
        self.instructor = User.objects.create_user('profe', 'profe@test.com', 'pass12345')
        self.instructor.profile.role = UserProfile.Role.INSTRUCTOR
        self.instructor.profile.save()
        self.learner = User.objects.create_user('ana', 'ana@test.com', 'pass12345')
        self.other_learner = User.objects.create_user('ben', 'ben@test.com', 'pass12345')

        self.quiz = QuizService.create_quiz(self.instructor, 'Spanish basics', time_limit_minutes=15)
        self.text = QuizService.create_question(self.quiz, {
            'question_type': 'free_text', 'prompt': 'Describe your house.', 'points': 5,
        })
        self.select = QuizService.create_question(self.quiz, {
            'question_type': 'single_select', 'prompt': 'Casa means?', 'points': 5,
            'options': ['house', 'car'], 'correct_answers': ['house'],
        })
        QuizService.publish_quiz(self.quiz)

    def as_user(self, user):
        token, _ = Token.objects.get_or_create(user=user)
        self.client.credentials(HTTP_AUTHORIZATION=f'Token {token.key}')


class QuizEndpointTests(QuizAPITestBase):
    """Tests for quiz authoring endpoints."""

    def test_requires_authentication(self):
        response = self.client.get('/api/quizzes/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_learner_lists_published_only(self):
        QuizService.create_quiz(self.instructor, 'Draft quiz')
        self.as_user(self.learner)
        response = self.client.get('/api/quizzes/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        titles = [quiz['title'] for quiz in response.data['results']]
        self.assertEqual(titles, ['Spanish basics'])
        self.assertEqual(response.data['results'][0]['question_count'], 2)

    def test_learner_cannot_create_quiz(self):
        self.as_user(self.learner)
        response = self.client.post('/api/quizzes/', {'title': 'Mine'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_instructor_creates_draft(self):
        self.as_user(self.instructor)
        response = self.client.post(
            '/api/quizzes/', {'title': 'Listening', 'time_limit_minutes': 20}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], 'draft')
        self.assertEqual(Quiz.objects.get(pk=response.data['id']).owner, self.instructor)

    def test_answer_keys_hidden_from_learners(self):
        """Test learners never receive correct answers."""
        self.as_user(self.learner)
        response = self.client.get(f'/api/quizzes/{self.quiz.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['questions']), 2)
        for question in response.data['questions']:
            self.assertNotIn('correct_answers', question)

    def test_instructor_preview_as_learner(self):
        self.as_user(self.instructor)
        response = self.client.get(f'/api/quizzes/{self.quiz.id}/')
        self.assertEqual(response.data['questions'][1]['correct_answers'], ['house'])
        preview = self.client.get(f'/api/quizzes/{self.quiz.id}/', {'role': 'learner'})
        self.assertNotIn('correct_answers', preview.data['questions'][1])

    def test_publish_empty_quiz_conflict(self):
        """Test publishing a quiz without questions returns 409."""
        empty = QuizService.create_quiz(self.instructor, 'Empty')
        self.as_user(self.instructor)
        response = self.client.post(f'/api/quizzes/{empty.id}/publish/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'state_conflict')

    def test_invalid_question_returns_field(self):
        self.as_user(self.instructor)
        response = self.client.post('/api/questions/', {
            'quiz': self.quiz.id,
            'question_type': 'single_select',
            'prompt': 'Only one option',
            'options': ['solo'],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'validation_error')
        self.assertEqual(response.data['field'], 'options')

    def test_learner_cannot_author_questions(self):
        self.as_user(self.learner)
        response = self.client.post('/api/questions/', {
            'quiz': self.quiz.id, 'question_type': 'free_text', 'prompt': 'Mine?',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_question_appended_after_siblings(self):
        self.as_user(self.instructor)
        response = self.client.post('/api/questions/', {
            'quiz': self.quiz.id, 'question_type': 'free_text', 'prompt': 'One more?',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['order'], 3)


class SubmissionEndpointTests(QuizAPITestBase):
    """Tests for starting, autosaving and submitting."""

    def start(self, user=None):
        self.as_user(user or self.learner)
        return self.client.post(f'/api/quizzes/{self.quiz.id}/start/', {}, format='json')

    def test_start_then_resume(self):
        """Test the first start creates and the second resumes."""
        first = self.start()
        self.assertEqual(first.status_code, status.HTTP_201_CREATED)
        self.assertEqual(first.data['status'], 'in_progress')
        self.assertIsNotNone(first.data['deadline'])
        again = self.start()
        self.assertEqual(again.status_code, status.HTTP_200_OK)
        self.assertEqual(again.data['id'], first.data['id'])

    def test_listing_shows_own_attempt(self):
        submission_id = self.start().data['id']
        listing = self.client.get('/api/quizzes/')
        mine = listing.data['results'][0]['my_submission']
        self.assertEqual(mine['id'], submission_id)
        self.assertIsNone(mine['submitted_at'])

    def test_start_draft_conflict(self):
        draft = QuizService.create_quiz(self.instructor, 'Draft')
        self.as_user(self.instructor)
        response = self.client.post(f'/api/quizzes/{draft.id}/start/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_my_submission_not_found_before_start(self):
        self.as_user(self.learner)
        response = self.client.get(f'/api/quizzes/{self.quiz.id}/my-submission/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_repeated_autosave_keeps_one_row(self):
        """Test re-sending the buffer never duplicates answers."""
        submission_id = self.start().data['id']
        payload = {'answers': [
            {'question_id': self.text.id, 'answer_text': 'Una casa'},
            {'question_id': self.select.id, 'selected_options': ['car']},
        ]}
        for _ in range(2):
            response = self.client.post(f'/api/submissions/{submission_id}/answers/', payload, format='json')
            self.assertEqual(response.status_code, status.HTTP_200_OK)
            self.assertEqual(response.data, {'saved': 2})
        self.assertEqual(Answer.objects.filter(submission_id=submission_id).count(), 2)

    def test_open_submission_hides_correctness(self):
        submission_id = self.start().data['id']
        self.client.post(f'/api/submissions/{submission_id}/answers/', {
            'answers': [{'question_id': self.select.id, 'selected_options': ['house']}]
        }, format='json')
        response = self.client.get(f'/api/submissions/{submission_id}/')
        self.assertIsNone(response.data['answers'][0]['is_correct'])

    def test_unknown_option_rejected(self):
        submission_id = self.start().data['id']
        response = self.client.post(f'/api/submissions/{submission_id}/answers/', {
            'answers': [{'question_id': self.select.id, 'selected_options': ['boat']}]
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['field'], 'selected_options')

    def test_other_learner_cannot_write(self):
        submission_id = self.start().data['id']
        self.as_user(self.other_learner)
        response = self.client.post(f'/api/submissions/{submission_id}/answers/', {
            'answers': [{'question_id': self.text.id, 'answer_text': 'hijack'}]
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_submit_is_idempotent(self):
        """Test submitting twice returns the same score and keeps the time."""
        submission_id = self.start().data['id']
        self.client.post(f'/api/submissions/{submission_id}/answers/', {
            'answers': [{'question_id': self.select.id, 'selected_options': ['house']}]
        }, format='json')
        first = self.client.post(f'/api/submissions/{submission_id}/submit/')
        self.assertEqual(first.status_code, status.HTTP_200_OK)
        self.assertEqual(first.data['score'], 50)
        self.assertEqual(first.data['submission']['status'], 'submitted')
        second = self.client.post(f'/api/submissions/{submission_id}/submit/')
        self.assertEqual(second.data['score'], 50)
        self.assertEqual(second.data['submission']['submitted_at'], first.data['submission']['submitted_at'])

    def test_answers_after_submit_conflict(self):
        submission_id = self.start().data['id']
        self.client.post(f'/api/submissions/{submission_id}/submit/')
        response = self.client.post(f'/api/submissions/{submission_id}/answers/', {
            'answers': [{'question_id': self.text.id, 'answer_text': 'late'}]
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)


class GradingEndpointTests(QuizAPITestBase):
    """Tests for manual grading and overrides."""

    def setUp(self):
        super().setUp()
        self.submission, _ = QuizService.start_submission(self.quiz, self.learner)
        QuizService.upsert_answers(self.submission, [
            {'question_id': self.text.id, 'answer_text': 'Mi casa es grande.'},
            {'question_id': self.select.id, 'selected_options': ['house']},
        ])
        self.answer = Answer.objects.get(submission=self.submission, question=self.text)

    def test_grading_open_submission_conflict(self):
        self.as_user(self.instructor)
        response = self.client.patch(f'/api/answers/{self.answer.id}/grade/', {'mark': '5'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_grade_raises_score(self):
        """Test a full manual mark takes the score from 50 to 100."""
        QuizService.submit(self.submission)
        self.as_user(self.instructor)
        response = self.client.patch(
            f'/api/answers/{self.answer.id}/grade/', {'mark': '5', 'feedback': 'Bien'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['new_score'], 100)
        self.assertEqual(response.data['feedback'], 'Bien')

    def test_mark_above_points_rejected(self):
        QuizService.submit(self.submission)
        self.as_user(self.instructor)
        response = self.client.patch(f'/api/answers/{self.answer.id}/grade/', {'mark': '7'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid_grade')

    def test_learner_cannot_grade(self):
        QuizService.submit(self.submission)
        self.as_user(self.learner)
        response = self.client.patch(f'/api/answers/{self.answer.id}/grade/', {'mark': '5'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_override_and_feedback(self):
        QuizService.submit(self.submission)
        self.as_user(self.instructor)
        response = self.client.patch(f'/api/submissions/{self.submission.id}/feedback/', {
            'overall_feedback': 'Good effort', 'score_override': 80
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['score'], 50)
        self.assertEqual(response.data['effective_score'], 80)

        self.as_user(self.learner)
        mine = self.client.get(f'/api/quizzes/{self.quiz.id}/my-submission/')
        self.assertEqual(mine.data['effective_score'], 80)
        self.assertEqual(mine.data['overall_feedback'], 'Good effort')

    def test_instructor_lists_submissions(self):
        QuizService.submit(self.submission)
        self.as_user(self.instructor)
        response = self.client.get(f'/api/quizzes/{self.quiz.id}/submissions/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['learner'], 'ana')
        self.assertTrue(Submission.objects.get(pk=self.submission.pk).is_submitted)


class UploadEndpointTests(QuizAPITestBase):
    """Tests for durable media uploads."""

    def setUp(self):
        super().setUp()
        self.media_root = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.media_root, ignore_errors=True)

    def test_upload_returns_absolute_url(self):
        self.as_user(self.learner)
        upload = SimpleUploadedFile('answer.webm', b'\x1a\x45\xdf\xa3audio', content_type='audio/webm')
        with override_settings(MEDIA_ROOT=self.media_root):
            response = self.client.post('/api/uploads/', {'file': upload}, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data['url'].startswith('http://testserver/media/quiz-uploads/'))
        self.assertTrue(response.data['url'].endswith('.webm'))

    def test_upload_requires_file(self):
        self.as_user(self.learner)
        response = self.client.post('/api/uploads/', {}, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class SchemaTests(APITestCase):
    def test_schema_is_served(self):
        response = self.client.get('/api/schema/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
