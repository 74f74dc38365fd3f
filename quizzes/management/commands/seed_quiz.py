"""
Management command to seed demo data for the Quiz Engine.
Creates a learner, an instructor and a published quiz using every question type.
"""
from django.core.management.base import BaseCommand
from django.contrib.auth.models import User
from rest_framework.authtoken.models import Token
from quizzes.models import Quiz, UserProfile
from quizzes.questions import QuestionType
from quizzes.services import QuizService

DEMO_QUIZ_TITLE = 'Spanish Basics Check'

DEMO_QUESTIONS = [
    {
        'question_type': QuestionType.SINGLE_SELECT,
        'prompt': 'How do you say "house" in Spanish?',
        'points': 2,
        'options': ['casa', 'perro', 'libro'],
        'correct_answers': ['casa'],
    },
    {
        'question_type': QuestionType.MULTI_SELECT,
        'prompt': 'Which of these are colours?',
        'points': 2,
        'options': ['rojo', 'azul', 'mesa', 'verde'],
        'correct_answers': ['rojo', 'azul', 'verde'],
    },
    {
        'question_type': QuestionType.FREE_TEXT,
        'prompt': 'Translate: "The big house".',
        'points': 3,
    },
    {
        'question_type': QuestionType.AUDIO_RECORDING,
        'prompt': 'Record yourself introducing yourself in Spanish.',
        'points': 5,
    },
    {
        'question_type': QuestionType.FILE_UPLOAD,
        'prompt': 'Upload a photo of your handwritten vocabulary list.',
        'points': 2,
    },
]

MEDIA_PROMPT = {
    'question_type': QuestionType.MEDIA_PROMPT,
    'prompt': 'Watch the clip and describe what the speaker orders.',
    'points': 2,
    'media_url': 'https://example.com/media/cafe-order.mp4',
}

MEDIA_SUB_QUESTIONS = [
    {
        'question_type': QuestionType.SINGLE_SELECT,
        'prompt': 'What drink does the speaker order?',
        'points': 1,
        'options': ['café', 'té', 'agua'],
        'correct_answers': ['café'],
    },
]


class Command(BaseCommand):
    help = 'Seed demo users and a published quiz with every question type'

    def _ensure_user(self, username, password, role, **extra):
        user, created = User.objects.get_or_create(
            username=username,
            defaults={'email': f'{username}@example.com', 'is_active': True, **extra}
        )
        if created:
            user.set_password(password)
            user.save()
            user.profile.role = role
            user.profile.save()
            self.stdout.write(self.style.SUCCESS(f'✓ Created {role}: {username} / {password}'))
        else:
            self.stdout.write(f'  {username} already exists')
        token, _ = Token.objects.get_or_create(user=user)
        return user, token

    def handle(self, *args, **options):
        self.stdout.write(self.style.NOTICE('\nSeeding Quiz Engine demo data...\n'))

        learner, learner_token = self._ensure_user(
            'learner', 'learner123', UserProfile.Role.LEARNER, first_name='Demo', last_name='Learner'
        )
        instructor, instructor_token = self._ensure_user(
            'instructor', 'instructor123', UserProfile.Role.INSTRUCTOR, first_name='Demo', last_name='Instructor'
        )

        quiz = Quiz.objects.filter(title=DEMO_QUIZ_TITLE, owner=instructor).first()
        if quiz is None:
            quiz = QuizService.create_quiz(instructor, DEMO_QUIZ_TITLE, time_limit_minutes=15)
            for data in DEMO_QUESTIONS:
                QuizService.create_question(quiz, data)
            prompt = QuizService.create_question(quiz, MEDIA_PROMPT)
            for data in MEDIA_SUB_QUESTIONS:
                QuizService.create_question(quiz, {**data, 'parent': prompt.id})
            QuizService.publish_quiz(quiz, user=instructor)
            self.stdout.write(self.style.SUCCESS(
                f'✓ Quiz: {quiz.title} with {quiz.get_question_count()} questions'
            ))
        else:
            self.stdout.write(f'  Quiz already exists: {quiz.title}')

        self.stdout.write(self.style.SUCCESS('\nDemo setup complete.'))
        self.stdout.write('\nAPI Tokens:')
        self.stdout.write(f'  Learner:    {learner_token.key}')
        self.stdout.write(f'  Instructor: {instructor_token.key}')
        self.stdout.write('\nAPI Documentation:')
        self.stdout.write('  Swagger UI: http://localhost:8000/api/docs/')
        self.stdout.write(f'\n  curl -X POST -H "Authorization: Token {learner_token.key}" '
                          f'http://localhost:8000/api/quizzes/{quiz.id}/start/')
        self.stdout.write('')
