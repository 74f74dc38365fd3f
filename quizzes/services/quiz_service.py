"""
Quiz persistence service.
Authoring CRUD, submission lifecycle, answer upserts and grading over the Django ORM.
"""
import logging
from urllib.parse import urlsplit

from django.db import IntegrityError, transaction
from django.db.models import Count, Max, Prefetch
from django.utils import timezone

from quizzes import exceptions
from quizzes.conf import UNSET
from quizzes.grading import compute_aggregate, effective_score, validate_mark, validate_override
from quizzes.models import Answer, AuditLog, Question, Quiz, Submission
from quizzes.questions import (
    MEDIA_TYPES, SELECT_TYPES, TEXT_TYPES,
    QuestionDef, QuestionType, flatten, validate_question,
)

logger = logging.getLogger(__name__)

INSTRUCTOR = 'instructor'
LEARNER = 'learner'

QUESTION_FIELDS = ['question_type', 'prompt', 'points', 'options', 'correct_answers', 'media_url', 'order', 'parent']


class QuizService:

    # =========================================================================
    # QUIZZES
    # =========================================================================

    @staticmethod
    def _clean_title(title):
        title = (title or '').strip()
        if not title:
            raise exceptions.ValidationError("Title is required.", field='title')
        return title

    @staticmethod
    def _clean_time_limit(time_limit_minutes):
        if time_limit_minutes in (None, ''):
            return None
        try:
            minutes = int(time_limit_minutes)
        except (TypeError, ValueError):
            raise exceptions.ValidationError("Time limit must be a whole number of minutes.", field='time_limit_minutes')
        if minutes < 0:
            raise exceptions.ValidationError("Time limit cannot be negative.", field='time_limit_minutes')
        return minutes

    @classmethod
    def create_quiz(cls, owner, title, time_limit_minutes=None):
        quiz = Quiz.objects.create(
            owner=owner,
            title=cls._clean_title(title),
            time_limit_minutes=cls._clean_time_limit(time_limit_minutes),
        )
        logger.info(f"Quiz {quiz.id} created by {owner}")
        return quiz

    @classmethod
    def update_quiz(cls, quiz, title=UNSET, time_limit_minutes=UNSET):
        if title is not UNSET:
            quiz.title = cls._clean_title(title)
        if time_limit_minutes is not UNSET:
            quiz.time_limit_minutes = cls._clean_time_limit(time_limit_minutes)
        quiz.save()
        return quiz

    @classmethod
    def publish_quiz(cls, quiz, user=None):
        if not quiz.questions.exists():
            raise exceptions.StateConflict("Cannot publish a quiz with no questions.")
        quiz.status = Quiz.Status.PUBLISHED
        quiz.published_at = timezone.now()
        quiz.save(update_fields=['status', 'published_at', 'updated_at'])
        AuditLog.log(
            event_type=AuditLog.EventType.QUIZ_PUBLISHED,
            description=f"Published: {quiz.title}",
            user=user,
            metadata={'quiz_id': quiz.id}
        )
        logger.info(f"Quiz {quiz.id} published")
        return quiz

    @classmethod
    def unpublish_quiz(cls, quiz, user=None):
        quiz.status = Quiz.Status.DRAFT
        quiz.save(update_fields=['status', 'updated_at'])
        AuditLog.log(
            event_type=AuditLog.EventType.QUIZ_UNPUBLISHED,
            description=f"Unpublished: {quiz.title}",
            user=user,
            metadata={'quiz_id': quiz.id}
        )
        logger.info(f"Quiz {quiz.id} unpublished")
        return quiz

    @classmethod
    def delete_quiz(cls, quiz):
        if quiz.submissions.exists():
            raise exceptions.StateConflict("Cannot delete a quiz that has submissions.")
        quiz.delete()

    @classmethod
    def list_quizzes(cls, owner=None, learner=None, status=None):
        """
        Quizzes annotated with question and submission counts.
        With ``learner`` only published quizzes are listed, and each carries
        that learner's submission (if any) as ``learner_submissions``.
        """
        queryset = Quiz.objects.select_related('owner').annotate(
            question_count=Count('questions', distinct=True),
            submission_count=Count('submissions', distinct=True),
        ).order_by('-created_at')

        if owner is not None:
            queryset = queryset.filter(owner=owner)
        if learner is not None:
            queryset = queryset.filter(status=Quiz.Status.PUBLISHED).prefetch_related(
                Prefetch(
                    'submissions',
                    queryset=Submission.objects.filter(learner=learner),
                    to_attr='learner_submissions'
                )
            )
        if status:
            queryset = queryset.filter(status=status)
        return queryset

    @classmethod
    def get_quiz(cls, quiz_id, role=LEARNER):
        """Return ``(quiz, flattened questions)``. Learners only see published quizzes."""
        try:
            quiz = Quiz.objects.get(pk=quiz_id)
        except Quiz.DoesNotExist:
            raise exceptions.StateConflict(f"Quiz {quiz_id} does not exist.")
        if role != INSTRUCTOR and not quiz.is_published:
            raise exceptions.StateConflict("This quiz is not available.")
        return quiz, flatten(quiz.questions.all())

    # =========================================================================
    # QUESTIONS
    # =========================================================================

    @classmethod
    def _resolve_parent(cls, quiz, parent_id):
        if parent_id is None:
            return None
        parent = quiz.questions.filter(pk=parent_id).first()
        if parent is None:
            raise exceptions.ValidationError("Parent question must belong to this quiz.", field='parent')
        return parent

    @classmethod
    def create_question(cls, quiz, data):
        defn = data if isinstance(data, QuestionDef) else QuestionDef.from_dict(data)
        parent = cls._resolve_parent(quiz, defn.parent_id)
        validate_question(defn, parent)

        if defn.order is None:
            siblings = quiz.questions.filter(parent=parent)
            defn.order = (siblings.aggregate(top=Max('order'))['top'] or 0) + 1

        return Question.objects.create(
            quiz=quiz,
            parent=parent,
            question_type=defn.question_type,
            prompt=defn.prompt,
            points=defn.points,
            order=defn.order,
            options=defn.options,
            correct_answers=defn.correct_answers,
            media_url=defn.media_url,
        )

    @classmethod
    def update_question(cls, question, data):
        """Apply the fields present in ``data`` and re-validate the whole definition."""
        defn = question.to_def()
        for name in QUESTION_FIELDS:
            if name in data:
                setattr(defn, 'parent_id' if name == 'parent' else name, data[name])

        if defn.parent_id == question.id:
            raise exceptions.ValidationError("A question cannot be its own parent.", field='parent')
        parent = cls._resolve_parent(question.quiz, defn.parent_id)
        validate_question(defn, parent)

        if defn.question_type != QuestionType.MEDIA_PROMPT and question.children.exists():
            raise exceptions.ValidationError(
                "Only media prompt questions can have sub-questions.", field='question_type'
            )
        if parent is not None and question.children.exists():
            raise exceptions.ValidationError("A question with sub-questions cannot be nested.", field='parent')

        question.parent = parent
        question.question_type = defn.question_type
        question.prompt = defn.prompt
        question.points = defn.points
        question.options = defn.options
        question.correct_answers = defn.correct_answers
        question.media_url = defn.media_url
        if defn.order is not None:
            question.order = defn.order
        question.save()
        return question

    @classmethod
    def delete_question(cls, question):
        ids = [question.id, *question.children.values_list('id', flat=True)]
        if Answer.objects.filter(question_id__in=ids).exists():
            raise exceptions.StateConflict("Cannot delete a question that has been answered.")
        question.delete()

    # =========================================================================
    # SUBMISSIONS
    # =========================================================================

    @classmethod
    def start_submission(cls, quiz, learner, learner_name=None):
        """
        Start or resume the learner's attempt. Returns ``(submission, created)``.
        An existing submission for the pair is returned as-is, submitted or not.
        """
        existing = Submission.objects.filter(quiz=quiz, learner=learner).first()
        if existing:
            return existing, False

        if not quiz.is_published:
            raise exceptions.StateConflict("This quiz is not accepting submissions.")

        if not learner_name:
            profile = getattr(learner, 'profile', None)
            learner_name = profile.get_display_name() if profile else learner.get_username()

        try:
            with transaction.atomic():
                submission = Submission.objects.create(quiz=quiz, learner=learner, learner_name=learner_name)
        except IntegrityError:
            # A concurrent start won the unique (quiz, learner) constraint.
            return Submission.objects.get(quiz=quiz, learner=learner), False

        AuditLog.log(
            event_type=AuditLog.EventType.QUIZ_START,
            description=f"Started: {quiz.title}",
            user=learner,
            metadata={'quiz_id': quiz.id, 'submission_id': submission.id}
        )
        logger.info(f"Submission {submission.id} started for quiz {quiz.id}")
        return submission, True

    @classmethod
    def get_learner_submission(cls, quiz, learner):
        return Submission.objects.filter(quiz=quiz, learner=learner).prefetch_related(
            Prefetch('answers', queryset=Answer.objects.select_related('question'))
        ).first()

    @classmethod
    def list_submissions(cls, quiz):
        return Submission.objects.filter(quiz=quiz).select_related('learner').prefetch_related(
            Prefetch('answers', queryset=Answer.objects.select_related('question'))
        ).order_by('-submitted_at', '-started_at')

    @staticmethod
    def _answer_fields(question, payload):
        """Normalize an answer payload into model fields for the question's type."""
        qtype = question.question_type
        fields = {'answer_text': '', 'selected_options': None, 'media_url': '', 'file_name': ''}

        if qtype in TEXT_TYPES:
            text = payload.get('answer_text') or ''
            if not isinstance(text, str):
                raise exceptions.ValidationError("Answer text must be a string.", field='answer_text')
            fields['answer_text'] = text
        elif qtype in SELECT_TYPES:
            selected = payload.get('selected_options') or []
            if not isinstance(selected, (list, tuple)):
                raise exceptions.ValidationError("Selected options must be a list.", field='selected_options')
            selected = [str(option) for option in dict.fromkeys(selected)]
            unknown = [option for option in selected if option not in (question.options or [])]
            if unknown:
                raise exceptions.ValidationError(
                    f"Unknown options for question {question.id}: {', '.join(unknown)}",
                    field='selected_options'
                )
            if qtype == QuestionType.SINGLE_SELECT and len(selected) > 1:
                raise exceptions.ValidationError("Only one option may be selected.", field='selected_options')
            fields['selected_options'] = selected
        elif qtype in MEDIA_TYPES:
            media_url = payload.get('media_url') or ''
            if not isinstance(media_url, str):
                raise exceptions.ValidationError("Media URL must be a string.", field='media_url')
            # Storage URLs are http(s) or storage-relative; local previews never are.
            if urlsplit(media_url).scheme not in ('', 'http', 'https'):
                raise exceptions.ValidationError(
                    f"Media for question {question.id} must be an uploaded file URL.", field='media_url'
                )
            fields['media_url'] = media_url
            fields['file_name'] = payload.get('file_name') or ''
        return fields

    @classmethod
    def upsert_answers(cls, submission, answers):
        """
        Save answers keyed by (submission, question). Re-sending an answer
        overwrites the previous value; nothing is ever appended.
        """
        if not answers:
            return []

        questions = {q.id: q for q in submission.quiz.questions.all()}
        saved = []
        with transaction.atomic():
            locked = Submission.objects.select_for_update().get(pk=submission.pk)
            if locked.is_submitted:
                raise exceptions.StateConflict("This submission has already been submitted.")

            for payload in answers:
                question = questions.get(payload.get('question_id'))
                if question is None:
                    raise exceptions.ValidationError(
                        f"Question {payload.get('question_id')} does not belong to this quiz.",
                        field='question_id'
                    )
                answer, _ = Answer.objects.update_or_create(
                    submission=locked,
                    question=question,
                    defaults=cls._answer_fields(question, payload)
                )
                saved.append(answer)

        logger.debug(f"Saved {len(saved)} answers for submission {submission.id}")
        return saved

    @classmethod
    def submit(cls, submission, user=None):
        """
        Close the submission and compute its score. Safe to repeat: a submitted
        submission just reports its current effective score.
        """
        with transaction.atomic():
            locked = Submission.objects.select_for_update().get(pk=submission.pk)
            if locked.is_submitted:
                return locked.effective_score

            locked.submitted_at = timezone.now()
            locked.score = cls._compute_score(locked)
            locked.save(update_fields=['submitted_at', 'score'])

        AuditLog.log(
            event_type=AuditLog.EventType.QUIZ_SUBMIT,
            description=f"Submitted: {locked.quiz.title}",
            user=user or locked.learner,
            metadata={'quiz_id': locked.quiz_id, 'submission_id': locked.id, 'score': locked.score}
        )
        logger.info(f"Submission {locked.id} submitted with score {locked.score}")

        submission.submitted_at = locked.submitted_at
        submission.score = locked.score
        return locked.effective_score

    # =========================================================================
    # GRADING
    # =========================================================================

    @staticmethod
    def _compute_score(submission):
        questions = list(submission.quiz.questions.all())
        answers = list(Answer.objects.filter(submission=submission))
        return compute_aggregate(questions, answers)

    @classmethod
    def recompute(cls, submission):
        submission.score = cls._compute_score(submission)
        submission.save(update_fields=['score'])
        return submission.score

    @classmethod
    def grade_answer(cls, answer, mark, feedback=UNSET, user=None):
        """Record a manual mark (None clears it) and return the new effective score."""
        # Marks on one submission are written one at a time so the aggregate
        # always reflects every stored mark.
        with transaction.atomic():
            submission = Submission.objects.select_for_update().get(pk=answer.submission_id)
            if not submission.is_submitted:
                raise exceptions.StateConflict("Answers can only be graded after submission.")

            answer.refresh_from_db(fields=['mark', 'feedback', 'graded_at'])
            old_mark = answer.mark
            answer.mark = validate_mark(answer.question, mark)
            if feedback is not UNSET:
                answer.feedback = feedback or ''
            answer.graded_at = timezone.now() if answer.mark is not None else None
            answer.save(update_fields=['mark', 'feedback', 'graded_at'])

            cls.recompute(submission)
        answer.submission = submission
        new_score = effective_score(submission.score, submission.score_override)

        AuditLog.log(
            event_type=AuditLog.EventType.ANSWER_GRADED,
            description=f"Manual grade: {old_mark} -> {answer.mark}",
            user=user,
            metadata={'answer_id': answer.id, 'submission_id': submission.id, 'score': submission.score}
        )
        logger.info(f"Answer {answer.id} graded {answer.mark}; submission {submission.id} now {submission.score}")
        return new_score

    @classmethod
    def set_submission_feedback(cls, submission, feedback=UNSET, override=UNSET, user=None):
        """
        Set overall feedback and/or the final score override (None clears it).
        The computed score is kept alongside the override.
        """
        with transaction.atomic():
            locked = Submission.objects.select_for_update().get(pk=submission.pk)
            if not locked.is_submitted:
                raise exceptions.StateConflict("Feedback can only be given after submission.")

            update_fields = []
            if override is not UNSET:
                locked.score_override = validate_override(override)
                update_fields.append('score_override')
            if feedback is not UNSET:
                locked.overall_feedback = feedback or ''
                update_fields.append('overall_feedback')
            if update_fields:
                locked.save(update_fields=update_fields)

            cls.recompute(locked)

        submission.score = locked.score
        submission.score_override = locked.score_override
        submission.overall_feedback = locked.overall_feedback

        AuditLog.log(
            event_type=AuditLog.EventType.SUBMISSION_FEEDBACK,
            description=f"Feedback updated (override: {submission.score_override})",
            user=user,
            metadata={
                'submission_id': submission.id,
                'score': submission.score,
                'score_override': submission.score_override,
            }
        )
        logger.info(f"Submission {submission.id} override set to {submission.score_override}")
        return submission.effective_score

