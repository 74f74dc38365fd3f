from datetime import timedelta

from django.db import models
from django.contrib.auth.models import User
from django.core.validators import MinValueValidator, MaxValueValidator
from django.utils import timezone


class Submission(models.Model):
    class Status(models.TextChoices):
        IN_PROGRESS = 'in_progress', 'In Progress'
        SUBMITTED = 'submitted', 'Submitted'

    quiz = models.ForeignKey(
        'Quiz',
        on_delete=models.PROTECT,
        related_name='submissions',
        db_index=True
    )
    learner = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='quiz_submissions',
        db_index=True
    )
    learner_name = models.CharField(max_length=200)

    started_at = models.DateTimeField(default=timezone.now)
    submitted_at = models.DateTimeField(null=True, blank=True)

    score = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=[MaxValueValidator(100)]
    )
    overall_feedback = models.TextField(blank=True)
    score_override = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(0), MaxValueValidator(100)]
    )

    class Meta:
        ordering = ['-started_at']
        indexes = [
            models.Index(fields=['quiz', 'submitted_at'], name='submission_quiz_submitted_idx'),
            models.Index(fields=['learner', 'quiz'], name='submission_learner_quiz_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['quiz', 'learner'],
                name='unique_quiz_learner_submission'
            )
        ]

    def __str__(self):
        return f"{self.learner_name} - {self.quiz.title}"

    @property
    def status(self):
        return self.Status.SUBMITTED if self.submitted_at else self.Status.IN_PROGRESS

    @property
    def is_submitted(self):
        return self.submitted_at is not None

    @property
    def deadline(self):
        if self.quiz.time_limit_minutes is None:
            return None
        return self.started_at + timedelta(minutes=self.quiz.time_limit_minutes)

    @property
    def effective_score(self):
        """Score shown to the learner: the instructor override when set."""
        return self.score_override if self.score_override is not None else self.score
