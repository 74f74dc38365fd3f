from django.db import models
from django.core.validators import MinValueValidator

from quizzes.questions import QuestionDef, QuestionType, SELECT_TYPES


class Question(models.Model):
    QuestionType = QuestionType

    quiz = models.ForeignKey(
        'Quiz',
        on_delete=models.CASCADE,
        related_name='questions',
        db_index=True
    )
    parent = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='children'
    )
    question_type = models.CharField(
        max_length=20,
        choices=QuestionType.choices,
        db_index=True
    )
    prompt = models.TextField()
    points = models.DecimalField(
        max_digits=6,
        decimal_places=2,
        default=1.00,
        validators=[MinValueValidator(0)]
    )
    order = models.PositiveIntegerField(default=0)
    options = models.JSONField(default=list, blank=True)
    correct_answers = models.JSONField(default=list, blank=True)
    media_url = models.CharField(max_length=500, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['order', 'id']
        indexes = [
            models.Index(fields=['quiz', 'order'], name='question_quiz_order_idx'),
        ]

    def __str__(self):
        return f"Q{self.order}: {self.prompt[:50]}..."

    @property
    def is_select(self):
        return self.question_type in SELECT_TYPES

    def to_def(self) -> QuestionDef:
        return QuestionDef(
            id=self.id,
            quiz_id=self.quiz_id,
            question_type=self.question_type,
            prompt=self.prompt,
            points=self.points,
            options=list(self.options or []),
            correct_answers=list(self.correct_answers or []),
            media_url=self.media_url,
            order=self.order,
            parent_id=self.parent_id,
        )
