from django.db import models
from django.contrib.auth.models import User
from django.core.validators import MinValueValidator


class Quiz(models.Model):
    class Status(models.TextChoices):
        DRAFT = 'draft', 'Draft'
        PUBLISHED = 'published', 'Published'

    title = models.CharField(max_length=300)
    owner = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='owned_quizzes',
        db_index=True
    )
    time_limit_minutes = models.PositiveIntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(0)],
        help_text="Leave blank for no time limit"
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.DRAFT,
        db_index=True
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    published_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['owner', 'status'], name='quiz_owner_status_idx'),
            models.Index(fields=['created_at'], name='quiz_created_idx'),
        ]

    def __str__(self):
        return self.title

    @property
    def is_published(self):
        return self.status == self.Status.PUBLISHED

    def get_total_points(self):
        return self.questions.aggregate(total=models.Sum('points'))['total'] or 0

    def get_question_count(self):
        return self.questions.count()
