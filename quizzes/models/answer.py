from django.db import models


class Answer(models.Model):
    submission = models.ForeignKey(
        'Submission',
        on_delete=models.CASCADE,
        related_name='answers',
        db_index=True
    )
    question = models.ForeignKey(
        'Question',
        on_delete=models.PROTECT,
        related_name='answers',
        db_index=True
    )

    answer_text = models.TextField(blank=True)
    selected_options = models.JSONField(null=True, blank=True)
    media_url = models.CharField(max_length=500, blank=True)
    file_name = models.CharField(max_length=255, blank=True)

    mark = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    feedback = models.TextField(blank=True)
    answered_at = models.DateTimeField(auto_now=True)
    graded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['question__order', 'question_id']
        constraints = [
            models.UniqueConstraint(
                fields=['submission', 'question'],
                name='unique_submission_question'
            )
        ]

    def __str__(self):
        return f"Answer to Q{self.question.order} by {self.submission.learner_name}"
