from rest_framework import serializers
from django.utils import timezone
from drf_spectacular.utils import extend_schema_field

from quizzes.grading import compute_automatic
from quizzes.models import Quiz, Question, Submission, Answer
from quizzes.permissions import is_instructor
from quizzes.questions import flatten


def _include_correct(serializer):
    """Answer keys are only shown to instructors (or when a caller asks explicitly)."""
    if 'include_correct' in serializer.context:
        return serializer.context['include_correct']
    request = serializer.context.get('request')
    return bool(request and is_instructor(request.user))


class QuestionSerializer(serializers.ModelSerializer):
    class Meta:
        model = Question
        fields = [
            'id', 'quiz', 'parent', 'question_type', 'prompt', 'points', 'order',
            'options', 'correct_answers', 'media_url'
        ]
        read_only_fields = ['id']

    def to_representation(self, instance):
        data = super().to_representation(instance)
        if not _include_correct(self):
            data.pop('correct_answers', None)
        return data


class QuizSerializer(serializers.ModelSerializer):
    owner = serializers.CharField(source='owner.username', read_only=True)
    question_count = serializers.SerializerMethodField()
    submission_count = serializers.SerializerMethodField()
    my_submission = serializers.SerializerMethodField()

    class Meta:
        model = Quiz
        fields = [
            'id', 'title', 'owner', 'time_limit_minutes', 'status',
            'question_count', 'submission_count', 'my_submission',
            'created_at', 'updated_at', 'published_at'
        ]
        read_only_fields = ['status', 'created_at', 'updated_at', 'published_at']

    def get_question_count(self, obj) -> int:
        count = getattr(obj, 'question_count', None)
        return obj.get_question_count() if count is None else count

    def get_submission_count(self, obj) -> int:
        count = getattr(obj, 'submission_count', None)
        return obj.submissions.count() if count is None else count

    @extend_schema_field(serializers.DictField(allow_null=True))
    def get_my_submission(self, obj):
        """Only set on learner listings, where the caller's attempt is prefetched."""
        submissions = getattr(obj, 'learner_submissions', None)
        if not submissions:
            return None
        submission = submissions[0]
        return {
            'id': submission.id,
            'submitted_at': submission.submitted_at,
            'effective_score': submission.effective_score,
        }


class QuizDetailSerializer(QuizSerializer):
    questions = serializers.SerializerMethodField()
    total_points = serializers.DecimalField(
        source='get_total_points', max_digits=8, decimal_places=2, read_only=True
    )

    class Meta(QuizSerializer.Meta):
        fields = QuizSerializer.Meta.fields + ['total_points', 'questions']

    @extend_schema_field(QuestionSerializer(many=True))
    def get_questions(self, obj):
        questions = self.context.get('questions')
        if questions is None:
            questions = flatten(obj.questions.all())
        return QuestionSerializer(questions, many=True, context=self.context).data


class AnswerSerializer(serializers.ModelSerializer):
    question_type = serializers.CharField(source='question.question_type', read_only=True)
    max_points = serializers.DecimalField(source='question.points', max_digits=6, decimal_places=2, read_only=True)
    is_correct = serializers.SerializerMethodField()

    class Meta:
        model = Answer
        fields = [
            'id', 'question', 'question_type', 'answer_text', 'selected_options',
            'media_url', 'file_name', 'mark', 'max_points', 'is_correct', 'feedback',
            'answered_at', 'graded_at'
        ]
        read_only_fields = fields

    @extend_schema_field(serializers.BooleanField(allow_null=True))
    def get_is_correct(self, obj):
        result = compute_automatic(obj.question, obj)
        return result.is_correct if result else None


class SubmissionSerializer(serializers.ModelSerializer):
    learner = serializers.CharField(source='learner.username', read_only=True)
    answers = AnswerSerializer(many=True, read_only=True)
    status = serializers.CharField(read_only=True)
    effective_score = serializers.IntegerField(read_only=True, allow_null=True)
    deadline = serializers.DateTimeField(read_only=True, allow_null=True)
    time_remaining = serializers.SerializerMethodField()

    class Meta:
        model = Submission
        fields = [
            'id', 'quiz', 'learner', 'learner_name', 'status',
            'started_at', 'submitted_at', 'deadline', 'time_remaining',
            'score', 'score_override', 'effective_score', 'overall_feedback',
            'answers'
        ]
        read_only_fields = fields

    @extend_schema_field(serializers.IntegerField(allow_null=True))
    def get_time_remaining(self, obj) -> int | None:
        if obj.is_submitted or obj.deadline is None:
            return None
        remaining = obj.deadline - timezone.now()
        return max(0, int(remaining.total_seconds()))

    def to_representation(self, instance):
        data = super().to_representation(instance)
        if not instance.is_submitted:
            # No correctness hints while the attempt is still open.
            for answer in data.get('answers', []):
                answer['is_correct'] = None
                answer['mark'] = None
                answer['feedback'] = ''
        return data


class StartSubmissionSerializer(serializers.Serializer):
    learner_name = serializers.CharField(required=False, allow_blank=True, max_length=200)


class AnswerPayloadSerializer(serializers.Serializer):
    question_id = serializers.IntegerField()
    answer_text = serializers.CharField(required=False, allow_blank=True, trim_whitespace=False)
    selected_options = serializers.ListField(child=serializers.CharField(), required=False, allow_null=True)
    media_url = serializers.CharField(required=False, allow_blank=True, max_length=500)
    file_name = serializers.CharField(required=False, allow_blank=True, max_length=255)


class AnswerUpsertSerializer(serializers.Serializer):
    answers = AnswerPayloadSerializer(many=True, allow_empty=True)


class GradeAnswerSerializer(serializers.Serializer):
    mark = serializers.DecimalField(max_digits=6, decimal_places=2, allow_null=True)
    feedback = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class SubmissionFeedbackSerializer(serializers.Serializer):
    overall_feedback = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    score_override = serializers.IntegerField(required=False, allow_null=True)


class UploadSerializer(serializers.Serializer):
    file = serializers.FileField(help_text="Recording or attachment to store")
