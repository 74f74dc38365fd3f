"""
API views for the quiz engine.
Authoring, taking and grading endpoints over QuizService.
"""
from django.shortcuts import get_object_or_404
from rest_framework import viewsets, mixins, status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from rest_framework.views import APIView
from rest_framework.parsers import MultiPartParser, FormParser
from drf_spectacular.utils import (
    extend_schema, extend_schema_view, OpenApiParameter,
    OpenApiExample, OpenApiResponse
)

from quizzes.conf import UNSET
from quizzes.models import Question, Submission, Answer
from quizzes.permissions import (
    IsInstructor, IsInstructorOrReadOnly, IsSubmissionLearner, CanViewSubmission, is_instructor
)
from quizzes.services import QuizService, MediaStorageService, INSTRUCTOR, LEARNER
from quizzes.throttling import BurstRateThrottle, SubmissionRateThrottle, UploadRateThrottle
from .serializers import (
    QuizSerializer, QuizDetailSerializer, QuestionSerializer, SubmissionSerializer,
    StartSubmissionSerializer, AnswerUpsertSerializer, GradeAnswerSerializer,
    SubmissionFeedbackSerializer, UploadSerializer
)


# =============================================================================
# QUIZZES
# =============================================================================

@extend_schema_view(
    list=extend_schema(
        summary="List quizzes",
        description="""
Returns a paginated list of quizzes.

**Learners** see only published quizzes.
**Instructors/Admins** see all quizzes including drafts.
""",
        examples=[
            OpenApiExample(
                'Response Example',
                value={
                    "count": 1,
                    "results": [{
                        "id": 1,
                        "title": "Spanish listening check",
                        "time_limit_minutes": 20,
                        "question_count": 6,
                        "status": "published"
                    }]
                },
                response_only=True
            )
        ]
    ),
    retrieve=extend_schema(
        summary="Get quiz with questions",
        description="Questions come in display order. Answer keys are hidden from learners "
                    "and from instructors previewing with `?role=learner`.",
        parameters=[OpenApiParameter('role', str, enum=[INSTRUCTOR, LEARNER], required=False)]
    ),
    create=extend_schema(
        summary="Create quiz",
        description="Create a draft quiz. **Requires Instructor or Admin role.**",
        examples=[
            OpenApiExample(
                'Request Example',
                value={"title": "Spanish listening check", "time_limit_minutes": 20},
                request_only=True
            )
        ]
    ),
    update=extend_schema(summary="Update quiz"),
    partial_update=extend_schema(summary="Partially update quiz"),
    destroy=extend_schema(
        summary="Delete quiz",
        description="Quizzes that already have submissions cannot be deleted (409)."
    )
)
@extend_schema(tags=['Quizzes'])
class QuizViewSet(viewsets.ModelViewSet):
    """
    ViewSet for managing quizzes.

    Instructors author quizzes and their questions; learners start and take
    published quizzes.
    """
    permission_classes = [IsAuthenticated, IsInstructorOrReadOnly]
    filterset_fields = ['status']
    search_fields = ['title']
    ordering_fields = ['title', 'created_at']

    def get_queryset(self):
        if getattr(self, 'swagger_fake_view', False):
            return QuizService.list_quizzes()
        user = self.request.user
        if is_instructor(user):
            return QuizService.list_quizzes()
        return QuizService.list_quizzes(learner=user)

    def get_serializer_class(self):
        if self.action == 'retrieve':
            return QuizDetailSerializer
        return QuizSerializer

    def retrieve(self, request, *args, **kwargs):
        quiz = self.get_object()
        role = LEARNER
        if is_instructor(request.user) and request.query_params.get('role', INSTRUCTOR) == INSTRUCTOR:
            role = INSTRUCTOR
        quiz, questions = QuizService.get_quiz(quiz.pk, role=role)
        serializer = QuizDetailSerializer(
            quiz,
            context={'request': request, 'questions': questions, 'include_correct': role == INSTRUCTOR}
        )
        return Response(serializer.data)

    def perform_create(self, serializer):
        serializer.instance = QuizService.create_quiz(
            owner=self.request.user,
            title=serializer.validated_data.get('title'),
            time_limit_minutes=serializer.validated_data.get('time_limit_minutes'),
        )

    def perform_update(self, serializer):
        serializer.instance = QuizService.update_quiz(
            serializer.instance,
            title=serializer.validated_data.get('title', UNSET),
            time_limit_minutes=serializer.validated_data.get('time_limit_minutes', UNSET),
        )

    def perform_destroy(self, instance):
        QuizService.delete_quiz(instance)

    @extend_schema(
        summary="Publish quiz",
        description="Make the quiz available to learners. Requires at least one question.",
        request=None,
        responses={
            200: QuizSerializer,
            403: OpenApiResponse(description="Permission denied"),
            409: OpenApiResponse(description="Quiz has no questions")
        }
    )
    @action(detail=True, methods=['post'], permission_classes=[IsAuthenticated, IsInstructor])
    def publish(self, request, pk=None):
        quiz = QuizService.publish_quiz(self.get_object(), user=request.user)
        return Response(QuizSerializer(quiz, context={'request': request}).data)

    @extend_schema(summary="Unpublish quiz", request=None, responses={200: QuizSerializer})
    @action(detail=True, methods=['post'], permission_classes=[IsAuthenticated, IsInstructor])
    def unpublish(self, request, pk=None):
        quiz = QuizService.unpublish_quiz(self.get_object(), user=request.user)
        return Response(QuizSerializer(quiz, context={'request': request}).data)

    @extend_schema(
        summary="Start or resume attempt",
        description="""
Start the caller's attempt at this quiz, or return the existing one.

Each learner has a single attempt per quiz. Returns **201** when a new
submission was created and **200** when an existing one is resumed.
""",
        request=StartSubmissionSerializer,
        responses={200: SubmissionSerializer, 201: SubmissionSerializer, 409: OpenApiResponse(description="Quiz not published")}
    )
    @action(detail=True, methods=['post'], permission_classes=[IsAuthenticated])
    def start(self, request, pk=None):
        serializer = StartSubmissionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        submission, created = QuizService.start_submission(
            self.get_object(),
            request.user,
            learner_name=serializer.validated_data.get('learner_name') or None
        )
        return Response(
            SubmissionSerializer(submission, context={'request': request}).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK
        )

    @extend_schema(summary="My submission for this quiz", responses={200: SubmissionSerializer, 404: dict})
    @action(detail=True, methods=['get'], url_path='my-submission', permission_classes=[IsAuthenticated])
    def my_submission(self, request, pk=None):
        submission = QuizService.get_learner_submission(self.get_object(), request.user)
        if submission is None:
            return Response({"detail": "You have not started this quiz."}, status=status.HTTP_404_NOT_FOUND)
        return Response(SubmissionSerializer(submission, context={'request': request}).data)

    @extend_schema(summary="All submissions for this quiz", responses={200: SubmissionSerializer(many=True)})
    @action(detail=True, methods=['get'], permission_classes=[IsAuthenticated, IsInstructor])
    def submissions(self, request, pk=None):
        submissions = QuizService.list_submissions(self.get_object())
        return Response(SubmissionSerializer(submissions, many=True, context={'request': request}).data)


# =============================================================================
# QUESTIONS
# =============================================================================

@extend_schema_view(
    create=extend_schema(
        summary="Add question",
        description="""
Add a question to a quiz. Omit `order` to append after the existing questions.

Select types need at least two unique options; media prompts need `media_url`;
sub-questions set `parent` to a media prompt of the same quiz.
""",
        examples=[
            OpenApiExample(
                'Single select',
                value={
                    "quiz": 1,
                    "question_type": "single_select",
                    "prompt": "Capital of France?",
                    "points": "2.00",
                    "options": ["Paris", "Lyon", "Nice"],
                    "correct_answers": ["Paris"]
                },
                request_only=True
            )
        ]
    ),
    destroy=extend_schema(
        summary="Delete question",
        description="Deleting a media prompt removes its sub-questions. Answered questions cannot be deleted (409)."
    )
)
@extend_schema(tags=['Questions'])
class QuestionViewSet(viewsets.ModelViewSet):
    """ViewSet for authoring quiz questions. Instructors only."""
    serializer_class = QuestionSerializer
    permission_classes = [IsAuthenticated, IsInstructor]
    filterset_fields = ['quiz', 'question_type', 'parent']

    def get_queryset(self):
        return Question.objects.select_related('quiz').order_by('quiz_id', 'order', 'id')

    @staticmethod
    def _service_data(validated_data):
        data = dict(validated_data)
        data.pop('quiz', None)
        if 'parent' in data:
            data['parent'] = data['parent'].id if data['parent'] else None
        return data

    def perform_create(self, serializer):
        serializer.instance = QuizService.create_question(
            serializer.validated_data['quiz'],
            self._service_data(serializer.validated_data)
        )

    def perform_update(self, serializer):
        serializer.instance = QuizService.update_question(
            serializer.instance,
            self._service_data(serializer.validated_data)
        )

    def perform_destroy(self, instance):
        QuizService.delete_question(instance)


# =============================================================================
# SUBMISSIONS
# =============================================================================

@extend_schema(tags=['Submissions'])
class SubmissionViewSet(mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    """
    A learner's attempt at a quiz.

    Answers are saved repeatedly while the attempt is open (autosave), then
    the attempt is submitted once. Instructors grade afterwards.
    """
    serializer_class = SubmissionSerializer
    permission_classes = [IsAuthenticated, CanViewSubmission]

    def get_queryset(self):
        if getattr(self, 'swagger_fake_view', False):
            return Submission.objects.none()
        queryset = Submission.objects.select_related('quiz', 'learner').prefetch_related('answers__question')
        if not is_instructor(self.request.user):
            queryset = queryset.filter(learner=self.request.user)
        return queryset

    @extend_schema(
        summary="Save answers",
        description="""
Upsert answers for an open submission. Sending an answer again replaces the
previous value, so the whole buffer can be re-sent on every autosave.
""",
        request=AnswerUpsertSerializer,
        responses={200: dict, 409: OpenApiResponse(description="Submission already submitted")},
        examples=[
            OpenApiExample(
                'Request Example',
                value={
                    "answers": [
                        {"question_id": 1, "selected_options": ["Paris"]},
                        {"question_id": 2, "answer_text": "Una casa grande"},
                        {"question_id": 3, "media_url": "/media/quiz-uploads/3f2a.webm", "file_name": "recording.webm"}
                    ]
                },
                request_only=True
            )
        ]
    )
    @action(
        detail=True, methods=['post'],
        permission_classes=[IsAuthenticated, IsSubmissionLearner],
        throttle_classes=[BurstRateThrottle]
    )
    def answers(self, request, pk=None):
        submission = self.get_object()
        serializer = AnswerUpsertSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        saved = QuizService.upsert_answers(submission, serializer.validated_data['answers'])
        return Response({"saved": len(saved)})

    @extend_schema(
        summary="Submit attempt",
        description="Close the attempt and compute the score. Repeating the call returns the same score.",
        request=None,
        responses={200: dict}
    )
    @action(
        detail=True, methods=['post'],
        permission_classes=[IsAuthenticated, IsSubmissionLearner],
        throttle_classes=[SubmissionRateThrottle]
    )
    def submit(self, request, pk=None):
        submission = self.get_object()
        score = QuizService.submit(submission, user=request.user)
        submission.refresh_from_db()
        return Response({
            "score": score,
            "submission": SubmissionSerializer(submission, context={'request': request}).data
        })

    @extend_schema(
        summary="Overall feedback and score override",
        description="Omitted fields are left unchanged; `score_override: null` clears the override.",
        request=SubmissionFeedbackSerializer,
        responses={200: dict, 400: dict, 409: dict},
        tags=['Grading']
    )
    @action(detail=True, methods=['patch'], permission_classes=[IsAuthenticated, IsInstructor])
    def feedback(self, request, pk=None):
        submission = self.get_object()
        serializer = SubmissionFeedbackSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        effective = QuizService.set_submission_feedback(
            submission,
            feedback=data.get('overall_feedback', UNSET),
            override=data.get('score_override', UNSET),
            user=request.user
        )
        return Response({
            "submission_id": submission.id,
            "score": submission.score,
            "score_override": submission.score_override,
            "effective_score": effective,
            "overall_feedback": submission.overall_feedback
        })


# =============================================================================
# GRADING
# =============================================================================

@extend_schema(tags=['Grading'])
class AnswerGradeView(APIView):
    """Manual mark for a single answer."""
    permission_classes = [IsAuthenticated, IsInstructor]

    @extend_schema(
        summary="Grade answer",
        description="Set a mark between 0 and the question's points, or `null` to clear it. "
                    "Returns the submission's new effective score.",
        request=GradeAnswerSerializer,
        responses={200: dict, 400: dict, 404: dict, 409: dict}
    )
    def patch(self, request, answer_id):
        answer = get_object_or_404(Answer.objects.select_related('question', 'submission'), pk=answer_id)
        serializer = GradeAnswerSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        new_score = QuizService.grade_answer(
            answer, data['mark'], feedback=data.get('feedback', UNSET), user=request.user
        )
        return Response({
            "answer_id": answer.id,
            "mark": str(answer.mark) if answer.mark is not None else None,
            "feedback": answer.feedback,
            "new_score": new_score
        })


# =============================================================================
# UPLOADS
# =============================================================================

@extend_schema(tags=['Uploads'])
class UploadView(APIView):
    """Durable storage for recordings and attached files."""
    permission_classes = [IsAuthenticated]
    parser_classes = [MultiPartParser, FormParser]
    throttle_classes = [UploadRateThrottle]

    @extend_schema(
        summary="Upload media",
        request={'multipart/form-data': UploadSerializer},
        responses={201: dict, 502: OpenApiResponse(description="Storage rejected the file")}
    )
    def post(self, request):
        serializer = UploadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        upload = serializer.validated_data['file']
        url = MediaStorageService.upload(
            upload.read(),
            upload.content_type or 'application/octet-stream',
            file_name=upload.name
        )
        return Response({"url": request.build_absolute_uri(url)}, status=status.HTTP_201_CREATED)
