from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .api.views import (
    QuizViewSet, QuestionViewSet, SubmissionViewSet,
    AnswerGradeView, UploadView,
)

# Router for ViewSets
router = DefaultRouter()
router.register(r'quizzes', QuizViewSet, basename='quiz')
router.register(r'questions', QuestionViewSet, basename='question')
router.register(r'submissions', SubmissionViewSet, basename='submission')

urlpatterns = [
    path('answers/<int:answer_id>/grade/', AnswerGradeView.as_view(), name='answer-grade'),
    path('uploads/', UploadView.as_view(), name='upload'),
    path('', include(router.urls)),
]
