from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.contrib.auth.models import User
from .models import Quiz, Question, Submission, Answer, AuditLog, UserProfile


class UserProfileInline(admin.StackedInline):
    model = UserProfile
    can_delete = False
    verbose_name_plural = 'Profile'


class UserAdmin(BaseUserAdmin):
    inlines = [UserProfileInline]
    list_display = ['username', 'email', 'first_name', 'last_name', 'get_role', 'is_staff']
    list_filter = ['is_staff', 'is_superuser', 'is_active', 'profile__role']

    def get_role(self, obj):
        return obj.profile.get_role_display() if hasattr(obj, 'profile') else '-'
    get_role.short_description = 'Role'


admin.site.unregister(User)
admin.site.register(User, UserAdmin)


class QuestionInline(admin.TabularInline):
    model = Question
    fk_name = 'quiz'
    extra = 1
    fields = ['order', 'question_type', 'prompt', 'points', 'parent']


class AnswerInline(admin.TabularInline):
    model = Answer
    extra = 0
    readonly_fields = ['question', 'answer_text', 'selected_options', 'media_url', 'file_name', 'answered_at']
    fields = readonly_fields + ['mark', 'feedback']
    can_delete = False


@admin.register(Quiz)
class QuizAdmin(admin.ModelAdmin):
    list_display = ['title', 'owner', 'status', 'time_limit_minutes', 'created_at']
    list_filter = ['status']
    search_fields = ['title', 'owner__username']
    inlines = [QuestionInline]
    readonly_fields = ['created_at', 'updated_at', 'published_at']


@admin.register(Question)
class QuestionAdmin(admin.ModelAdmin):
    list_display = ['id', 'quiz', 'question_type', 'prompt_preview', 'points', 'order', 'parent']
    list_filter = ['question_type', 'quiz']
    search_fields = ['prompt']

    def prompt_preview(self, obj):
        return obj.prompt[:50] + '...' if len(obj.prompt) > 50 else obj.prompt
    prompt_preview.short_description = 'Question'


@admin.register(Submission)
class SubmissionAdmin(admin.ModelAdmin):
    list_display = ['id', 'learner_name', 'quiz', 'status_display', 'score', 'score_override', 'submitted_at']
    list_filter = ['quiz']
    search_fields = ['learner__username', 'learner_name', 'quiz__title']
    inlines = [AnswerInline]
    readonly_fields = ['started_at', 'submitted_at', 'score']
    fieldsets = (
        (None, {'fields': ('learner', 'learner_name', 'quiz')}),
        ('Results', {'fields': ('score', 'score_override', 'overall_feedback')}),
        ('Timestamps', {'fields': ('started_at', 'submitted_at'), 'classes': ('collapse',)}),
    )

    def status_display(self, obj):
        return obj.status.label
    status_display.short_description = 'Status'


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ['created_at', 'event_type', 'user', 'description_preview']
    list_filter = ['event_type', 'created_at']
    search_fields = ['user__username', 'description']
    readonly_fields = ['user', 'event_type', 'description', 'metadata', 'created_at']
    ordering = ['-created_at']

    def description_preview(self, obj):
        return obj.description[:50] + '...' if len(obj.description) > 50 else obj.description
    description_preview.short_description = 'Description'

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
