from rest_framework import permissions


class IsInstructor(permissions.BasePermission):
    message = "Only instructors and admins can perform this action."

    def has_permission(self, request, view):
        return is_instructor(request.user)


class IsInstructorOrReadOnly(permissions.BasePermission):
    message = "Only instructors and admins can perform this action."

    def has_permission(self, request, view):
        if request.method in permissions.SAFE_METHODS:
            return True
        return is_instructor(request.user)


class IsSubmissionLearner(permissions.BasePermission):
    message = "You can only change your own submission."

    def has_object_permission(self, request, view, obj):
        return obj.learner_id == request.user.id


class CanViewSubmission(permissions.BasePermission):
    def has_object_permission(self, request, view, obj):
        return obj.learner_id == request.user.id or is_instructor(request.user)


def is_instructor(user):
    if not user or not user.is_authenticated:
        return False
    if user.is_staff:
        return True
    return hasattr(user, 'profile') and user.profile.is_instructor
