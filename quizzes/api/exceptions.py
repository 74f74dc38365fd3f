import logging
import re

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from quizzes.exceptions import InvalidGrade, StateConflict, UploadFailure, ValidationError

logger = logging.getLogger(__name__)

STATUS_CODES = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (InvalidGrade, status.HTTP_400_BAD_REQUEST),
    (StateConflict, status.HTTP_409_CONFLICT),
    (UploadFailure, status.HTTP_502_BAD_GATEWAY),
)


def error_code(exc):
    """``StateConflict`` -> ``state_conflict``."""
    return re.sub(r'(?<!^)(?=[A-Z])', '_', type(exc).__name__).lower()


def quiz_exception_handler(exc, context):
    for error_class, status_code in STATUS_CODES:
        if isinstance(exc, error_class):
            data = {'detail': exc.message, 'code': error_code(exc)}
            if getattr(exc, 'field', None):
                data['field'] = exc.field
            view = context.get('view')
            logger.info(f"{type(exc).__name__} in {type(view).__name__}: {exc.message}")
            return Response(data, status=status_code)
    return exception_handler(exc, context)
