"""
Error taxonomy for the quiz engine.
Authoring, capture, upload, submit and grading failures each get their own type
so callers can decide between inline reporting, local recovery and retry.
"""


class QuizError(Exception):
    """Base class for every quiz engine error."""
    default_message = "Quiz operation failed."

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(QuizError):
    """Authoring input is malformed. Blocks only the offending operation."""
    default_message = "Invalid question definition."

    def __init__(self, message=None, field=None):
        super().__init__(message)
        self.field = field


class DeviceUnavailable(QuizError):
    """Audio input permission was denied or no compatible device exists."""
    default_message = "Microphone access denied or no audio input available."


class UploadFailure(QuizError):
    """A durable storage reference could not be obtained."""
    default_message = "Upload failed."


class SubmitFailure(QuizError):
    """Submitting failed; the submission is still open and safe to retry."""
    default_message = "Submission failed. Please try again."


class InvalidGrade(QuizError):
    """A manual mark or score override is out of range."""
    default_message = "Grade is out of range."


class StateConflict(QuizError):
    """The operation is not allowed in the record's current state."""
    default_message = "Operation not allowed in the current state."


class ServiceUnavailable(QuizError):
    """The persistence service could not be reached or failed internally."""
    default_message = "Quiz service unavailable."
