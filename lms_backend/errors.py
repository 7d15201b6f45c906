"""
Domain errors raised by the attempt services.

Each error maps to one HTTP status; the handlers registered in ``main``
turn them into ``{"detail": ..., "error": code}`` responses. Services
never raise ``HTTPException`` directly.
"""
from fastapi import status


class LMSError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "lms_error"
    default_message = "Request could not be processed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(LMSError):
    # Also used when the caller does not own the entity, so existence is not leaked
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_message = "Not found"


class AttemptLimitExceeded(LMSError):
    status_code = status.HTTP_409_CONFLICT
    code = "attempt_limit_exceeded"
    default_message = "Maximum number of attempts reached for this test"


class AttemptNotWritable(LMSError):
    status_code = status.HTTP_409_CONFLICT
    code = "attempt_not_writable"
    default_message = "Test attempt is not in progress"


class AttemptExpired(AttemptNotWritable):
    code = "attempt_expired"
    default_message = "Time limit for this attempt has expired"


class AlreadySubmitted(LMSError):
    status_code = status.HTTP_409_CONFLICT
    code = "already_submitted"
    default_message = "Test attempt has already been submitted"


class NotSubmitted(LMSError):
    status_code = status.HTTP_409_CONFLICT
    code = "not_submitted"
    default_message = "Results are available after the attempt is submitted"


class InvalidAnswerShape(LMSError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "invalid_answer_shape"
    default_message = "Answer does not match the question type"


class TestLocked(LMSError):
    status_code = status.HTTP_409_CONFLICT
    code = "test_locked"
    default_message = "Test already has attempts; structural changes require force=true"


class InvalidQuestion(LMSError):
    code = "invalid_question"
    default_message = "Question definition is invalid"
