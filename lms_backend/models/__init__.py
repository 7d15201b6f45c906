from lms_backend.models.user import User, UserRole
from lms_backend.models.course import Course, CourseModule
from lms_backend.models.test import Test, TestKind
from lms_backend.models.question import Question, QuestionOption, QuestionKind, CHOICE_KINDS
from lms_backend.models.test_attempt import TestAttempt, AttemptStatus
from lms_backend.models.question_response import QuestionResponse

__all__ = [
    "User",
    "UserRole",
    "Course",
    "CourseModule",
    "Test",
    "TestKind",
    "Question",
    "QuestionOption",
    "QuestionKind",
    "CHOICE_KINDS",
    "TestAttempt",
    "AttemptStatus",
    "QuestionResponse",
]
