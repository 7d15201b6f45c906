"""
Lookups shared by the attempt services: ownership-checked attempt loading
and the server-side time limit.
"""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from lms_backend.config import settings
from lms_backend.datetime_utils import ensure_timezone_aware
from lms_backend.errors import NotFound
from lms_backend.models import TestAttempt


def find_owned_attempt(
    db: Session,
    attempt_id: int,
    user_id: int,
    test_id: Optional[int] = None,
) -> TestAttempt:
    """
    Load an attempt owned by ``user_id``.

    A missing attempt, someone else's attempt and an attempt of another
    test all raise the same NotFound.
    """
    query = db.query(TestAttempt).filter(
        TestAttempt.id == attempt_id,
        TestAttempt.user_id == user_id,
    )
    if test_id is not None:
        query = query.filter(TestAttempt.test_id == test_id)

    attempt = query.first()
    if not attempt:
        raise NotFound("Test attempt not found")
    return attempt


def attempt_deadline(attempt: TestAttempt) -> Optional[datetime]:
    time_limit = attempt.test.time_limit_seconds
    if not time_limit:
        return None
    return ensure_timezone_aware(attempt.started_at) + timedelta(seconds=time_limit)


def is_expired(attempt: TestAttempt, now: datetime) -> bool:
    if not settings.ENFORCE_TIME_LIMIT:
        return False
    deadline = attempt_deadline(attempt)
    if deadline is None:
        return False
    return now > deadline + timedelta(seconds=settings.TIME_LIMIT_GRACE_SECONDS)
