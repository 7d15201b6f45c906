import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lms_backend.config import settings
from lms_backend.datetime_utils import ensure_timezone_aware, utc_now
from lms_backend.errors import AlreadySubmitted, NotSubmitted
from lms_backend.models import CHOICE_KINDS, AttemptStatus, Question, QuestionResponse, TestAttempt
from lms_backend.services.attempt_access import find_owned_attempt

logger = logging.getLogger(__name__)


@dataclass
class AttemptScore:
    attempt_id: int
    status: AttemptStatus
    total_points: int
    max_points: int
    percentage: float
    passed: bool
    passing_score: float
    submitted_at: datetime
    duration_seconds: int


@dataclass
class ResponseReview:
    question_id: int
    stem: str
    kind: str
    points: int
    answer: Any
    is_correct: Optional[bool]
    points_awarded: int
    correct_option_ids: Optional[List[int]]


@dataclass
class AttemptResults:
    attempt_id: int
    test_id: int
    test_title: str
    status: AttemptStatus
    total_points: int
    max_points: int
    percentage: float
    passing_score: float
    passed: bool
    started_at: datetime
    submitted_at: datetime
    duration_seconds: Optional[int]
    responses: List[ResponseReview] = field(default_factory=list)
    unanswered_question_ids: List[int] = field(default_factory=list)


def _raw_percentage(total_points: int, max_points: int) -> float:
    if not max_points:
        return 0.0
    return total_points / max_points * 100.0


def calculate_percentage(total_points: int, max_points: int) -> float:
    """Percentage of max points rounded for display, 0.0 for a test worth nothing."""
    return round(_raw_percentage(total_points, max_points), 2)


def is_passing(total_points: int, max_points: int, threshold: float) -> bool:
    # Compared unrounded: 2/3 is below a 66.67 threshold
    return _raw_percentage(total_points, max_points) >= threshold


def passing_threshold(test) -> float:
    if test.passing_score is None:
        return settings.DEFAULT_PASSING_SCORE
    return float(test.passing_score)


class ScoringAggregator:
    """
    Finalizes attempts and builds their results.

    Finalization is a one-way compare-and-set on ``status = in_progress``;
    whoever loses the race gets AlreadySubmitted.
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    def submit_attempt(self, attempt_id: int, user_id: int, test_id: Optional[int] = None) -> AttemptScore:
        attempt = find_owned_attempt(self.db, attempt_id, user_id, test_id)
        if attempt.status != AttemptStatus.IN_PROGRESS:
            logger.warning("Rejected submit: attempt %s is already %s", attempt_id, attempt.status.value)
            raise AlreadySubmitted()
        return self.finalize(attempt)

    def finalize_expired(self, attempt_id: int, user_id: int) -> Optional[AttemptScore]:
        """Close an attempt whose time ran out; None if it was already closed."""
        attempt = find_owned_attempt(self.db, attempt_id, user_id)
        if attempt.status != AttemptStatus.IN_PROGRESS:
            return None
        try:
            return self.finalize(attempt, reason="time limit expired")
        except AlreadySubmitted:
            # A concurrent submit closed it first, which is the outcome we wanted
            return None

    def finalize(self, attempt: TestAttempt, reason: str = "submitted") -> AttemptScore:
        now = self.clock()
        attempt_id = attempt.id
        user_id = attempt.user_id
        test = attempt.test

        try:
            claimed = self.db.query(TestAttempt).filter(
                TestAttempt.id == attempt_id,
                TestAttempt.status == AttemptStatus.IN_PROGRESS
            ).update(
                {
                    TestAttempt.status: AttemptStatus.COMPLETED,
                    TestAttempt.submitted_at: now,
                    TestAttempt.updated_at: now,
                },
                synchronize_session=False,
            )
            if claimed == 0:
                self.db.rollback()
                logger.warning("Rejected submit: attempt %s was finalized concurrently", attempt_id)
                raise AlreadySubmitted()

            # Locking read after the status flip: it sees responses committed since this
            # transaction's first read, even under a REPEATABLE READ snapshot
            awarded = self.db.query(QuestionResponse.points_awarded).filter(
                QuestionResponse.attempt_id == attempt_id
            ).with_for_update().all()
            max_points = self.db.query(
                func.coalesce(func.sum(Question.points), 0)
            ).filter(Question.test_id == test.id).scalar()

            total_points = sum(points or 0 for (points,) in awarded)
            max_points = int(max_points or 0)
            percentage = calculate_percentage(total_points, max_points)
            threshold = passing_threshold(test)
            passed = is_passing(total_points, max_points, threshold)
            duration = max(0, int((now - ensure_timezone_aware(attempt.started_at)).total_seconds()))

            self.db.query(TestAttempt).filter(TestAttempt.id == attempt_id).update(
                {
                    TestAttempt.total_points: total_points,
                    TestAttempt.max_points: max_points,
                    TestAttempt.score: percentage,
                    TestAttempt.passed: passed,
                    TestAttempt.duration_seconds: duration,
                },
                synchronize_session=False,
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                "Failed to finalize attempt (operation=finalize attempt=%s user=%s)",
                attempt_id, user_id
            )
            raise

        logger.info(
            "Attempt %s %s: %s/%s points (%.2f%%, passed=%s)",
            attempt_id, reason, total_points, max_points, percentage, passed
        )
        return AttemptScore(
            attempt_id=attempt_id,
            status=AttemptStatus.COMPLETED,
            total_points=total_points,
            max_points=max_points,
            percentage=percentage,
            passed=passed,
            passing_score=threshold,
            submitted_at=now,
            duration_seconds=duration,
        )

    def get_results(self, attempt_id: int, user_id: int, test_id: Optional[int] = None) -> AttemptResults:
        """
        Final score plus a per-question review.

        Only available once the attempt has left ``in_progress``.
        """
        attempt = find_owned_attempt(self.db, attempt_id, user_id, test_id)
        if attempt.status == AttemptStatus.IN_PROGRESS:
            raise NotSubmitted()

        test = attempt.test
        rows = self.db.query(QuestionResponse, Question).join(
            Question, Question.id == QuestionResponse.question_id
        ).filter(
            QuestionResponse.attempt_id == attempt.id
        ).order_by(Question.order_index, Question.id).all()

        reviews = []
        answered = set()
        for response, question in rows:
            answered.add(question.id)
            correct_ids = None
            if question.kind in CHOICE_KINDS:
                correct_ids = [o.id for o in question.options if o.is_correct]
            reviews.append(ResponseReview(
                question_id=question.id,
                stem=question.stem,
                kind=question.kind.value,
                points=question.points,
                answer=response.answer,
                is_correct=response.is_correct,
                points_awarded=response.points_awarded,
                correct_option_ids=correct_ids,
            ))

        unanswered = [q.id for q in test.questions if q.id not in answered]
        threshold = passing_threshold(test)
        total_points = attempt.total_points or 0
        max_points = attempt.max_points or 0
        percentage = attempt.score if attempt.score is not None else calculate_percentage(total_points, max_points)

        return AttemptResults(
            attempt_id=attempt.id,
            test_id=test.id,
            test_title=test.title,
            status=attempt.status,
            total_points=total_points,
            max_points=max_points,
            percentage=percentage,
            passing_score=threshold,
            passed=bool(attempt.passed) if attempt.passed is not None else is_passing(
                total_points, max_points, threshold
            ),
            started_at=ensure_timezone_aware(attempt.started_at),
            submitted_at=ensure_timezone_aware(attempt.submitted_at),
            duration_seconds=attempt.duration_seconds,
            responses=reviews,
            unanswered_question_ids=unanswered,
        )
