import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from lms_backend.datetime_utils import ensure_timezone_aware, utc_now
from lms_backend.errors import AlreadySubmitted, AttemptLimitExceeded, NotFound
from lms_backend.models import AttemptStatus, Question, Test, TestAttempt
from lms_backend.services.attempt_access import attempt_deadline, find_owned_attempt, is_expired
from lms_backend.services.responses import ResponseRecorder
from lms_backend.services.scoring import ScoringAggregator

logger = logging.getLogger(__name__)


@dataclass
class AttemptState:
    attempt_id: int
    test_id: int
    attempt_number: int
    status: AttemptStatus
    started_at: datetime
    submitted_at: Optional[datetime]
    elapsed_seconds: int
    answered_questions: int
    total_questions: int
    time_limit_seconds: Optional[int]
    remaining_seconds: Optional[int]
    expired: bool

    @property
    def writable(self) -> bool:
        return self.status == AttemptStatus.IN_PROGRESS and not self.expired


class AttemptManager:
    """
    Creates attempts and reports their progress.

    Only one in-progress attempt may exist per (user, test); starting again
    while one is open resumes it instead of inserting a second row.
    """

    def __init__(
        self,
        db: Session,
        recorder: Optional[ResponseRecorder] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.clock = clock
        self.recorder = recorder or ResponseRecorder(db, clock=clock)

    def start_attempt(self, user_id: int, test_id: int) -> Tuple[TestAttempt, bool]:
        """
        Start an attempt at a published test.

        Returns:
            (attempt, resumed). ``resumed`` is True when an in-progress
            attempt already existed and was returned as-is.
        """
        test = self.db.query(Test).filter(Test.id == test_id, Test.published == True).first()  # noqa: E712
        if not test:
            raise NotFound("Test not found")

        existing = self._active_attempt(user_id, test_id)
        if existing and is_expired(existing, self.clock()):
            self._close_expired(existing)
            existing = None
        if existing:
            logger.info("Resuming attempt %s for user %s on test %s", existing.id, user_id, test_id)
            return existing, True

        used = self.count_attempts(user_id, test_id)
        if test.allowed_attempts is not None and used >= test.allowed_attempts:
            logger.warning(
                "User %s reached attempt limit on test %s (%s/%s)",
                user_id, test_id, used, test.allowed_attempts
            )
            raise AttemptLimitExceeded(
                f"Maximum number of attempts ({test.allowed_attempts}) reached for this test"
            )

        question_order = [q.id for q in test.questions]
        if test.randomized:
            random.shuffle(question_order)

        attempt = TestAttempt(
            user_id=user_id,
            test_id=test_id,
            attempt_number=used + 1,
            status=AttemptStatus.IN_PROGRESS,
            question_order=question_order,
            started_at=self.clock(),
        )

        try:
            self.db.add(attempt)
            self.db.commit()
        except IntegrityError:
            # Lost a race against a concurrent start; the active-attempt index kept one row
            self.db.rollback()
            existing = self._active_attempt(user_id, test_id)
            if existing:
                logger.info("Concurrent start for user %s on test %s, resuming %s", user_id, test_id, existing.id)
                return existing, True
            logger.exception("Failed to start attempt (operation=start_attempt user=%s test=%s)", user_id, test_id)
            raise
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to start attempt (operation=start_attempt user=%s test=%s)", user_id, test_id)
            raise

        self.db.refresh(attempt)
        logger.info(
            "Started attempt %s (#%s) for user %s on test %s",
            attempt.id, attempt.attempt_number, user_id, test_id
        )
        return attempt, False

    def get_attempt(self, attempt_id: int, user_id: int, test_id: Optional[int] = None) -> TestAttempt:
        return find_owned_attempt(self.db, attempt_id, user_id, test_id)

    def get_state(self, attempt_id: int, user_id: int, test_id: Optional[int] = None) -> AttemptState:
        attempt = find_owned_attempt(self.db, attempt_id, user_id, test_id)
        now = self.clock()
        started_at = ensure_timezone_aware(attempt.started_at)
        submitted_at = ensure_timezone_aware(attempt.submitted_at)

        in_progress = attempt.status == AttemptStatus.IN_PROGRESS
        end = now if in_progress else (submitted_at or now)
        elapsed = max(0, int((end - started_at).total_seconds()))

        remaining = None
        deadline = attempt_deadline(attempt)
        if deadline is not None and in_progress:
            remaining = max(0, int((deadline - now).total_seconds()))

        total_questions = self.db.query(func.count(Question.id)).filter(
            Question.test_id == attempt.test_id
        ).scalar() or 0

        return AttemptState(
            attempt_id=attempt.id,
            test_id=attempt.test_id,
            attempt_number=attempt.attempt_number,
            status=attempt.status,
            started_at=started_at,
            submitted_at=submitted_at,
            elapsed_seconds=elapsed,
            answered_questions=self.recorder.count_answered(attempt.id),
            total_questions=total_questions,
            time_limit_seconds=attempt.test.time_limit_seconds,
            remaining_seconds=remaining,
            expired=in_progress and is_expired(attempt, now),
        )

    def list_attempts(self, user_id: int, test_id: int) -> List[TestAttempt]:
        return self.db.query(TestAttempt).filter(
            TestAttempt.user_id == user_id,
            TestAttempt.test_id == test_id
        ).order_by(TestAttempt.attempt_number.desc()).all()

    def count_attempts(self, user_id: int, test_id: int) -> int:
        """Attempts of any status count toward the limit."""
        return self.db.query(func.count(TestAttempt.id)).filter(
            TestAttempt.user_id == user_id,
            TestAttempt.test_id == test_id
        ).scalar() or 0

    def ordered_questions(self, attempt: TestAttempt) -> List[Question]:
        """Questions in the order fixed when the attempt started."""
        questions = {q.id: q for q in attempt.test.questions}
        ordered = [questions[qid] for qid in (attempt.question_order or []) if qid in questions]
        # Questions added after the attempt started (forced edits) go last
        seen = {q.id for q in ordered}
        ordered.extend(q for q in attempt.test.questions if q.id not in seen)
        return ordered

    def _close_expired(self, attempt: TestAttempt) -> None:
        """Score an open attempt whose time ran out so it is not resumed."""
        attempt_id = attempt.id
        logger.info("Closing expired attempt %s before starting a new one", attempt_id)
        try:
            ScoringAggregator(self.db, clock=self.clock).finalize(attempt, reason="time limit expired")
        except AlreadySubmitted:
            # Closed by a concurrent request; it no longer blocks a new attempt
            logger.info("Expired attempt %s was already closed", attempt_id)

    def _active_attempt(self, user_id: int, test_id: int) -> Optional[TestAttempt]:
        return self.db.query(TestAttempt).filter(
            TestAttempt.user_id == user_id,
            TestAttempt.test_id == test_id,
            TestAttempt.status == AttemptStatus.IN_PROGRESS
        ).first()
