import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lms_backend.datetime_utils import utc_now
from lms_backend.errors import AttemptExpired, AttemptNotWritable, NotFound
from lms_backend.models import AttemptStatus, Question, QuestionResponse, TestAttempt
from lms_backend.services.attempt_access import find_owned_attempt, is_expired
from lms_backend.services.grading import grade_answer, normalize_answer

logger = logging.getLogger(__name__)


@dataclass
class ResponseOutcome:
    attempt_id: int
    question_id: int
    answer: Any
    is_correct: Optional[bool]
    points_awarded: int


class ResponseRecorder:
    """
    Records one answer per (attempt, question).

    Correctness is computed at write time. A resubmission overwrites the
    previous answer in place, so client retries and auto-save are safe.
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    def submit_response(
        self,
        attempt_id: int,
        user_id: int,
        question_id: int,
        answer: Any,
        test_id: Optional[int] = None,
    ) -> ResponseOutcome:
        attempt = find_owned_attempt(self.db, attempt_id, user_id, test_id)

        if attempt.status != AttemptStatus.IN_PROGRESS:
            logger.warning(
                "Rejected response: attempt %s is %s (question %s)",
                attempt_id, attempt.status.value, question_id
            )
            raise AttemptNotWritable()

        now = self.clock()
        if is_expired(attempt, now):
            logger.warning("Rejected response: attempt %s exceeded its time limit", attempt_id)
            raise AttemptExpired()

        question = self.db.query(Question).filter(
            Question.id == question_id,
            Question.test_id == attempt.test_id
        ).first()
        if not question:
            raise NotFound("Question not found in this test")

        stored_answer = normalize_answer(question, answer)
        is_correct, points = grade_answer(question, stored_answer)

        try:
            # Re-check the status in the same statement that locks the attempt row,
            # so a concurrent submit cannot slip in between check and write
            touched = self.db.query(TestAttempt).filter(
                TestAttempt.id == attempt.id,
                TestAttempt.status == AttemptStatus.IN_PROGRESS
            ).update({TestAttempt.updated_at: now}, synchronize_session=False)

            if touched == 0:
                self.db.rollback()
                logger.warning("Rejected response: attempt %s was submitted concurrently", attempt_id)
                raise AttemptNotWritable()

            self._upsert(attempt.id, question.id, stored_answer, is_correct, points, now)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                "Failed to record response (operation=submit_response attempt=%s question=%s user=%s)",
                attempt_id, question_id, user_id
            )
            raise

        logger.info(
            "Recorded response attempt=%s question=%s correct=%s points=%s",
            attempt.id, question.id, is_correct, points
        )
        return ResponseOutcome(
            attempt_id=attempt.id,
            question_id=question.id,
            answer=stored_answer,
            is_correct=is_correct,
            points_awarded=points,
        )

    def count_answered(self, attempt_id: int) -> int:
        return self.db.query(func.count(QuestionResponse.id)).filter(
            QuestionResponse.attempt_id == attempt_id
        ).scalar() or 0

    def responses_for(self, attempt_id: int) -> List[QuestionResponse]:
        return self.db.query(QuestionResponse).filter(
            QuestionResponse.attempt_id == attempt_id
        ).all()

    def _upsert(self, attempt_id, question_id, answer, is_correct, points, now):
        """Insert-or-update keyed on (attempt_id, question_id)."""
        dialect = self.db.get_bind().dialect.name
        values = {
            "attempt_id": attempt_id,
            "question_id": question_id,
            "answer": answer,
            "is_correct": is_correct,
            "points_awarded": points,
            "created_at": now,
            "updated_at": now,
        }
        overwrite = ("answer", "is_correct", "points_awarded", "updated_at")

        if dialect in ("postgresql", "sqlite"):
            if dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert
            else:
                from sqlalchemy.dialects.sqlite import insert
            stmt = insert(QuestionResponse).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["attempt_id", "question_id"],
                set_={name: stmt.excluded[name] for name in overwrite},
            )
            self.db.execute(stmt)
        elif dialect == "mysql":
            from sqlalchemy.dialects.mysql import insert
            stmt = insert(QuestionResponse).values(**values)
            stmt = stmt.on_duplicate_key_update({name: stmt.inserted[name] for name in overwrite})
            self.db.execute(stmt)
        else:
            # The attempt row is already locked by the status update above
            existing = self.db.query(QuestionResponse).filter(
                QuestionResponse.attempt_id == attempt_id,
                QuestionResponse.question_id == question_id
            ).first()
            if existing:
                for name in overwrite:
                    setattr(existing, name, values[name])
            else:
                self.db.add(QuestionResponse(**values))
            self.db.flush()
