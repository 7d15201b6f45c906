"""
Minimal content authoring: create tests, add questions, publish.

Questions are the structure attempts are scored against, so adding one to
a test that already has attempts is refused unless explicitly forced.
"""
import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lms_backend.errors import InvalidQuestion, NotFound, TestLocked
from lms_backend.models import (
    QuestionKind, Question, QuestionOption, Test, TestAttempt
)

logger = logging.getLogger(__name__)

SINGLE_ANSWER_KINDS = (QuestionKind.SINGLE_CHOICE, QuestionKind.TRUE_FALSE)


def validate_options(kind: QuestionKind, options: List[dict]) -> None:
    """Choice questions need options and the right number of correct ones."""
    correct = sum(1 for o in options if o.get("is_correct"))
    if kind in SINGLE_ANSWER_KINDS or kind == QuestionKind.MULTIPLE_CHOICE:
        if len(options) < 2:
            raise InvalidQuestion(f"{kind.value} questions need at least 2 options")
        if kind in SINGLE_ANSWER_KINDS and correct != 1:
            raise InvalidQuestion(f"{kind.value} questions need exactly one correct option")
        if kind == QuestionKind.MULTIPLE_CHOICE and correct < 1:
            raise InvalidQuestion("multiple_choice questions need at least one correct option")


def create_test(db: Session, *, payload: dict, created_by: Optional[int] = None) -> Test:
    test = Test(created_by=created_by, **payload)
    try:
        db.add(test)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to create test (operation=create_test user=%s)", created_by)
        raise
    db.refresh(test)
    logger.info("Test created: %s (id=%s) by user %s", test.title, test.id, created_by)
    return test


def add_question(
    db: Session,
    *,
    test_id: int,
    stem: str,
    kind: QuestionKind,
    points: int = 1,
    order_index: Optional[int] = None,
    options: Optional[List[dict]] = None,
    metadata: Optional[dict] = None,
    force: bool = False,
) -> Question:
    test = db.query(Test).filter(Test.id == test_id).first()
    if not test:
        raise NotFound("Test not found")

    attempts = db.query(func.count(TestAttempt.id)).filter(TestAttempt.test_id == test_id).scalar() or 0
    if attempts and not force:
        raise TestLocked()

    options = options or []
    validate_options(kind, options)

    if order_index is None:
        order_index = len(test.questions)

    question = Question(
        test_id=test_id,
        stem=stem,
        kind=kind,
        points=points,
        order_index=order_index,
        question_metadata=metadata or {},
        options=[
            QuestionOption(
                option_text=option.get("text", ""),
                is_correct=bool(option.get("is_correct")),
                order_index=option.get("order_index", i),
            )
            for i, option in enumerate(options)
        ],
    )

    try:
        db.add(question)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to add question (operation=add_question test=%s)", test_id)
        raise

    db.refresh(question)
    if attempts:
        logger.warning("Question %s forced into test %s which has %s attempts", question.id, test_id, attempts)
    logger.info("Question added to test %s: id=%s kind=%s", test_id, question.id, kind.value)
    return question


def publish_test(db: Session, test_id: int) -> Test:
    test = db.query(Test).filter(Test.id == test_id).first()
    if not test:
        raise NotFound("Test not found")
    test.published = True
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to publish test (operation=publish_test test=%s)", test_id)
        raise
    db.refresh(test)
    logger.info("Test %s published", test_id)
    return test
