from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from lms_backend.errors import NotFound
from lms_backend.models import Question, Test, TestKind


def list_published_tests(
    db: Session,
    *,
    page: int = 1,
    limit: int = 10,
    kind: Optional[TestKind] = None,
    difficulty: Optional[str] = None,
    course_id: Optional[int] = None,
) -> Tuple[List[Tuple[Test, int]], int]:
    """
    Published tests, newest first, with their question counts.

    Returns:
        ([(test, question_count), ...], total matching tests)
    """
    filters = [Test.published == True]  # noqa: E712
    if kind is not None:
        filters.append(Test.kind == kind)
    if difficulty:
        filters.append(Test.difficulty == difficulty)
    if course_id is not None:
        filters.append(Test.course_id == course_id)

    total = db.query(func.count(Test.id)).filter(*filters).scalar() or 0

    question_counts = db.query(
        Question.test_id.label("test_id"),
        func.count(Question.id).label("question_count")
    ).group_by(Question.test_id).subquery()

    rows = db.query(
        Test, func.coalesce(question_counts.c.question_count, 0)
    ).outerjoin(
        question_counts, question_counts.c.test_id == Test.id
    ).filter(*filters).order_by(
        Test.created_at.desc(), Test.id.desc()
    ).offset((page - 1) * limit).limit(limit).all()

    return [(test, int(count)) for test, count in rows], int(total)


def get_published_test(db: Session, test_id: int) -> Test:
    test = db.query(Test).filter(Test.id == test_id, Test.published == True).first()  # noqa: E712
    if not test:
        raise NotFound("Test not found")
    return test
