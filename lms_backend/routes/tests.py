import logging
from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from lms_backend.auth.dependencies import get_current_user
from lms_backend.database import get_db
from lms_backend.datetime_utils import ensure_timezone_aware
from lms_backend.errors import AttemptExpired
from lms_backend.models import Test, TestAttempt, TestKind, User
from lms_backend.services import AttemptManager, ResponseRecorder, ScoringAggregator
from lms_backend.services.catalogue import get_published_test, list_published_tests

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tests", tags=["tests"])


# ---------- dependencies ----------

def get_response_recorder(db: Session = Depends(get_db)) -> ResponseRecorder:
    return ResponseRecorder(db)


def get_attempt_manager(
    db: Session = Depends(get_db),
    recorder: ResponseRecorder = Depends(get_response_recorder)
) -> AttemptManager:
    return AttemptManager(db, recorder=recorder)


def get_scoring_aggregator(db: Session = Depends(get_db)) -> ScoringAggregator:
    return ScoringAggregator(db)


# ---------- schemas ----------

class TestSummary(BaseModel):
    id: int
    title: str
    description: Optional[str]
    kind: str
    difficulty: Optional[str]
    time_limit_seconds: Optional[int]
    passing_score: Optional[float]
    allowed_attempts: Optional[int]
    question_count: int


class PaginationInfo(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class TestListResponse(BaseModel):
    tests: List[TestSummary]
    pagination: PaginationInfo


class OptionPublic(BaseModel):
    id: int
    option_text: str
    order_index: int

    class Config:
        from_attributes = True


class QuestionPublic(BaseModel):
    id: int
    stem: str
    kind: str
    points: int
    order_index: int
    options: List[OptionPublic]


class TestDetailResponse(TestSummary):
    instructions: Optional[str]
    randomized: bool
    questions: List[QuestionPublic]


class AttemptInfo(BaseModel):
    id: int
    test_id: int
    attempt_number: int
    status: str
    started_at: datetime
    submitted_at: Optional[datetime] = None
    score: Optional[float] = None
    passed: Optional[bool] = None


class StartAttemptResponse(BaseModel):
    message: str
    resumed: bool
    attempt: AttemptInfo


class AttemptListResponse(BaseModel):
    attempts: List[AttemptInfo]
    attempts_used: int
    attempts_remaining: Optional[int]  # None = unlimited


class AttemptStateResponse(BaseModel):
    attempt_id: int
    test_id: int
    attempt_number: int
    status: str
    started_at: datetime
    submitted_at: Optional[datetime]
    elapsed_seconds: int
    answered_questions: int
    total_questions: int
    time_limit_seconds: Optional[int]
    remaining_seconds: Optional[int]
    expired: bool
    writable: bool


class AttemptQuestion(QuestionPublic):
    saved_answer: Any = None


class AttemptQuestionsResponse(BaseModel):
    attempt_id: int
    status: str
    questions: List[AttemptQuestion]


class ResponseSubmit(BaseModel):
    question_id: int
    answer: Any


class ResponseResult(BaseModel):
    message: str
    question_id: int
    is_correct: Optional[bool]
    points_awarded: int


class SubmitResponse(BaseModel):
    message: str
    attempt_id: int
    status: str
    total_points: int
    max_points: int
    percentage: float
    passing_score: float
    passed: bool
    submitted_at: datetime
    duration_seconds: int


class ResponseReviewItem(BaseModel):
    question_id: int
    stem: str
    kind: str
    points: int
    answer: Any
    is_correct: Optional[bool]
    points_awarded: int
    correct_option_ids: Optional[List[int]]


class ResultsResponse(BaseModel):
    attempt_id: int
    test_id: int
    test_title: str
    status: str
    total_points: int
    max_points: int
    percentage: float
    passing_score: float
    passed: bool
    started_at: datetime
    submitted_at: datetime
    duration_seconds: Optional[int]
    responses: List[ResponseReviewItem]
    unanswered_question_ids: List[int]


def _summary_fields(test: Test, question_count: int) -> dict:
    return {
        "id": test.id,
        "title": test.title,
        "description": test.description,
        "kind": test.kind.value,
        "difficulty": test.difficulty,
        "time_limit_seconds": test.time_limit_seconds,
        "passing_score": test.passing_score,
        "allowed_attempts": test.allowed_attempts,
        "question_count": question_count,
    }


def _question_public(question) -> dict:
    # Correct flags never leave the server before submission
    return {
        "id": question.id,
        "stem": question.stem,
        "kind": question.kind.value,
        "points": question.points,
        "order_index": question.order_index,
        "options": [OptionPublic.model_validate(o) for o in question.options],
    }


def _attempt_info(attempt: TestAttempt) -> AttemptInfo:
    return AttemptInfo(
        id=attempt.id,
        test_id=attempt.test_id,
        attempt_number=attempt.attempt_number,
        status=attempt.status.value,
        started_at=ensure_timezone_aware(attempt.started_at),
        submitted_at=ensure_timezone_aware(attempt.submitted_at),
        score=attempt.score,
        passed=attempt.passed,
    )


# ---------- catalogue ----------

@router.get("", response_model=TestListResponse)
async def list_tests(
    kind: Optional[TestKind] = None,
    difficulty: Optional[str] = None,
    course_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db)
):
    """List published tests"""
    rows, total = list_published_tests(
        db, page=page, limit=limit, kind=kind, difficulty=difficulty, course_id=course_id
    )
    return TestListResponse(
        tests=[TestSummary(**_summary_fields(test, count)) for test, count in rows],
        pagination=PaginationInfo(
            page=page,
            limit=limit,
            total=total,
            pages=(total + limit - 1) // limit,
        ),
    )


@router.get("/{test_id}", response_model=TestDetailResponse)
async def get_test(test_id: int, db: Session = Depends(get_db)):
    """Get test details with questions (no correct answers)"""
    test = get_published_test(db, test_id)
    return TestDetailResponse(
        **_summary_fields(test, len(test.questions)),
        instructions=test.instructions,
        randomized=test.randomized,
        questions=[QuestionPublic(**_question_public(q)) for q in test.questions],
    )


# ---------- attempt lifecycle ----------

@router.post("/{test_id}/attempts", response_model=StartAttemptResponse, status_code=status.HTTP_201_CREATED)
async def start_attempt(
    test_id: int,
    response: Response,
    manager: AttemptManager = Depends(get_attempt_manager),
    current_user: User = Depends(get_current_user)
):
    """Start a new test attempt or return the existing in-progress attempt"""
    attempt, resumed = manager.start_attempt(current_user.id, test_id)
    if resumed:
        response.status_code = status.HTTP_200_OK
    return StartAttemptResponse(
        message="Test attempt resumed" if resumed else "Test attempt started",
        resumed=resumed,
        attempt=_attempt_info(attempt),
    )


@router.get("/{test_id}/attempts", response_model=AttemptListResponse)
async def list_my_attempts(
    test_id: int,
    db: Session = Depends(get_db),
    manager: AttemptManager = Depends(get_attempt_manager),
    current_user: User = Depends(get_current_user)
):
    """List the current user's attempts at a test, newest first"""
    test = get_published_test(db, test_id)
    attempts = manager.list_attempts(current_user.id, test_id)
    remaining = None
    if test.allowed_attempts is not None:
        remaining = max(0, test.allowed_attempts - len(attempts))
    return AttemptListResponse(
        attempts=[_attempt_info(a) for a in attempts],
        attempts_used=len(attempts),
        attempts_remaining=remaining,
    )


@router.get("/{test_id}/attempts/{attempt_id}", response_model=AttemptStateResponse)
async def get_attempt_state(
    test_id: int,
    attempt_id: int,
    manager: AttemptManager = Depends(get_attempt_manager),
    current_user: User = Depends(get_current_user)
):
    """Get attempt status and progress"""
    state = manager.get_state(attempt_id, current_user.id, test_id)
    return AttemptStateResponse(
        attempt_id=state.attempt_id,
        test_id=state.test_id,
        attempt_number=state.attempt_number,
        status=state.status.value,
        started_at=state.started_at,
        submitted_at=state.submitted_at,
        elapsed_seconds=state.elapsed_seconds,
        answered_questions=state.answered_questions,
        total_questions=state.total_questions,
        time_limit_seconds=state.time_limit_seconds,
        remaining_seconds=state.remaining_seconds,
        expired=state.expired,
        writable=state.writable,
    )


@router.get("/{test_id}/attempts/{attempt_id}/questions", response_model=AttemptQuestionsResponse)
async def get_attempt_questions(
    test_id: int,
    attempt_id: int,
    manager: AttemptManager = Depends(get_attempt_manager),
    recorder: ResponseRecorder = Depends(get_response_recorder),
    current_user: User = Depends(get_current_user)
):
    """Get the attempt's questions in attempt order, with saved answers for resuming"""
    attempt = manager.get_attempt(attempt_id, current_user.id, test_id)
    saved = {r.question_id: r.answer for r in recorder.responses_for(attempt.id)}
    return AttemptQuestionsResponse(
        attempt_id=attempt.id,
        status=attempt.status.value,
        questions=[
            AttemptQuestion(**_question_public(q), saved_answer=saved.get(q.id))
            for q in manager.ordered_questions(attempt)
        ],
    )


@router.post("/{test_id}/attempts/{attempt_id}/responses", response_model=ResponseResult)
async def submit_response(
    test_id: int,
    attempt_id: int,
    payload: ResponseSubmit,
    recorder: ResponseRecorder = Depends(get_response_recorder),
    scoring: ScoringAggregator = Depends(get_scoring_aggregator),
    current_user: User = Depends(get_current_user)
):
    """Save (or overwrite) the answer to one question"""
    try:
        outcome = recorder.submit_response(
            attempt_id, current_user.id, payload.question_id, payload.answer, test_id=test_id
        )
    except AttemptExpired:
        # Close the attempt with what was saved in time, then report the rejection
        scoring.finalize_expired(attempt_id, current_user.id)
        raise

    return ResponseResult(
        message="Answer submitted successfully",
        question_id=outcome.question_id,
        is_correct=outcome.is_correct,
        points_awarded=outcome.points_awarded,
    )


@router.post("/{test_id}/attempts/{attempt_id}/submit", response_model=SubmitResponse)
async def submit_attempt(
    test_id: int,
    attempt_id: int,
    scoring: ScoringAggregator = Depends(get_scoring_aggregator),
    current_user: User = Depends(get_current_user)
):
    """Finalize the attempt and compute its score"""
    score = scoring.submit_attempt(attempt_id, current_user.id, test_id)
    return SubmitResponse(
        message="Test submitted successfully",
        attempt_id=score.attempt_id,
        status=score.status.value,
        total_points=score.total_points,
        max_points=score.max_points,
        percentage=score.percentage,
        passing_score=score.passing_score,
        passed=score.passed,
        submitted_at=score.submitted_at,
        duration_seconds=score.duration_seconds,
    )


@router.get("/{test_id}/attempts/{attempt_id}/results", response_model=ResultsResponse)
async def get_results(
    test_id: int,
    attempt_id: int,
    scoring: ScoringAggregator = Depends(get_scoring_aggregator),
    current_user: User = Depends(get_current_user)
):
    """Get final score and per-question review of a submitted attempt"""
    results = scoring.get_results(attempt_id, current_user.id, test_id)
    return ResultsResponse(
        attempt_id=results.attempt_id,
        test_id=results.test_id,
        test_title=results.test_title,
        status=results.status.value,
        total_points=results.total_points,
        max_points=results.max_points,
        percentage=results.percentage,
        passing_score=results.passing_score,
        passed=results.passed,
        started_at=results.started_at,
        submitted_at=results.submitted_at,
        duration_seconds=results.duration_seconds,
        responses=[ResponseReviewItem(**vars(r)) for r in results.responses],
        unanswered_question_ids=results.unanswered_question_ids,
    )
