"""
Service-level tests for the attempt lifecycle, driven by a controllable clock
"""
from datetime import datetime, timedelta, timezone

import pytest

from lms_backend import models
from lms_backend.errors import (
    AlreadySubmitted,
    AttemptExpired,
    AttemptLimitExceeded,
    AttemptNotWritable,
    NotFound,
    NotSubmitted,
)
from lms_backend.services import AttemptManager, ResponseRecorder, ScoringAggregator


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def services(db_session, clock):
    recorder = ResponseRecorder(db_session, clock=clock)
    manager = AttemptManager(db_session, recorder=recorder, clock=clock)
    scoring = ScoringAggregator(db_session, clock=clock)
    return manager, recorder, scoring


class TestStartAttempt:
    def test_first_attempt_is_numbered_one(self, services, student, two_question_test):
        manager, _, _ = services
        attempt, resumed = manager.start_attempt(student.id, two_question_test.id)

        assert resumed is False
        assert attempt.attempt_number == 1
        assert attempt.status == models.AttemptStatus.IN_PROGRESS
        assert attempt.question_order == [q.id for q in two_question_test.questions]

    def test_open_attempt_is_resumed(self, services, student, two_question_test, db_session):
        manager, _, _ = services
        first, _ = manager.start_attempt(student.id, two_question_test.id)
        again, resumed = manager.start_attempt(student.id, two_question_test.id)

        assert resumed is True
        assert again.id == first.id
        assert db_session.query(models.TestAttempt).count() == 1

    def test_limit_counts_completed_attempts(self, services, student, make_test):
        manager, _, scoring = services
        test = make_test(allowed_attempts=1)
        attempt, _ = manager.start_attempt(student.id, test.id)
        scoring.submit_attempt(attempt.id, student.id)

        with pytest.raises(AttemptLimitExceeded):
            manager.start_attempt(student.id, test.id)

    def test_numbers_increase_after_submit(self, services, student, two_question_test):
        manager, _, scoring = services
        first, _ = manager.start_attempt(student.id, two_question_test.id)
        scoring.submit_attempt(first.id, student.id)
        second, resumed = manager.start_attempt(student.id, two_question_test.id)

        assert resumed is False
        assert second.attempt_number == 2
        assert [a.attempt_number for a in manager.list_attempts(student.id, two_question_test.id)] == [2, 1]

    def test_unpublished_test_cannot_be_started(self, services, student, make_test):
        manager, _, _ = services
        draft = make_test(published=False)
        with pytest.raises(NotFound):
            manager.start_attempt(student.id, draft.id)

    def test_randomized_order_keeps_every_question(self, services, student, make_test):
        manager, _, _ = services
        test = make_test([{"options": [("a", True), ("b", False)]} for _ in range(6)], randomized=True)
        attempt, _ = manager.start_attempt(student.id, test.id)

        assert sorted(attempt.question_order) == sorted(q.id for q in test.questions)
        assert [q.id for q in manager.ordered_questions(attempt)] == attempt.question_order


class TestRecordResponse:
    def test_resubmission_overwrites(self, services, student, two_question_test, answer_key, db_session):
        manager, recorder, _ = services
        attempt, _ = manager.start_attempt(student.id, two_question_test.id)
        question = two_question_test.questions[0]
        correct, wrong = answer_key(question)

        recorder.submit_response(attempt.id, student.id, question.id, wrong)
        outcome = recorder.submit_response(attempt.id, student.id, question.id, correct)

        assert outcome.is_correct is True
        rows = db_session.query(models.QuestionResponse).filter_by(attempt_id=attempt.id).all()
        assert len(rows) == 1
        assert rows[0].answer == correct
        assert rows[0].points_awarded == 1

    def test_same_answer_twice_is_idempotent(self, services, student, two_question_test, answer_key):
        manager, recorder, _ = services
        attempt, _ = manager.start_attempt(student.id, two_question_test.id)
        question = two_question_test.questions[0]
        correct, _ = answer_key(question)

        recorder.submit_response(attempt.id, student.id, question.id, correct)
        recorder.submit_response(attempt.id, student.id, question.id, correct)

        assert recorder.count_answered(attempt.id) == 1

    def test_question_from_other_test_is_rejected(self, services, student, two_question_test, make_test):
        manager, recorder, _ = services
        other = make_test([{"options": [("x", True), ("y", False)]}], title="Other")
        attempt, _ = manager.start_attempt(student.id, two_question_test.id)

        with pytest.raises(NotFound):
            recorder.submit_response(attempt.id, student.id, other.questions[0].id, other.questions[0].options[0].id)

    def test_other_users_attempt_is_not_found(self, services, student, other_student, two_question_test, answer_key):
        manager, recorder, _ = services
        attempt, _ = manager.start_attempt(student.id, two_question_test.id)
        question = two_question_test.questions[0]

        with pytest.raises(NotFound):
            recorder.submit_response(attempt.id, other_student.id, question.id, answer_key(question)[0])

    def test_submitted_attempt_is_read_only(self, services, student, two_question_test, answer_key):
        manager, recorder, scoring = services
        attempt, _ = manager.start_attempt(student.id, two_question_test.id)
        scoring.submit_attempt(attempt.id, student.id)
        question = two_question_test.questions[0]

        with pytest.raises(AttemptNotWritable):
            recorder.submit_response(attempt.id, student.id, question.id, answer_key(question)[0])

    def test_write_loses_to_concurrent_finalize(self, services, student, two_question_test, answer_key, db_session):
        manager, recorder, scoring = services
        attempt, _ = manager.start_attempt(student.id, two_question_test.id)
        question = two_question_test.questions[0]
        correct, _ = answer_key(question)
        assert attempt.status == models.AttemptStatus.IN_PROGRESS

        # The session keeps the attempt as read before the submit landed
        db_session.expire_on_commit = False
        try:
            ScoringAggregator(db_session, clock=scoring.clock).finalize(attempt)
            assert attempt.status == models.AttemptStatus.IN_PROGRESS

            with pytest.raises(AttemptNotWritable):
                recorder.submit_response(attempt.id, student.id, question.id, correct)
        finally:
            db_session.expire_on_commit = True

        assert db_session.query(models.QuestionResponse).filter_by(attempt_id=attempt.id).count() == 0
        assert db_session.get(models.TestAttempt, attempt.id).status == models.AttemptStatus.COMPLETED


class TestTimeLimit:
    def test_answer_within_grace_is_accepted(self, services, clock, student, make_test):
        manager, recorder, _ = services
        test = make_test([{"options": [("a", True), ("b", False)]}], time_limit_seconds=60)
        attempt, _ = manager.start_attempt(student.id, test.id)
        question = test.questions[0]

        clock.advance(seconds=63)
        outcome = recorder.submit_response(attempt.id, student.id, question.id, question.options[0].id)
        assert outcome.is_correct is True

    def test_answer_after_deadline_is_rejected(self, services, clock, student, make_test):
        manager, recorder, _ = services
        test = make_test([{"options": [("a", True), ("b", False)]}], time_limit_seconds=60)
        attempt, _ = manager.start_attempt(student.id, test.id)
        question = test.questions[0]

        clock.advance(minutes=5)
        with pytest.raises(AttemptExpired):
            recorder.submit_response(attempt.id, student.id, question.id, question.options[0].id)

    def test_state_reports_expiry(self, services, clock, student, make_test):
        manager, _, _ = services
        test = make_test([{"options": [("a", True), ("b", False)]}], time_limit_seconds=60)
        attempt, _ = manager.start_attempt(student.id, test.id)

        clock.advance(seconds=20)
        state = manager.get_state(attempt.id, student.id)
        assert state.remaining_seconds == 40
        assert state.writable is True

        clock.advance(minutes=10)
        state = manager.get_state(attempt.id, student.id)
        assert state.expired is True
        assert state.writable is False

    def test_expired_attempt_keeps_answers_saved_in_time(self, services, clock, student, make_test):
        manager, recorder, scoring = services
        test = make_test(
            [{"options": [("a", True), ("b", False)]}, {"options": [("a", True), ("b", False)]}],
            time_limit_seconds=60,
        )
        attempt, _ = manager.start_attempt(student.id, test.id)
        first, second = test.questions
        recorder.submit_response(attempt.id, student.id, first.id, first.options[0].id)

        clock.advance(minutes=2)
        with pytest.raises(AttemptExpired):
            recorder.submit_response(attempt.id, student.id, second.id, second.options[0].id)
        score = scoring.finalize_expired(attempt.id, student.id)

        assert score.total_points == 1
        assert score.max_points == 2
        assert score.percentage == 50.0
        assert scoring.finalize_expired(attempt.id, student.id) is None


    def test_restart_closes_expired_attempt(self, services, clock, student, make_test):
        manager, _, _ = services
        test = make_test([{"options": [("a", True), ("b", False)]}], time_limit_seconds=60, allowed_attempts=2)
        first, _ = manager.start_attempt(student.id, test.id)
        first_id = first.id

        clock.advance(minutes=10)
        second, resumed = manager.start_attempt(student.id, test.id)

        assert resumed is False
        assert second.id != first_id
        assert second.attempt_number == 2
        closed = manager.get_attempt(first_id, student.id)
        assert closed.status == models.AttemptStatus.COMPLETED
        assert closed.score == 0.0
        assert closed.max_points == 1

    def test_restart_after_expiry_respects_limit(self, services, clock, student, make_test):
        manager, _, _ = services
        test = make_test([{"options": [("a", True), ("b", False)]}], time_limit_seconds=60, allowed_attempts=1)
        first, _ = manager.start_attempt(student.id, test.id)
        first_id = first.id

        clock.advance(minutes=10)
        with pytest.raises(AttemptLimitExceeded):
            manager.start_attempt(student.id, test.id)

        assert manager.get_attempt(first_id, student.id).status == models.AttemptStatus.COMPLETED


class TestFinalize:
    def test_scenario_half_correct(self, services, clock, student, two_question_test, answer_key):
        manager, recorder, scoring = services
        attempt, _ = manager.start_attempt(student.id, two_question_test.id)
        first, second = two_question_test.questions
        recorder.submit_response(attempt.id, student.id, first.id, answer_key(first)[0])
        recorder.submit_response(attempt.id, student.id, second.id, answer_key(second)[1])

        clock.advance(seconds=90)
        score = scoring.submit_attempt(attempt.id, student.id)

        assert score.total_points == 1
        assert score.max_points == 2
        assert score.percentage == 50.0
        assert score.passed is False
        assert score.duration_seconds == 90
        assert score.status == models.AttemptStatus.COMPLETED

    def test_second_submit_is_rejected(self, services, student, two_question_test):
        manager, _, scoring = services
        attempt, _ = manager.start_attempt(student.id, two_question_test.id)
        scoring.submit_attempt(attempt.id, student.id)

        with pytest.raises(AlreadySubmitted):
            scoring.submit_attempt(attempt.id, student.id)

    def test_stale_finalize_loses_the_race(self, services, student, two_question_test, db_session):
        manager, _, scoring = services
        attempt, _ = manager.start_attempt(student.id, two_question_test.id)
        # Both callers loaded the attempt while it was still in progress
        racer = ScoringAggregator(db_session, clock=scoring.clock)
        scoring.finalize(attempt)

        with pytest.raises(AlreadySubmitted):
            racer.finalize(attempt)

    def test_zero_question_test_scores_zero(self, services, student, make_test):
        manager, _, scoring = services
        empty = make_test()
        attempt, _ = manager.start_attempt(student.id, empty.id)
        score = scoring.submit_attempt(attempt.id, student.id)

        assert score.max_points == 0
        assert score.percentage == 0.0

    def test_default_passing_score_applies(self, services, student, make_test):
        manager, recorder, scoring = services
        test = make_test([{"options": [("a", True), ("b", False)]}])
        attempt, _ = manager.start_attempt(student.id, test.id)
        question = test.questions[0]
        recorder.submit_response(attempt.id, student.id, question.id, question.options[0].id)

        score = scoring.submit_attempt(attempt.id, student.id)
        assert score.passing_score == 70.0
        assert score.passed is True

    def test_pass_mark_uses_unrounded_percentage(self, services, student, make_test):
        manager, recorder, scoring = services
        test = make_test([{"options": [("a", True), ("b", False)]} for _ in range(3)], passing_score=66.67)
        attempt, _ = manager.start_attempt(student.id, test.id)
        for question in test.questions[:2]:
            recorder.submit_response(attempt.id, student.id, question.id, question.options[0].id)

        score = scoring.submit_attempt(attempt.id, student.id)
        assert score.percentage == 66.67
        assert score.passed is False
        assert scoring.get_results(attempt.id, student.id).passed is False

    def test_counts_response_saved_after_attempt_was_read(self, services, student, two_question_test, answer_key):
        manager, recorder, scoring = services
        attempt, _ = manager.start_attempt(student.id, two_question_test.id)
        loaded = scoring.db.get(models.TestAttempt, attempt.id)
        assert loaded.status == models.AttemptStatus.IN_PROGRESS

        for question in two_question_test.questions:
            recorder.submit_response(attempt.id, student.id, question.id, answer_key(question)[0])
        score = scoring.finalize(loaded)

        assert score.total_points == 2
        assert score.percentage == 100.0

    def test_results_require_submission(self, services, student, two_question_test):
        manager, _, scoring = services
        attempt, _ = manager.start_attempt(student.id, two_question_test.id)

        with pytest.raises(NotSubmitted):
            scoring.get_results(attempt.id, student.id)
