"""
Answer validation and auto-scoring per question kind.

Every QuestionKind has exactly one entry in ``GRADERS``; the module refuses
to import if a kind is added to the enum without a grader.
"""
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from lms_backend.errors import InvalidAnswerShape
from lms_backend.models import Question, QuestionKind

logger = logging.getLogger(__name__)

# (is_correct, points_awarded); is_correct is None when the kind is not auto-scored
Grade = Tuple[Optional[bool], int]


def _is_option_id(value: Any) -> bool:
    # bool is a subclass of int, reject it explicitly
    return isinstance(value, int) and not isinstance(value, bool)


def _option_ids(question: Question) -> set:
    return {option.id for option in question.options}


def _correct_option_ids(question: Question) -> set:
    return {option.id for option in question.options if option.is_correct}


def _normalize_single(question: Question, answer: Any) -> int:
    if not _is_option_id(answer):
        raise InvalidAnswerShape(
            f"Question {question.id} expects a single option id, got {type(answer).__name__}"
        )
    if answer not in _option_ids(question):
        raise InvalidAnswerShape(f"Option {answer} does not belong to question {question.id}")
    return answer


def _normalize_multi(question: Question, answer: Any) -> list:
    if not isinstance(answer, list) or not all(_is_option_id(item) for item in answer):
        raise InvalidAnswerShape(f"Question {question.id} expects a list of option ids")
    selected = sorted(set(answer))
    unknown = set(selected) - _option_ids(question)
    if unknown:
        raise InvalidAnswerShape(
            f"Options {sorted(unknown)} do not belong to question {question.id}"
        )
    return selected


def _normalize_text(question: Question, answer: Any) -> str:
    if not isinstance(answer, str):
        raise InvalidAnswerShape(f"Question {question.id} expects a text answer")
    return answer


def _normalize_mapping(question: Question, answer: Any) -> dict:
    if not isinstance(answer, dict):
        raise InvalidAnswerShape(f"Question {question.id} expects an object mapping items to matches")
    return answer


def _grade_single(question: Question, answer: int) -> Grade:
    correct = _correct_option_ids(question)
    if not correct:
        logger.warning("Question %s has no correct option; scoring answer as incorrect", question.id)
    is_correct = answer in correct
    return is_correct, question.points if is_correct else 0


def _grade_multi(question: Question, answer: list) -> Grade:
    correct = _correct_option_ids(question)
    if not correct:
        logger.warning("Question %s has no correct option; scoring answer as incorrect", question.id)
    # Exact-set match: full points or nothing
    is_correct = bool(correct) and set(answer) == correct
    return is_correct, question.points if is_correct else 0


def _grade_fill_blank(question: Question, answer: str) -> Grade:
    accepted = {option.option_text.strip().casefold() for option in question.options if option.is_correct}
    if not accepted:
        return None, 0
    is_correct = answer.strip().casefold() in accepted
    return is_correct, question.points if is_correct else 0


def _not_auto_scored(question: Question, answer: Any) -> Grade:
    return None, 0


GRADERS: Dict[QuestionKind, Tuple[Callable[[Question, Any], Any], Callable[[Question, Any], Grade]]] = {
    QuestionKind.SINGLE_CHOICE: (_normalize_single, _grade_single),
    QuestionKind.TRUE_FALSE: (_normalize_single, _grade_single),
    QuestionKind.MULTIPLE_CHOICE: (_normalize_multi, _grade_multi),
    QuestionKind.FILL_BLANK: (_normalize_text, _grade_fill_blank),
    QuestionKind.SHORT_ANSWER: (_normalize_text, _not_auto_scored),
    QuestionKind.ESSAY: (_normalize_text, _not_auto_scored),
    QuestionKind.MATCHING: (_normalize_mapping, _not_auto_scored),
}

_missing = set(QuestionKind) - set(GRADERS)
if _missing:
    raise RuntimeError(f"No grader registered for question kinds: {sorted(k.value for k in _missing)}")


def normalize_answer(question: Question, answer: Any) -> Any:
    """Validate ``answer`` against the question kind and return its stored form."""
    normalize, _ = GRADERS[question.kind]
    return normalize(question, answer)


def grade_answer(question: Question, answer: Any) -> Grade:
    """
    Score an already normalized answer.

    Returns:
        (is_correct, points_awarded). Kinds that are not auto-scored return
        (None, 0) pending manual grading.
    """
    _, grade = GRADERS[question.kind]
    return grade(question, answer)
