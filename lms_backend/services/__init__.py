from lms_backend.services.attempts import AttemptManager, AttemptState
from lms_backend.services.responses import ResponseRecorder, ResponseOutcome
from lms_backend.services.scoring import ScoringAggregator, AttemptScore, AttemptResults

__all__ = [
    "AttemptManager",
    "AttemptState",
    "ResponseRecorder",
    "ResponseOutcome",
    "ScoringAggregator",
    "AttemptScore",
    "AttemptResults",
]
