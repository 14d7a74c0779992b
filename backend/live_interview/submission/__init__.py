from live_interview.submission.delivery import FULL_SESSION_QUESTION_ID, HttpAnswerDelivery
from live_interview.submission.pipeline import AnswerSubmissionPipeline, EvaluationChannel, backoff_delay

__all__ = [
    "AnswerSubmissionPipeline",
    "EvaluationChannel",
    "FULL_SESSION_QUESTION_ID",
    "HttpAnswerDelivery",
    "backoff_delay",
]
