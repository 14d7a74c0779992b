from __future__ import annotations


TRANSIENT_RECOGNITION_CODES = {"no-speech", "aborted", "network"}


class OrchestratorError(Exception):
    """Base class for every failure raised by the live interview orchestrator."""


class InitializationError(OrchestratorError):
    """Session or transport setup failed and no cached question could stand in."""


class DeviceError(OrchestratorError):
    """Camera or microphone could not be acquired. Fatal for the session."""


class SynthesisError(OrchestratorError):
    """Speech playback failed to start or errored mid-utterance."""


class RecognitionError(OrchestratorError):
    def __init__(self, code: str, message: str | None = None):
        self.code = str(code or "unknown")
        super().__init__(message or f"speech recognition error: {self.code}")

    @property
    def is_transient(self) -> bool:
        return self.code in TRANSIENT_RECOGNITION_CODES


class UploadError(OrchestratorError):
    def __init__(self, message: str, attempts: int = 0):
        self.attempts = int(attempts)
        super().__init__(message)


class EvaluationTimeoutError(OrchestratorError):
    def __init__(self, question_id: str, timeout_sec: float):
        self.question_id = question_id
        self.timeout_sec = float(timeout_sec)
        super().__init__(f"evaluation for question {question_id} timed out after {timeout_sec:.0f}s")


class EvaluationFailedError(OrchestratorError):
    """The evaluation service answered with an explicit error."""

    def __init__(self, question_id: str | None, message: str):
        self.question_id = question_id
        super().__init__(message)


class SubmissionError(OrchestratorError):
    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class ProtocolError(OrchestratorError):
    """Malformed server message, or transport lost after initialization."""
