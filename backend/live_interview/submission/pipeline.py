import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Protocol

from core.config import OrchestratorTimings
from core.logger import log_event
from live_interview.components import UserNotifier
from live_interview.devices import AnswerDeliveryClient
from live_interview.errors import (
    EvaluationFailedError,
    EvaluationTimeoutError,
    OrchestratorError,
    SubmissionError,
    UploadError,
)
from live_interview.models import AnswerPackage, SubmissionOutcome
from live_interview.schemas import EvaluationResponse
from live_interview.system_metrics import increment_metric, observe_evaluation_latency_ms
from .delivery import FULL_SESSION_QUESTION_ID

logging.basicConfig(
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger("submission")

EvaluationHandler = Callable[[str, Optional[EvaluationResponse], Optional[Exception]], Awaitable[None]]


class EvaluationChannel(Protocol):
    async def request_evaluation(
        self,
        package: AnswerPackage,
        video_url: str,
        timeout: float,
    ) -> EvaluationResponse:
        """Raises EvaluationTimeoutError or EvaluationFailedError."""
        ...


def backoff_delay(failed_attempt: int, base: float, cap: float) -> float:
    """Delay after the n-th failed attempt (1-based): base, 2*base, 4*base... capped."""
    return min(base * (2 ** max(0, failed_attempt - 1)), cap)


class AnswerSubmissionPipeline:
    """
    Owns every AnswerPackage after answer stop.

    submit() schedules the work and returns immediately. Each package is uploaded
    (with retry), evaluated (bounded wait), handed back to the controller exactly
    once and finally persisted over HTTP. Failures degrade the answer, they never
    drop it.
    """

    def __init__(
        self,
        delivery: AnswerDeliveryClient,
        evaluator: EvaluationChannel,
        on_evaluation: EvaluationHandler,
        notifier: Optional[UserNotifier] = None,
        timings: OrchestratorTimings = OrchestratorTimings(),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.delivery = delivery
        self.evaluator = evaluator
        self.on_evaluation = on_evaluation
        self.notifier = notifier or UserNotifier()
        self.timings = timings
        self._sleep = sleep
        self._inflight: set[asyncio.Task] = set()
        self._delivered: set[str] = set()
        self._failed: set[str] = set()
        self._dispatched: set[str] = set()
        self._awaiting: set[str] = set()
        self.outcomes: dict[str, SubmissionOutcome] = {}

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    def submit(self, package: AnswerPackage) -> Optional[asyncio.Task]:
        if package.question_id in self._dispatched:
            logger.warning("Package for question %s already dispatched, ignoring", package.question_id)
            return None
        self._dispatched.add(package.question_id)
        self._awaiting.add(package.question_id)
        increment_metric("answers_dispatched")

        task = asyncio.get_running_loop().create_task(self.process(package))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def drain(self, timeout: Optional[float] = None) -> None:
        pending = list(self._inflight)
        if not pending:
            return
        logger.info("Draining %d in-flight submission(s)", len(pending))
        await asyncio.wait(pending, timeout=timeout)

    # -------------------------
    # PROCESS
    # -------------------------

    async def process(self, package: AnswerPackage) -> SubmissionOutcome:
        outcome = SubmissionOutcome(question_id=package.question_id)
        self.outcomes[package.question_id] = outcome

        log_event(
            "submission",
            "package_received",
            package.session_id,
            question_id=package.question_id,
            has_video=package.has_video,
            frames=len(package.frames),
            transcript=package.transcript,
        )

        if package.has_video:
            outcome.video_url = await self.upload_with_retry(
                package.candidate_interview_id,
                package.question_id,
                package.video,
                session_id=package.session_id,
            ) or ""

        response: Optional[EvaluationResponse] = None
        error: Optional[Exception] = None
        started = time.monotonic()
        try:
            response = await self.evaluator.request_evaluation(
                package,
                outcome.video_url,
                self.timings.evaluation_timeout,
            )
            observe_evaluation_latency_ms((time.monotonic() - started) * 1000.0)
        except EvaluationTimeoutError as exc:
            error = exc
            increment_metric("evaluations_timed_out")
            log_event(
                "submission",
                "evaluation_timeout",
                package.session_id,
                log_level=logging.WARNING,
                question_id=package.question_id,
            )
            await self.notifier.error("Response timeout - please try again")
        except (EvaluationFailedError, OrchestratorError, ConnectionError) as exc:
            error = exc
            increment_metric("evaluations_failed")
            logger.warning("Evaluation failed for %s: %s", package.question_id, exc)
            await self.notifier.error(f"Failed to evaluate answer: {exc}")

        if response is not None:
            outcome.evaluation = response.to_wire()
        else:
            outcome.error = str(error) if error else None

        self._awaiting.discard(package.question_id)
        await self.deliver(package.question_id, response, error)
        await self._persist(package, outcome, response)
        return outcome

    async def deliver(
        self,
        question_id: str,
        response: Optional[EvaluationResponse],
        error: Optional[Exception] = None,
    ) -> bool:
        """
        Hand the evaluation result to the controller.

        A question reaches the controller at most once with a response and at most
        once with a failure. A response that arrives after a timeout or error is
        still handed over, anything after the first response is dropped.
        """
        key = str(question_id or "")
        seen = self._delivered if response is not None else self._delivered | self._failed
        if key in seen:
            increment_metric("duplicate_responses_ignored")
            logger.info("Duplicate evaluation delivery ignored | question=%s", key)
            return False
        if response is not None:
            self._delivered.add(key)
            if key in self._failed:
                logger.info("Late evaluation delivered after failure | question=%s", key)
        else:
            self._failed.add(key)
        try:
            await self.on_evaluation(key, response, error)
        except Exception:
            logger.exception("Evaluation handler failed | question=%s", key)
        return True

    def is_awaiting(self, question_id: str) -> bool:
        return str(question_id or "") in self._awaiting

    def was_delivered(self, question_id: str) -> bool:
        return str(question_id or "") in self._delivered

    def has_failed(self, question_id: str) -> bool:
        return str(question_id or "") in self._failed

    # -------------------------
    # UPLOAD
    # -------------------------

    async def upload_with_retry(
        self,
        interview_id: str,
        question_id: str,
        video: bytes,
        full_session: bool = False,
        session_id: Optional[str] = None,
    ) -> Optional[str]:
        attempts = max(1, int(self.timings.upload_max_attempts))
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                url = await self.delivery.upload_video(interview_id, question_id, video, full_session=full_session)
                log_event(
                    "submission",
                    "upload_ok",
                    session_id,
                    question_id=question_id,
                    attempt=attempt,
                    bytes=len(video or b""),
                )
                return url
            except (UploadError, SubmissionError, ConnectionError, OSError) as exc:
                last_error = exc
                logger.warning("Upload attempt %d/%d failed for %s: %s", attempt, attempts, question_id, exc)
                if attempt < attempts:
                    await self._sleep(
                        backoff_delay(attempt, self.timings.upload_backoff_base, self.timings.upload_backoff_cap)
                    )

        increment_metric("uploads_failed")
        log_event(
            "submission",
            "upload_exhausted",
            session_id,
            question_id=question_id,
            attempts=attempts,
            error=str(last_error),
        )
        await self.notifier.error("Video upload failed - your answer was saved without video")
        return None

    async def upload_full_session(self, interview_id: str, video: Optional[bytes], session_id: Optional[str] = None) -> Optional[str]:
        if not video:
            return None
        return await self.upload_with_retry(
            interview_id,
            FULL_SESSION_QUESTION_ID,
            video,
            full_session=True,
            session_id=session_id,
        )

    # -------------------------
    # HTTP
    # -------------------------

    async def _persist(
        self,
        package: AnswerPackage,
        outcome: SubmissionOutcome,
        response: Optional[EvaluationResponse],
    ) -> None:
        evaluation = dict(outcome.evaluation or {})
        evaluation["questionText"] = package.question_text
        transcript = (response.transcript if response is not None else None) or package.transcript

        payload = {
            "videoUrl": outcome.video_url,
            "transcript": transcript,
            "geminiResponse": evaluation,
        }
        try:
            await self.delivery.submit_answer(package.candidate_interview_id, package.question_id, payload)
            outcome.submitted = True
            log_event("submission", "answer_submitted", package.session_id, question_id=package.question_id)
        except (SubmissionError, ConnectionError, OSError) as exc:
            increment_metric("submissions_failed")
            outcome.error = str(exc)
            logger.error("Answer submission failed for %s: %s", package.question_id, exc)
            await self.notifier.error(f"Failed to save answer: {exc}")
