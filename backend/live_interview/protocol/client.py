import asyncio
import base64
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Optional, Union

from pydantic import BaseModel, ValidationError

from core.config import OrchestratorTimings
from core.logger import log_event
from live_interview.errors import (
    EvaluationFailedError,
    EvaluationTimeoutError,
    InitializationError,
    ProtocolError,
)
from live_interview.models import AnswerPackage, InterventionRecord, Question, now_ms
from live_interview.schemas import (
    AnswerSubmit,
    AudioChunk,
    CandidateResponse,
    EvaluationResponse,
    InterviewCompleteNotice,
    JoinInterview,
    QuestionStarted,
    ServerError,
    SessionReady,
    SilenceDetected,
    StartSession,
    TranscriptChunk,
    VadDetected,
)
from live_interview.vad import SpeakingState
from . import events
from .transport import SessionTransport

logging.basicConfig(
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger("protocol_client")

EventHandler = Callable[[dict], Awaitable[None]]


class SessionProtocolClient:
    """
    Message contract with the orchestration / evaluation service.

    Owns the receive loop. Session bring-up and answer evaluation are exposed as
    awaitables; everything else is routed to handlers registered with on().
    A failing handler is logged and never stops the loop.
    """

    def __init__(self, transport: SessionTransport, timings: OrchestratorTimings = OrchestratorTimings()):
        self.transport = transport
        self.timings = timings
        self.session_id: Optional[str] = None
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._listener: Optional[asyncio.Task] = None
        self._init_future: Optional[asyncio.Future] = None
        self._pending: dict[str, asyncio.Future] = {}
        self._closed = False

    @property
    def connected(self) -> bool:
        return bool(self.transport.connected) and not self._closed

    def on(self, event: str, handler: EventHandler) -> None:
        self._handlers[event].append(handler)

    # -------------------------
    # LIFECYCLE
    # -------------------------

    async def connect(self) -> None:
        if self.transport.connected:
            self._ensure_listener()
            return
        try:
            await self.transport.connect()
        except Exception as exc:
            raise InitializationError(f"could not connect to session service: {exc}") from exc
        self._closed = False
        self._ensure_listener()

    def _ensure_listener(self) -> None:
        if self._listener is None or self._listener.done():
            self._listener = asyncio.get_running_loop().create_task(self._listen())

    async def close(self) -> None:
        self._closed = True
        listener = self._listener
        self._listener = None
        await self.transport.close()
        if listener is not None and not listener.done() and listener is not asyncio.current_task():
            listener.cancel()
            await asyncio.gather(listener, return_exceptions=True)
        self._fail_pending(ProtocolError("session protocol closed"))

    async def open_session(
        self,
        interview_id: str,
        candidate_id: str,
        user_role: str = "candidate",
        timeout: Optional[float] = None,
    ) -> SessionReady:
        """join-interview + start-gemini-session, then wait for gemini-session-ready."""
        timeout = self.timings.session_init_timeout if timeout is None else float(timeout)
        loop = asyncio.get_running_loop()
        self._init_future = loop.create_future()

        try:
            await self.emit(events.JOIN_INTERVIEW, JoinInterview(interview_id=interview_id, user_role=user_role))
            await self.emit(events.START_SESSION, StartSession(interview_id=interview_id, candidate_id=candidate_id))
            ready = await asyncio.wait_for(asyncio.shield(self._init_future), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise InitializationError(f"session initialization timed out after {timeout:.0f}s") from exc
        except (ConnectionError, OSError, ProtocolError) as exc:
            raise InitializationError(f"session initialization failed: {exc}") from exc
        finally:
            if self._init_future is not None and not self._init_future.done():
                self._init_future.cancel()
            self._init_future = None

        self.session_id = ready.session_id
        log_event("protocol", "session_ready", ready.session_id, interview_id=interview_id)
        return ready

    # -------------------------
    # SEND
    # -------------------------

    async def emit(self, event: str, payload: Union[BaseModel, dict]) -> None:
        if self._closed:
            raise ConnectionError("session protocol is closed")
        data = payload.to_wire() if hasattr(payload, "to_wire") else dict(payload or {})
        await self.transport.send(event, data)

    async def send_audio_chunk(self, pcm: bytes, sample_rate: int, timestamp: Optional[int] = None) -> None:
        await self.emit(
            events.AUDIO_CHUNK,
            AudioChunk(
                session_id=self.session_id or "",
                audio_data=base64.b64encode(bytes(pcm or b"")).decode("ascii"),
                sample_rate=sample_rate,
                timestamp=timestamp or now_ms(),
            ),
        )

    async def send_vad(self, state: SpeakingState) -> None:
        await self.emit(
            events.VAD_DETECTED,
            VadDetected(
                session_id=self.session_id or "",
                is_speaking=state.is_speaking,
                energy=round(state.energy, 6),
                timestamp=now_ms(),
                silence_duration=int(state.silence_duration * 1000) if state.silence_duration else None,
                speaking_duration=int(state.speaking_duration * 1000) if state.speaking_duration else None,
            ),
        )

    async def send_question_started(self, question: Question) -> None:
        await self.emit(
            events.QUESTION_STARTED,
            QuestionStarted(session_id=self.session_id or "", question_id=question.id, question_text=question.text),
        )

    async def send_transcript_chunk(self, question: Question, chunk: str) -> None:
        await self.emit(
            events.TRANSCRIPT_CHUNK,
            TranscriptChunk(
                session_id=self.session_id or "",
                question_id=question.id,
                question_text=question.text,
                transcript_chunk=chunk,
                is_final=True,
                timestamp=now_ms(),
            ),
        )

    async def send_candidate_response(self, question_id: str, transcript: str) -> None:
        await self.emit(
            events.CANDIDATE_RESPONSE,
            CandidateResponse(session_id=self.session_id or "", question_id=question_id, transcript=transcript),
        )

    async def send_silence(self, record: InterventionRecord) -> None:
        await self.emit(
            events.SILENCE_DETECTED,
            SilenceDetected(
                session_id=self.session_id or "",
                question_id=record.question_id,
                silence_duration=int(record.silence_duration * 1000),
                intervention_level=record.level.value,
            ),
        )

    async def send_interview_complete(self, interview_id: str) -> None:
        await self.emit(
            events.INTERVIEW_COMPLETE,
            InterviewCompleteNotice(session_id=self.session_id or "", interview_id=interview_id),
        )

    # -------------------------
    # EVALUATION
    # -------------------------

    async def request_evaluation(self, package: AnswerPackage, video_url: str, timeout: float) -> EvaluationResponse:
        question_id = package.question_id
        future = asyncio.get_running_loop().create_future()
        self._pending[question_id] = future

        submit = AnswerSubmit(
            session_id=package.session_id,
            question_id=question_id,
            question_text=package.question_text,
            video_data=base64.b64encode(package.video).decode("ascii") if package.video else None,
            video_url=video_url or None,
            transcript=package.transcript,
            image_frames=[frame.image for frame in package.frames],
            timestamps=package.timestamps.as_wire(package.session_start),
        )
        try:
            await self.emit(events.ANSWER_SUBMIT, submit)
            return await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise EvaluationTimeoutError(question_id, timeout) from exc
        finally:
            if self._pending.get(question_id) is future:
                self._pending.pop(question_id, None)
            if not future.done():
                future.cancel()

    def _take_pending(self, question_id: Optional[str]) -> Optional[asyncio.Future]:
        if question_id:
            return self._pending.pop(question_id, None)
        # Untagged reply: the oldest outstanding answer owns it.
        for key in list(self._pending.keys()):
            return self._pending.pop(key)
        return None

    def _fail_pending(self, exc: Exception) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(exc)
        if self._init_future is not None and not self._init_future.done():
            self._init_future.set_exception(exc)

    # -------------------------
    # RECEIVE
    # -------------------------

    async def _listen(self) -> None:
        try:
            async for event, data in self.transport.messages():
                await self.dispatch(event, data)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Session receive loop crashed: %s", exc)
        finally:
            if not self._closed:
                logger.warning("Session transport disconnected")
                self._fail_pending(ProtocolError("session transport disconnected"))
                await self._run_handlers(events.DISCONNECT, {})

    async def dispatch(self, event: str, data: dict) -> None:
        try:
            self._route(event, data or {})
        except (ValidationError, ProtocolError) as exc:
            logger.warning("Malformed %s message ignored: %s", event, exc)
            return
        await self._run_handlers(event, data or {})

    def _route(self, event: str, data: dict) -> None:
        if event == events.SESSION_READY:
            ready = SessionReady.model_validate(data)
            if self._init_future is not None and not self._init_future.done():
                self._init_future.set_result(ready)
            return

        if event == events.SESSION_ERROR:
            error = ServerError.model_validate(data)
            if self._init_future is not None and not self._init_future.done():
                self._init_future.set_exception(InitializationError(error.message))
            return

        if event == events.EVALUATION_ERROR:
            error = ServerError.model_validate(data)
            if self._init_future is not None and not self._init_future.done():
                self._init_future.set_exception(InitializationError(error.message))
                return
            future = self._take_pending(error.question_id)
            if future is not None and not future.done():
                future.set_exception(EvaluationFailedError(error.question_id, error.message))
            return

        if event == events.ANSWER_RESULT:
            response = EvaluationResponse.model_validate(data)
            future = self._take_pending(response.question_id)
            if future is not None and not future.done():
                future.set_result(response)

    async def _run_handlers(self, event: str, data: dict) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                await handler(data)
            except Exception:
                logger.exception("Handler for %s failed", event)
