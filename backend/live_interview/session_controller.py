import asyncio
import logging
import time
from typing import Callable, Optional

from core.config import OrchestratorTimings
from core.logger import log_event
from core.state import (
    TERMINAL_STATUSES,
    ConversationState,
    InterventionLevel,
    NextAction,
    SessionStatus,
)
from live_interview.activity import SpeechActivity
from live_interview.components import UserNotifier
from live_interview.devices import (
    AnswerDeliveryClient,
    MediaDevice,
    MediaStream,
    SpeechRecognizer,
    SpeechSynthesizer,
)
from live_interview.errors import (
    DeviceError,
    InitializationError,
    ProtocolError,
    RecognitionError,
    SubmissionError,
    SynthesisError,
)
from live_interview.media import MediaCaptureManager
from live_interview.models import AnswerPackage, InterventionRecord, InterviewSession, Question, now_ms
from live_interview.protocol import SessionProtocolClient, events
from live_interview.registry import SessionRegistry, session_registry
from live_interview.schemas import (
    BotMessage,
    EvaluationResponse,
    FollowupQuestionReady,
    NextQuestionGenerated,
    ProcessAnswerNow,
    ServerError,
)
from live_interview.silence import SilenceEscalationMonitor
from live_interview.speech import SpeechOutput
from live_interview.submission import AnswerSubmissionPipeline
from live_interview.system_metrics import increment_metric
from live_interview.transcript import TranscriptAggregator
from live_interview.turn_lifecycle import AnswerTurn
from live_interview.vad import SpeakingState, VadEngine

logging.basicConfig(
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger("session_controller")

FALLBACK_SESSION_ID = "fallback-session"
COUNTDOWN_TICK_SEC = 1.0


def build_greeting(title: str) -> str:
    subject = str(title or "").strip() or "this position"
    return (
        f"Hello! Welcome to your interview for {subject}. "
        "I'll be asking you a series of questions. "
        "Take your time to answer each one thoughtfully. "
        "Let's begin with the first question."
    )


class SessionController:
    """
    Top-level conversation state machine for one live interview.

    Owns the InterviewSession and the current answer cycle. Every other
    component is driven from here; none of them talk to each other directly.
    Long work triggered by server events runs in tasks tracked in self.tasks.
    """

    def __init__(
        self,
        template_id: str,
        candidate_interview_id: str,
        *,
        device: MediaDevice,
        synthesizer: SpeechSynthesizer,
        recognizer: SpeechRecognizer,
        protocol: SessionProtocolClient,
        delivery: AnswerDeliveryClient,
        notifier: Optional[UserNotifier] = None,
        timings: OrchestratorTimings = OrchestratorTimings(),
        cached_questions: Optional[list[Question]] = None,
        candidate_id: str = "anonymous",
        title: str = "",
        duration_budget_ms: Optional[int] = None,
        registry: SessionRegistry = session_registry,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session = InterviewSession(
            template_id=template_id,
            candidate_interview_id=candidate_interview_id,
            candidate_id=candidate_id,
            title=title,
            duration_budget_ms=duration_budget_ms,
        )
        self.device = device
        self.recognizer = recognizer
        self.protocol = protocol
        self.delivery = delivery
        self.notifier = notifier or UserNotifier()
        self.timings = timings
        self.registry = registry
        self.cached_questions = list(cached_questions or [])

        self.stop_event = asyncio.Event()
        self.tasks: list[asyncio.Task] = []

        self.activity = SpeechActivity(clock)
        self.vad = VadEngine(clock=clock, on_transition=self._on_vad_transition, activity=self.activity)
        self.transcript = TranscriptAggregator(
            activity=self.activity,
            on_final_chunk=self._on_final_chunk,
            on_completion_phrase=self._on_completion_phrase,
            clock=clock,
        )
        self.silence = SilenceEscalationMonitor(
            self.activity,
            self._on_escalation,
            is_candidate_speaking=lambda: self.vad.is_speaking,
            tick=timings.silence_tick,
        )
        self.speech = SpeechOutput(synthesizer, timings.tts_start_timeout, timings.tts_end_timeout)
        self.pipeline = AnswerSubmissionPipeline(
            delivery,
            protocol,
            self._on_evaluation,
            notifier=self.notifier,
            timings=timings,
        )

        self.stream: Optional[MediaStream] = None
        self.capture: Optional[MediaCaptureManager] = None
        self.turn: Optional[AnswerTurn] = None
        self.last_answered_question_id: Optional[str] = None
        self.intervention_active = False

        self._cycle_lock = asyncio.Lock()
        self._answer_idle = asyncio.Event()
        self._answer_idle.set()
        self._closing = False
        self._handlers_registered = False

    # -------------------------
    # STATE
    # -------------------------

    @property
    def status(self) -> SessionStatus:
        return self.session.status

    @property
    def conversation_state(self) -> ConversationState:
        return self.session.conversation_state

    @property
    def is_candidate_speaking(self) -> bool:
        return self.session.conversation_state == ConversationState.CANDIDATE_SPEAKING

    @property
    def is_answering(self) -> bool:
        return self.turn is not None and self.turn.is_open

    @property
    def closing(self) -> bool:
        return self._closing or self.session.status in TERMINAL_STATUSES

    def _set_conversation_state(self, state: ConversationState) -> None:
        if self.session.conversation_state != state:
            logger.debug("Conversation %s → %s", self.session.conversation_state.value, state.value)
        self.session.conversation_state = state

    def create_task(self, coro):
        task = asyncio.get_running_loop().create_task(coro)
        self.tasks.append(task)
        task.add_done_callback(self._forget_task)
        return task

    def _forget_task(self, task: asyncio.Task) -> None:
        try:
            self.tasks.remove(task)
        except ValueError:
            pass
        if not task.cancelled() and task.exception() is not None:
            logger.error("Session task failed: %s", task.exception())

    def time_remaining(self) -> Optional[float]:
        """Seconds left in the interview budget, None when there is no budget."""
        budget = self.session.duration_budget_ms
        if not budget:
            return None
        start = self.session.start_timestamp
        if start is None:
            return budget / 1000.0
        return max(0.0, (start + budget - now_ms()) / 1000.0)

    # -------------------------
    # INITIALIZATION
    # -------------------------

    async def initialize(self) -> InterviewSession:
        self.session.status = SessionStatus.LOADING
        try:
            self.stream = await self.device.open()
        except DeviceError as exc:
            await self.notifier.error("Unable to access camera or microphone")
            await self.fail(exc)
            raise
        self.capture = MediaCaptureManager(self.stream, self.timings)
        self._register_handlers()

        first_question: Optional[Question] = None
        try:
            await self.protocol.connect()
            ready = await self.protocol.open_session(
                self.session.candidate_interview_id,
                self.session.candidate_id,
                timeout=self.timings.session_init_timeout,
            )
            self.session.session_id = ready.session_id
            if ready.first_question is not None:
                first_question = ready.first_question.to_question()
            elif self.cached_questions:
                first_question = self.cached_questions[0]
        except InitializationError as exc:
            if not self.cached_questions:
                logger.error("Session initialization failed without cached questions: %s", exc)
                await self.notifier.error("Failed to start interview session")
                await self.fail(exc)
                raise
            logger.warning("Session initialization failed, using cached questions: %s", exc)
            await self.notifier.info("Using offline question set")
            self.session.session_id = FALLBACK_SESSION_ID
            self.session.used_fallback = True
            increment_metric("sessions_used_fallback")
            first_question = self.cached_questions[0]

        if first_question is None:
            exc = InitializationError("session became ready without a first question")
            await self.fail(exc)
            raise exc

        self.session.append_question(first_question)
        self.session.current_question = first_question
        self.session.status = SessionStatus.READY
        self.registry.register(self.session.session_id, self.session.candidate_interview_id, self)
        increment_metric("sessions_started")
        log_event(
            "session_controller",
            "session_initialized",
            self.session.session_id,
            interview_id=self.session.candidate_interview_id,
            fallback=self.session.used_fallback,
            first_question_id=first_question.id,
        )
        return self.session

    def _register_handlers(self) -> None:
        if self._handlers_registered:
            return
        self._handlers_registered = True
        self.protocol.on(events.ANSWER_RESULT, self._handle_answer_result)
        self.protocol.on(events.NEXT_QUESTION_GENERATED, self._handle_next_question)
        self.protocol.on(events.FOLLOWUP_QUESTION_READY, self._handle_followup_ready)
        for event in events.BOT_MESSAGE_EVENTS:
            self.protocol.on(event, self._make_bot_message_handler(event))
        self.protocol.on(events.PROCESS_ANSWER_NOW, self._handle_process_answer_now)
        self.protocol.on(events.SESSION_ERROR, self._handle_session_error)
        self.protocol.on(events.INTERVIEW_COMPLETE, self._handle_server_complete)
        self.protocol.on(events.DISCONNECT, self._handle_disconnect)

    # -------------------------
    # INTERVIEW START
    # -------------------------

    async def start_interview(self, greet: bool = True) -> None:
        if self.session.status != SessionStatus.READY:
            raise InitializationError(f"cannot start interview from status {self.session.status.value}")

        self.session.status = SessionStatus.IN_PROGRESS
        self.session.start_timestamp = now_ms()
        self.capture.start_full_session()

        self.create_task(self.vad.run(self.stream.latest_audio_frame, self.stop_event, self.timings.vad_interval))
        if not self.session.used_fallback:
            self.create_task(self._stream_audio())
        if self.session.duration_budget_ms:
            self.create_task(self._countdown())

        log_event("session_controller", "interview_started", self.session.session_id)

        if greet:
            self._set_conversation_state(ConversationState.BOT_SPEAKING)
            try:
                await self.speech.speak(build_greeting(self.session.title))
            except SynthesisError as exc:
                logger.warning("Greeting playback failed: %s", exc)
            self._set_conversation_state(ConversationState.IDLE)
            if self.timings.question_lead_in:
                await asyncio.sleep(self.timings.question_lead_in)

        if self.closing:
            return
        await self.speak_and_open(self.session.current_question)

    # -------------------------
    # QUESTION CYCLE
    # -------------------------

    async def speak_and_open(self, question: Question) -> None:
        """Speak the question, then open the answer window."""
        async with self._cycle_lock:
            if self.is_answering:
                await self.stop_answering("superseded")
            await self._answer_idle.wait()
            if self.closing:
                return

            self.session.append_question(question)
            self.session.current_question = question
            self.intervention_active = False
            question.timestamps.question_start = now_ms()
            self._set_conversation_state(ConversationState.BOT_SPEAKING)
            increment_metric("questions_asked")
            log_event(
                "session_controller",
                "question_spoken",
                self.session.session_id,
                question_id=question.id,
                kind=question.kind,
                question_text=question.text,
            )
            await self._safe_send(self.protocol.send_question_started, question)

            try:
                await self.speech.speak(question.text)
            except SynthesisError as exc:
                if self.closing:
                    return
                increment_metric("synthesis_failures")
                logger.warning("Question playback failed for %s: %s", question.id, exc)
                await self.notifier.error("Audio playback failed - please read the question on screen")
                await asyncio.sleep(self.timings.tts_failure_fallback)

            if self.closing:
                return

            question.timestamps.question_end = now_ms()
            await self._open_answer(question)

    async def _open_answer(self, question: Question) -> None:
        self.turn = AnswerTurn(question.id)
        self._answer_idle.clear()
        question.timestamps.answer_start = now_ms()

        self.transcript.reset()
        try:
            self.recognizer.start(self._on_recognition_result, self._on_recognition_error)
        except Exception as exc:
            logger.error("Speech recognition failed to start: %s", exc)

        self.activity.mark()
        self.capture.on_question_speech_end(question.id)
        self._set_conversation_state(
            ConversationState.CANDIDATE_SPEAKING if self.vad.is_speaking else ConversationState.LISTENING
        )
        self.silence.arm(question.id)
        if self.vad.is_speaking:
            self.silence.pause()
        logger.info("Answer window open | question=%s", question.id)

    async def stop_answering(self, reason: str = "manual") -> Optional[AnswerPackage]:
        """
        Close the open answer and hand its package to the submission pipeline.
        Returns without waiting for evaluation. Only the first caller per answer dispatches.
        """
        turn = self.turn
        if turn is None or not await turn.try_stop(reason):
            return None

        try:
            self.silence.disarm(reason)
            try:
                self.recognizer.stop()
            except Exception as exc:
                logger.warning("Speech recognition stop failed: %s", exc)

            result = await self.capture.on_answer_stop()
            if self.timings.transcript_settle:
                await asyncio.sleep(self.timings.transcript_settle)
            transcript_text = self.transcript.freeze()

            question = self.session.find_question(turn.question_id)
            question.timestamps.answer_end = now_ms()

            package = AnswerPackage(
                question_id=question.id,
                question_text=question.text,
                transcript=transcript_text,
                session_id=self.session.session_id or "",
                candidate_interview_id=self.session.candidate_interview_id,
                video=result.video,
                frames=result.frames,
                timestamps=question.timestamps,
                session_start=self.session.start_timestamp,
            )
            self.pipeline.submit(package)
            await turn.mark_dispatched()
            self.last_answered_question_id = question.id
            log_event(
                "session_controller",
                "answer_dispatched",
                self.session.session_id,
                question_id=question.id,
                reason=reason,
                frames=len(package.frames),
                has_video=package.has_video,
                transcript=transcript_text,
            )
            return package
        finally:
            if self.turn is turn:
                self.turn = None
            self.intervention_active = False
            if not self.speech.speaking:
                self._set_conversation_state(ConversationState.IDLE)
            self._answer_idle.set()

    # -------------------------
    # ADVANCE
    # -------------------------

    async def advance(
        self,
        action: NextAction,
        next_question: Optional[Question] = None,
        next_text: Optional[str] = None,
        source_question_id: Optional[str] = None,
    ) -> None:
        if self.closing:
            return

        if action == NextAction.END_INTERVIEW:
            await self.complete("server_end")
            return

        if action == NextAction.ASK_FOLLOWUP:
            parent_id = source_question_id or (self.session.current_question.id if self.session.current_question else None)
            parent = self.session.find_question(parent_id) if parent_id else None
            if parent is None:
                logger.warning("Follow-up requested for unknown question %s", parent_id)
                return
            if next_question is not None:
                followup = next_question
                followup.kind = "followup"
                followup.parent_question_id = followup.parent_question_id or parent.id
            elif next_text:
                followup = Question.followup_of(parent, next_text)
            else:
                logger.warning("Follow-up requested without text for %s", parent.id)
                return
            await self.apply_question(followup)
            return

        question = next_question or self._next_cached_question()
        if question is None:
            await self.complete("questions_exhausted")
            return
        await self.apply_question(question)

    async def apply_question(self, question: Question) -> bool:
        """
        Take a newly delivered question into the conversation.
        Duplicate ids are ignored. A follow-up is dropped once the session has moved past its parent.
        While the candidate is speaking, application waits until they stop.
        """
        if self.closing:
            return False
        if self.session.find_question(question.id) is not None:
            logger.info("Duplicate question delivery ignored | question=%s", question.id)
            return False
        if question.is_followup and not self._on_parent_of(question):
            logger.info(
                "Stale follow-up ignored | question=%s | parent=%s | current=%s",
                question.id,
                question.parent_question_id,
                self.session.current_question.id if self.session.current_question else None,
            )
            return False

        self.session.append_question(question)

        if self.is_candidate_speaking:
            increment_metric("deferred_question_applies")
            logger.info("Candidate speaking, deferring question %s", question.id)
            while self.is_candidate_speaking and not self.closing:
                await asyncio.sleep(self.timings.question_defer_poll)
            if self.closing:
                return False

        if self.is_answering:
            await self.stop_answering("next_question")
        await self.speak_and_open(question)
        return True

    def _on_parent_of(self, question: Question) -> bool:
        current = self.session.current_question
        parent_id = question.parent_question_id
        if parent_id is None or current is None:
            return True
        return parent_id == current.id

    def _next_cached_question(self) -> Optional[Question]:
        for question in self.cached_questions:
            if self.session.find_question(question.id) is None:
                return question
        return None

    # -------------------------
    # EVALUATION
    # -------------------------

    async def _on_evaluation(
        self,
        question_id: str,
        response: Optional[EvaluationResponse],
        error: Optional[Exception],
    ) -> None:
        if self.closing:
            return
        if response is None:
            self.create_task(self._advance_after_failure(question_id))
            return
        if self.pipeline.has_failed(question_id) and not self._still_on(question_id):
            logger.info("Late evaluation for %s ignored, session has moved on", question_id)
            return

        try:
            action = NextAction(response.next_action)
        except ValueError:
            logger.warning("Unknown next_action %r for %s", response.next_action, question_id)
            action = NextAction.NEXT_QUESTION

        next_question = response.next_question.to_question() if response.next_question else None
        self.create_task(
            self.advance(
                action,
                next_question=next_question,
                next_text=response.next_text,
                source_question_id=question_id,
            )
        )

    def _still_on(self, question_id: str) -> bool:
        current = self.session.current_question
        if current is not None and current.id != question_id:
            return False
        return not self.is_answering

    async def _advance_after_failure(self, question_id: str) -> None:
        if not self._still_on(question_id):
            return

        question = self._next_cached_question()
        if question is not None:
            await self.apply_question(question)
            return
        if self.session.used_fallback or not self.protocol.connected:
            await self.complete("questions_exhausted")
            return
        await self.notifier.info("Waiting for the next question")

    # -------------------------
    # SERVER EVENTS
    # -------------------------

    async def _handle_answer_result(self, data: dict) -> None:
        response = EvaluationResponse.model_validate(data)
        question_id = response.question_id or self.last_answered_question_id
        if not question_id:
            logger.warning("Evaluation response without a question to attach to")
            return
        if self.pipeline.is_awaiting(question_id):
            # the submission task picks this up from its own request
            return
        await self.pipeline.deliver(question_id, response)

    async def _handle_next_question(self, data: dict) -> None:
        payload = NextQuestionGenerated.model_validate(data)
        self.create_task(self.apply_question(payload.question.to_question()))

    async def _handle_followup_ready(self, data: dict) -> None:
        payload = FollowupQuestionReady.model_validate(data)
        followup = payload.followup_question.to_question()
        followup.kind = "followup"
        followup.parent_question_id = payload.question_id or followup.parent_question_id
        self.create_task(self.apply_question(followup))

    def _make_bot_message_handler(self, event: str):
        async def _handler(data: dict) -> None:
            await self._handle_bot_message(event, BotMessage.model_validate(data))
        return _handler

    async def _handle_bot_message(self, event: str, message: BotMessage) -> None:
        log_event(
            "session_controller",
            "bot_message",
            self.session.session_id,
            kind=event,
            type=message.type,
            message=message.message,
        )
        if event in (events.BOT_INTERVENTION, events.BOT_DEFLECTION):
            self.intervention_active = True
        if event == events.BOT_ACKNOWLEDGMENT and message.type == "realtime":
            return
        if not message.message:
            return
        self.create_task(self._speak_bot_message(message.message))

    async def _speak_bot_message(self, text: str) -> None:
        if self.closing:
            return
        if self._cycle_lock.locked() and not self.is_answering:
            logger.info("Question being spoken, bot message dropped")
            return
        self._set_conversation_state(ConversationState.BOT_SPEAKING)
        try:
            await self.speech.speak(text)
        except SynthesisError as exc:
            logger.warning("Bot message playback failed: %s", exc)
        finally:
            if self.session.conversation_state == ConversationState.BOT_SPEAKING and not self.speech.speaking:
                self._set_conversation_state(ConversationState.LISTENING if self.is_answering else ConversationState.IDLE)

    async def _handle_process_answer_now(self, data: dict) -> None:
        payload = ProcessAnswerNow.model_validate(data)
        turn = self.turn
        if turn is None:
            return
        if payload.question_id and payload.question_id != turn.question_id:
            logger.info("process-answer-now for %s ignored, answering %s", payload.question_id, turn.question_id)
            return
        self.create_task(self.stop_answering("server_process_now"))

    async def _handle_session_error(self, data: dict) -> None:
        if self.session.status == SessionStatus.LOADING:
            return
        error = ServerError.model_validate(data)
        await self.notifier.error(error.message)

    async def _handle_server_complete(self, data: dict) -> None:
        self.create_task(self.complete("server_complete"))

    async def _handle_disconnect(self, data: dict) -> None:
        if self.closing or self.session.status == SessionStatus.LOADING:
            return
        logger.error("Session transport lost | session=%s", self.session.session_id)
        await self.notifier.error("Connection to the interview service was lost")
        await self.fail(ProtocolError("session transport lost"))

    # -------------------------
    # LOCAL SIGNALS
    # -------------------------

    def _on_vad_transition(self, state: SpeakingState) -> None:
        if self.is_answering and not self.speech.speaking:
            if state.is_speaking:
                self._set_conversation_state(ConversationState.CANDIDATE_SPEAKING)
                self.silence.pause()
            else:
                self._set_conversation_state(ConversationState.LISTENING)
                self.silence.resume()
        if not self.session.used_fallback and self.protocol.connected:
            self.create_task(self._safe_send(self.protocol.send_vad, state))

    def _on_final_chunk(self, chunk: str) -> None:
        question = self.session.current_question
        if question is None or self.session.used_fallback:
            return
        self.create_task(self._safe_send(self.protocol.send_transcript_chunk, question, chunk))
        if self.intervention_active:
            self.create_task(self._safe_send(self.protocol.send_candidate_response, question.id, chunk))

    def _on_completion_phrase(self, chunk: str) -> None:
        turn = self.turn
        if turn is None or not turn.is_open:
            return
        logger.info("Completion phrase detected | question=%s", turn.question_id)
        self.create_task(self._stop_after_grace(turn))

    async def _stop_after_grace(self, turn: AnswerTurn) -> None:
        await asyncio.sleep(self.timings.completion_grace)
        if self.turn is turn and turn.is_open:
            await self.stop_answering("completion_phrase")

    def _on_recognition_result(self, index: int, text: str, is_final: bool) -> None:
        self.transcript.ingest(index, text, is_final)

    def _on_recognition_error(self, code: str) -> None:
        error = RecognitionError(code)
        if error.is_transient:
            logger.info("Recognition notice ignored: %s", error.code)
            return
        logger.warning("Speech recognition error: %s", error.code)
        self.create_task(self.notifier.error(f"Speech recognition error: {error.code}"))

    async def _on_escalation(self, record: InterventionRecord) -> None:
        increment_metric("interventions_emitted")
        log_event(
            "session_controller",
            "silence_escalation",
            self.session.session_id,
            question_id=record.question_id,
            level=record.level.value,
            silence_sec=round(record.silence_duration, 1),
        )
        if not self.session.used_fallback:
            await self._safe_send(self.protocol.send_silence, record)

        if record.level == InterventionLevel.FORCE_MOVE:
            turn = self.turn
            if turn is not None and turn.question_id == record.question_id:
                await self.notifier.info("Moving on to the next question")
                self.create_task(self.stop_answering("silence_force_move"))

    async def _safe_send(self, send, *args) -> None:
        if not self.protocol.connected:
            return
        try:
            await send(*args)
        except (ConnectionError, OSError, ProtocolError) as exc:
            logger.warning("Protocol send failed: %s", exc)

    # -------------------------
    # BACKGROUND LOOPS
    # -------------------------

    async def _stream_audio(self) -> None:
        chunk_ms = self.timings.audio_chunk_ms
        rate = self.timings.audio_sample_rate
        try:
            while not self.stop_event.is_set():
                try:
                    pcm = await self.stream.read_audio_chunk(chunk_ms, rate)
                except Exception as exc:
                    logger.warning("Audio read failed: %s", exc)
                    await asyncio.sleep(chunk_ms / 1000.0)
                    continue
                if not pcm:
                    await asyncio.sleep(chunk_ms / 1000.0)
                    continue
                if not self.protocol.connected:
                    break
                await self._safe_send(self.protocol.send_audio_chunk, pcm, rate)
        finally:
            logger.info("Audio streaming stopped | session=%s", self.session.session_id)

    async def _countdown(self) -> None:
        while not self.stop_event.is_set():
            remaining = self.time_remaining()
            if remaining is None or remaining <= 0:
                break
            await asyncio.sleep(min(COUNTDOWN_TICK_SEC, remaining))

        if not self.stop_event.is_set() and not self.closing:
            logger.info("Interview time budget exhausted | session=%s", self.session.session_id)
            await self.notifier.info("Time is up - wrapping up the interview")
            self.create_task(self.complete("time_up"))

    # -------------------------
    # COMPLETION
    # -------------------------

    async def complete(self, reason: str = "finished") -> None:
        if self.closing:
            return
        self._closing = True
        logger.info("Completing interview | session=%s | reason=%s", self.session.session_id, reason)

        if self.is_answering:
            await self.stop_answering("interview_complete")

        await self._halt_live_components()

        full_session_url = None
        if self.capture is not None:
            blob = await self.capture.stop_full_session()
            await self.capture.shutdown()
            full_session_url = await self.pipeline.upload_full_session(
                self.session.candidate_interview_id,
                blob,
                session_id=self.session.session_id,
            )

        await self._safe_send(self.protocol.send_interview_complete, self.session.candidate_interview_id)
        try:
            await self.delivery.complete_interview(self.session.candidate_interview_id, full_session_url)
        except (SubmissionError, ConnectionError, OSError) as exc:
            logger.error("Interview completion request failed: %s", exc)
            await self.notifier.error("Failed to finalize interview - your answers were saved")

        self.session.status = SessionStatus.COMPLETED
        self._set_conversation_state(ConversationState.IDLE)
        if self.session.session_id:
            self.registry.mark_inactive(self.session.session_id)
        increment_metric("sessions_completed")
        log_event(
            "session_controller",
            "interview_completed",
            self.session.session_id,
            reason=reason,
            questions=len(self.session.questions),
            inflight_submissions=self.pipeline.inflight_count,
        )

    async def fail(self, exc: Exception) -> None:
        if self.session.status in TERMINAL_STATUSES:
            return
        self._closing = True
        logger.error("Session failed | session=%s | error=%s", self.session.session_id, exc)
        self.session.status = SessionStatus.ERROR
        increment_metric("sessions_failed")
        await self._halt_live_components()
        if self.capture is not None:
            await self.capture.shutdown()
        if self.session.session_id:
            self.registry.mark_inactive(self.session.session_id)
        log_event("session_controller", "session_failed", self.session.session_id, error=str(exc))

    async def drain(self, timeout: Optional[float] = None) -> None:
        await self.pipeline.drain(timeout)

    async def stop(self) -> None:
        """Release devices and the transport. In-flight submissions keep running."""
        self._closing = True
        await self._halt_live_components()
        if self.capture is not None:
            await self.capture.shutdown()
        if self.stream is not None:
            try:
                self.stream.close()
            except Exception as exc:
                logger.warning("Media stream close failed: %s", exc)
        await self.protocol.close()

    async def _halt_live_components(self) -> None:
        if not self.stop_event.is_set():
            self.stop_event.set()

        self.silence.disarm("halt")
        await self.speech.abort()
        try:
            self.recognizer.stop()
        except Exception as exc:
            logger.warning("Speech recognition stop failed: %s", exc)

        current = asyncio.current_task()
        pending = [task for task in list(self.tasks) if task is not current and not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
