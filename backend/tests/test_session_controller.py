import asyncio
from array import array

import pytest

from core.state import ConversationState, SessionStatus
from live_interview import system_metrics
from live_interview.components import UserNotifier
from live_interview.errors import DeviceError, InitializationError
from live_interview.models import Question
from live_interview.protocol import SessionProtocolClient, events
from live_interview.registry import SessionRegistry
from live_interview.session_controller import FALLBACK_SESSION_ID, SessionController

LOUD = array("h", [16000] * 160).tobytes()
QUIET = array("h", [0] * 160).tobytes()

Q1 = {"id": "q1", "text": "Walk me through a system you designed."}
Q2 = {"id": "q2", "text": "How would you scale it tenfold?"}


def scripted_server(answers=None):
    """Replies to session start with Q1 and to each answer with the scripted evaluation."""
    answers = dict(answers or {})

    def _responder(event, data):
        if event == events.START_SESSION:
            return [(events.SESSION_READY, {"sessionId": "s-1", "firstQuestion": Q1})]
        if event == events.ANSWER_SUBMIT and data["questionId"] in answers:
            reply = dict(answers[data["questionId"]])
            reply.setdefault("question_id", data["questionId"])
            return [(events.ANSWER_RESULT, reply)]
        return []

    return _responder


def build(fakes, timings, responder=None, transport=None, **kwargs):
    transport = transport or fakes.Transport(responder=responder)
    parts = {
        "transport": transport,
        "stream": kwargs.pop("stream", None) or fakes.Stream(),
        "synthesizer": fakes.Synthesizer(),
        "recognizer": fakes.Recognizer(),
        "delivery": fakes.Delivery(),
        "notifier": UserNotifier(),
        "registry": SessionRegistry(),
    }
    controller = SessionController(
        "tpl-1",
        "ci-1",
        device=kwargs.pop("device", None) or fakes.Device(parts["stream"]),
        synthesizer=parts["synthesizer"],
        recognizer=parts["recognizer"],
        protocol=SessionProtocolClient(transport, timings),
        delivery=parts["delivery"],
        notifier=parts["notifier"],
        timings=timings,
        registry=parts["registry"],
        candidate_id="cand-1",
        **kwargs,
    )
    return controller, parts


async def shutdown(controller):
    await controller.stop()
    await controller.drain(timeout=2.0)


@pytest.mark.asyncio
async def test_full_interview_flow(fakes, fast_timings, until):
    responder = scripted_server({
        "q1": {"next_action": "next_question", "nextQuestion": Q2},
        "q2": {"next_action": "end_interview"},
    })
    controller, parts = build(fakes, fast_timings, responder, title="Backend Engineer")

    session = await controller.initialize()
    assert session.status == SessionStatus.READY
    assert session.session_id == "s-1"
    assert parts["registry"].get("s-1").active is True

    await controller.start_interview()
    assert "Backend Engineer" in parts["synthesizer"].spoken[0]
    assert parts["synthesizer"].spoken[1] == Q1["text"]
    assert controller.is_answering
    assert controller.conversation_state == ConversationState.LISTENING

    parts["recognizer"].emit(0, "I built a read-through cache")
    package = await controller.stop_answering("manual")
    assert package.transcript == "I built a read-through cache"
    assert package.video == b"webm-bytes"
    assert package.frames

    await until(lambda: controller.turn is not None and controller.turn.question_id == "q2")
    await controller.stop_answering("manual")
    await until(lambda: controller.status == SessionStatus.COMPLETED)
    await controller.drain(timeout=2.0)

    assert parts["synthesizer"].spoken[1:] == [Q1["text"], Q2["text"]]
    assert [q.id for q in controller.session.questions] == ["q1", "q2"]
    assert [s[1] for s in parts["delivery"].submissions] == ["q1", "q2"]
    assert parts["delivery"].completions == [("ci-1", "https://files.example/ci-1/full-session.webm")]
    assert len(parts["transport"].events(events.QUESTION_STARTED)) == 2
    assert parts["transport"].events(events.INTERVIEW_COMPLETE) == [{"sessionId": "s-1", "interviewId": "ci-1"}]
    assert parts["registry"].get("s-1").active is False
    assert system_metrics.get_metrics_snapshot()["sessions_completed"] == 1
    await shutdown(controller)


@pytest.mark.asyncio
async def test_duplicate_evaluation_response_advances_once(fakes, fast_timings, until):
    def _responder(event, data):
        replies = scripted_server()(event, data)
        if event == events.ANSWER_SUBMIT and data["questionId"] == "q1":
            reply = {"next_action": "next_question", "nextQuestion": Q2, "question_id": "q1"}
            replies = [(events.ANSWER_RESULT, reply), (events.ANSWER_RESULT, reply)]
        return replies

    controller, parts = build(fakes, fast_timings, _responder)
    await controller.initialize()
    await controller.start_interview(greet=False)

    await controller.stop_answering("manual")
    await until(lambda: controller.session.current_question.id == "q2" and controller.is_answering)

    # a late copy of the same response arrives over the event channel
    before = system_metrics.get_metrics_snapshot()["duplicate_responses_ignored"]
    parts["transport"].push(events.ANSWER_RESULT, {"next_action": "next_question", "nextQuestion": Q2, "question_id": "q1"})
    await until(lambda: system_metrics.get_metrics_snapshot()["duplicate_responses_ignored"] > before)
    await asyncio.sleep(0.05)

    assert parts["synthesizer"].spoken.count(Q2["text"]) == 1
    assert [q.id for q in controller.session.questions] == ["q1", "q2"]
    assert system_metrics.get_metrics_snapshot()["answers_dispatched"] == 1
    await shutdown(controller)


@pytest.mark.asyncio
async def test_stop_answering_dispatches_once(fakes, fast_timings):
    controller, parts = build(fakes, fast_timings, scripted_server())
    await controller.initialize()
    await controller.start_interview(greet=False)

    results = await asyncio.gather(
        controller.stop_answering("manual"),
        controller.stop_answering("completion_phrase"),
        controller.stop_answering("silence_force_move"),
    )

    assert sum(1 for r in results if r is not None) == 1
    assert system_metrics.get_metrics_snapshot()["answers_dispatched"] == 1
    await shutdown(controller)


@pytest.mark.asyncio
async def test_new_question_deferred_while_candidate_speaks(fakes, fast_timings, until):
    stream = fakes.Stream(frame=QUIET)
    controller, parts = build(fakes, fast_timings, scripted_server(), stream=stream)
    await controller.initialize()
    await controller.start_interview(greet=False)

    stream.frame = LOUD
    await until(lambda: controller.conversation_state == ConversationState.CANDIDATE_SPEAKING)

    parts["transport"].push(events.NEXT_QUESTION_GENERATED, {"question": Q2})
    await asyncio.sleep(0.08)
    assert controller.session.current_question.id == "q1"
    assert Q2["text"] not in parts["synthesizer"].spoken
    assert system_metrics.get_metrics_snapshot()["deferred_question_applies"] == 1

    stream.frame = QUIET
    await until(lambda: controller.session.current_question.id == "q2" and controller.is_answering)

    assert parts["synthesizer"].spoken == [Q1["text"], Q2["text"]]
    assert controller.last_answered_question_id == "q1"
    await shutdown(controller)


@pytest.mark.asyncio
async def test_late_response_after_timeout_advances(fakes, fast_timings, until):
    controller, parts = build(fakes, fast_timings, scripted_server())
    await controller.initialize()
    await controller.start_interview(greet=False)

    await controller.stop_answering("manual")
    await until(lambda: ("info", "Waiting for the next question") in parts["notifier"].history)
    assert ("error", "Response timeout - please try again") in parts["notifier"].history
    assert controller.session.current_question.id == "q1"
    assert not controller.is_answering

    parts["transport"].push(events.ANSWER_RESULT, {"next_action": "next_question", "nextQuestion": Q2, "question_id": "q1"})
    await until(lambda: controller.session.current_question.id == "q2" and controller.is_answering)

    assert parts["synthesizer"].spoken.count(Q2["text"]) == 1
    await shutdown(controller)


@pytest.mark.asyncio
async def test_late_response_ignored_once_session_moved_on(fakes, fast_timings, until):
    cached = [Question(id="q1", text=Q1["text"]), Question(id="q3", text="Tell me about a hard bug.")]
    controller, parts = build(fakes, fast_timings, scripted_server(), cached_questions=cached)
    await controller.initialize()
    await controller.start_interview(greet=False)

    await controller.stop_answering("manual")
    await until(lambda: controller.session.current_question.id == "q3" and controller.is_answering)

    parts["transport"].push(events.ANSWER_RESULT, {"next_action": "next_question", "nextQuestion": Q2, "question_id": "q1"})
    await asyncio.sleep(0.1)

    assert [q.id for q in controller.session.questions] == ["q1", "q3"]
    assert controller.session.current_question.id == "q3"
    assert Q2["text"] not in parts["synthesizer"].spoken
    await shutdown(controller)


@pytest.mark.asyncio
async def test_duplicate_question_delivery_ignored(fakes, fast_timings):
    controller, parts = build(fakes, fast_timings, scripted_server())
    await controller.initialize()
    await controller.start_interview(greet=False)

    parts["transport"].push(events.NEXT_QUESTION_GENERATED, {"question": Q1})
    await asyncio.sleep(0.05)

    assert parts["synthesizer"].spoken == [Q1["text"]]
    assert controller.is_answering
    assert controller.turn.question_id == "q1"
    await shutdown(controller)


@pytest.mark.asyncio
async def test_silence_escalates_then_moves_on(fakes, fast_timings, until):
    clock = fakes.Clock()
    responder = scripted_server({"q1": {"next_action": "next_question", "nextQuestion": Q2}})
    controller, parts = build(fakes, fast_timings, responder, clock=clock)
    await controller.initialize()
    await controller.start_interview(greet=False)

    clock.advance(32.0)
    await until(lambda: controller.session.current_question.id == "q2" and controller.is_answering)

    levels = [e["interventionLevel"] for e in parts["transport"].events(events.SILENCE_DETECTED)]
    assert levels == ["thinking_check", "suggest_move_on", "force_move"]
    assert controller.session.questions[0].timestamps.answer_end is not None
    await shutdown(controller)


@pytest.mark.asyncio
async def test_completion_phrase_stops_answer(fakes, fast_timings, until):
    controller, parts = build(fakes, fast_timings, scripted_server())
    await controller.initialize()
    await controller.start_interview(greet=False)

    parts["recognizer"].emit(0, "binary search on the sorted array")
    parts["recognizer"].emit(1, "and that's all")
    await until(lambda: controller.last_answered_question_id == "q1")

    chunks = [e["transcriptChunk"] for e in parts["transport"].events(events.TRANSCRIPT_CHUNK)]
    assert chunks == ["binary search on the sorted array", "and that's all"]
    await shutdown(controller)


@pytest.mark.asyncio
async def test_process_answer_now_and_followups(fakes, fast_timings, until):
    controller, parts = build(fakes, fast_timings, scripted_server())
    await controller.initialize()
    await controller.start_interview(greet=False)

    parts["transport"].push(
        events.FOLLOWUP_QUESTION_READY,
        {"questionId": "q0", "followupQuestion": {"id": "stale_f", "text": "Stale?"}},
    )
    parts["transport"].push(
        events.FOLLOWUP_QUESTION_READY,
        {"questionId": "q1", "followupQuestion": {"id": "q1_f", "text": "Why that database?"}},
    )
    await until(lambda: controller.session.current_question.id == "q1_f" and controller.is_answering)

    followup = controller.session.current_question
    assert followup.is_followup and followup.parent_question_id == "q1"
    assert "Stale?" not in parts["synthesizer"].spoken

    parts["transport"].push(events.PROCESS_ANSWER_NOW, {"questionId": "q1_f"})
    await until(lambda: controller.last_answered_question_id == "q1_f")
    assert not controller.is_answering
    await shutdown(controller)


@pytest.mark.asyncio
async def test_evaluation_can_ask_generated_followup(fakes, fast_timings, until):
    responder = scripted_server({"q1": {"next_action": "ask_followup", "next_text": "Can you go deeper on caching?"}})
    controller, parts = build(fakes, fast_timings, responder)
    await controller.initialize()
    await controller.start_interview(greet=False)

    await controller.stop_answering("manual")
    await until(lambda: controller.session.current_question.is_followup and controller.is_answering)

    followup = controller.session.current_question
    assert followup.id.startswith("q1_followup_")
    assert followup.text == "Can you go deeper on caching?"
    await shutdown(controller)


@pytest.mark.asyncio
async def test_bot_messages_and_candidate_responses(fakes, fast_timings, until):
    controller, parts = build(fakes, fast_timings, scripted_server())
    await controller.initialize()
    await controller.start_interview(greet=False)

    parts["transport"].push(events.BOT_ACKNOWLEDGMENT, {"message": "Mm-hmm", "type": "realtime"})
    parts["transport"].push(events.BOT_INTERVENTION, {"message": "Would you like a hint?"})
    await until(lambda: "Would you like a hint?" in parts["synthesizer"].spoken)
    await until(lambda: controller.conversation_state == ConversationState.LISTENING)

    parts["recognizer"].emit(0, "yes please")
    await until(lambda: parts["transport"].events(events.CANDIDATE_RESPONSE))

    assert "Mm-hmm" not in parts["synthesizer"].spoken
    assert parts["transport"].events(events.CANDIDATE_RESPONSE)[0]["transcript"] == "yes please"
    await shutdown(controller)


@pytest.mark.asyncio
async def test_init_timeout_falls_back_to_cached_questions(fakes, fast_timings, until):
    cached = [Question(id="c1", text="Tell me about yourself."), Question(id="c2", text="Why this role?")]
    transport = fakes.Transport(fail_connect=True)
    controller, parts = build(fakes, fast_timings, transport=transport, cached_questions=cached)

    session = await controller.initialize()
    assert session.session_id == FALLBACK_SESSION_ID
    assert session.used_fallback is True

    await controller.start_interview(greet=False)
    await controller.stop_answering("manual")
    await until(lambda: controller.session.current_question.id == "c2" and controller.is_answering)

    await controller.stop_answering("manual")
    await until(lambda: controller.status == SessionStatus.COMPLETED)
    await controller.drain(timeout=2.0)

    assert parts["synthesizer"].spoken == ["Tell me about yourself.", "Why this role?"]
    assert [s[1] for s in parts["delivery"].submissions] == ["c1", "c2"]
    await shutdown(controller)


@pytest.mark.asyncio
async def test_init_failure_without_cache_is_fatal(fakes, fast_timings):
    controller, parts = build(fakes, fast_timings, transport=fakes.Transport(fail_connect=True))

    with pytest.raises(InitializationError):
        await controller.initialize()

    assert controller.status == SessionStatus.ERROR
    await shutdown(controller)


@pytest.mark.asyncio
async def test_device_denied_is_fatal(fakes, fast_timings):
    device = fakes.Device(error=DeviceError("camera permission denied"))
    controller, parts = build(fakes, fast_timings, scripted_server(), device=device)

    with pytest.raises(DeviceError):
        await controller.initialize()

    assert controller.status == SessionStatus.ERROR
    assert parts["notifier"].history[0][0] == "error"


@pytest.mark.asyncio
async def test_transport_loss_moves_session_to_error(fakes, fast_timings, until):
    controller, parts = build(fakes, fast_timings, scripted_server())
    await controller.initialize()
    await controller.start_interview(greet=False)

    parts["transport"].drop()
    await until(lambda: controller.status == SessionStatus.ERROR)
    assert system_metrics.get_metrics_snapshot()["sessions_failed"] == 1
    await shutdown(controller)


@pytest.mark.asyncio
async def test_time_budget_completes_interview(fakes, fast_timings, until):
    controller, parts = build(fakes, fast_timings, scripted_server(), duration_budget_ms=150)
    await controller.initialize()
    assert controller.time_remaining() == pytest.approx(0.15)

    await controller.start_interview(greet=False)
    await until(lambda: controller.status == SessionStatus.COMPLETED)
    await controller.drain(timeout=2.0)

    assert controller.time_remaining() == 0.0
    assert [s[1] for s in parts["delivery"].submissions] == ["q1"]
    await shutdown(controller)


@pytest.mark.asyncio
async def test_synthesis_failure_still_opens_answer(fakes, fast_timings):
    controller, parts = build(fakes, fast_timings, scripted_server())
    parts["synthesizer"].starts = False
    await controller.initialize()

    await controller.start_interview(greet=False)

    assert controller.is_answering
    assert system_metrics.get_metrics_snapshot()["synthesis_failures"] == 1
    await shutdown(controller)
