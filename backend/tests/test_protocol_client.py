import asyncio

import pytest

from core.state import InterventionLevel
from live_interview.errors import (
    EvaluationFailedError,
    EvaluationTimeoutError,
    InitializationError,
)
from live_interview.models import AnswerPackage, InterventionRecord
from live_interview.protocol import SessionProtocolClient, events
from live_interview.protocol.transport import decode_envelope, encode_envelope


def _ready_responder(event, data):
    if event == events.START_SESSION:
        return [(
            events.SESSION_READY,
            {"sessionId": "s-1", "firstQuestion": {"id": "q1", "text": "Describe a system you designed."}},
        )]
    return []


def _package(question_id="q1"):
    return AnswerPackage(
        question_id=question_id,
        question_text="Describe a system you designed.",
        transcript="a cache in front of postgres",
        session_id="s-1",
        candidate_interview_id="ci-1",
        video=b"webm",
    )


def test_envelope_round_trip_and_malformed_input():
    assert decode_envelope(encode_envelope("audio-chunk", {"a": 1})) == ("audio-chunk", {"a": 1})
    assert decode_envelope("not json") is None
    assert decode_envelope('{"data": {}}') is None
    assert decode_envelope('{"event": "x", "data": [1]}') == ("x", {})


@pytest.mark.asyncio
async def test_open_session_returns_first_question(fakes, fast_timings):
    transport = fakes.Transport(responder=_ready_responder)
    client = SessionProtocolClient(transport, fast_timings)
    await client.connect()

    ready = await client.open_session("ci-1", "cand-1")

    assert ready.session_id == "s-1"
    assert ready.first_question.to_question().text == "Describe a system you designed."
    assert client.session_id == "s-1"
    assert transport.events(events.JOIN_INTERVIEW) == [{"interviewId": "ci-1", "userRole": "candidate"}]
    assert transport.events(events.START_SESSION) == [{"interviewId": "ci-1", "candidateId": "cand-1"}]
    await client.close()


@pytest.mark.asyncio
async def test_open_session_times_out(fakes, fast_timings):
    client = SessionProtocolClient(fakes.Transport(), fast_timings)
    await client.connect()

    with pytest.raises(InitializationError):
        await client.open_session("ci-1", "cand-1", timeout=0.05)
    await client.close()


@pytest.mark.asyncio
async def test_session_error_fails_initialization(fakes, fast_timings):
    def _responder(event, data):
        if event == events.START_SESSION:
            return [(events.SESSION_ERROR, {"message": "Interview not found"})]
        return []

    client = SessionProtocolClient(fakes.Transport(responder=_responder), fast_timings)
    await client.connect()

    with pytest.raises(InitializationError, match="Interview not found"):
        await client.open_session("ci-1", "cand-1")
    await client.close()


@pytest.mark.asyncio
async def test_disconnect_during_initialization(fakes, fast_timings):
    transport = fakes.Transport()
    client = SessionProtocolClient(transport, fast_timings)
    await client.connect()

    opening = asyncio.create_task(client.open_session("ci-1", "cand-1", timeout=1.0))
    await asyncio.sleep(0.01)
    transport.drop()

    with pytest.raises(InitializationError):
        await opening


@pytest.mark.asyncio
async def test_connect_failure_is_initialization_error(fakes, fast_timings):
    client = SessionProtocolClient(fakes.Transport(fail_connect=True), fast_timings)
    with pytest.raises(InitializationError):
        await client.connect()


@pytest.mark.asyncio
async def test_request_evaluation_resolves_on_matching_response(fakes, fast_timings):
    def _responder(event, data):
        if event == events.ANSWER_SUBMIT:
            return [(events.ANSWER_RESULT, {"next_action": "next_question", "question_id": data["questionId"]})]
        return []

    transport = fakes.Transport(responder=_responder)
    client = SessionProtocolClient(transport, fast_timings)
    await client.connect()

    response = await client.request_evaluation(_package(), "https://files.example/q1.webm", timeout=1.0)

    assert response.next_action == "next_question"
    submitted = transport.events(events.ANSWER_SUBMIT)[0]
    assert submitted["questionId"] == "q1"
    assert submitted["videoUrl"] == "https://files.example/q1.webm"
    assert submitted["videoData"] == "d2VibQ=="
    assert submitted["transcript"] == "a cache in front of postgres"
    await client.close()


@pytest.mark.asyncio
async def test_request_evaluation_timeout_and_error(fakes, fast_timings):
    transport = fakes.Transport()
    client = SessionProtocolClient(transport, fast_timings)
    await client.connect()

    with pytest.raises(EvaluationTimeoutError):
        await client.request_evaluation(_package("q1"), "", timeout=0.05)

    pending = asyncio.create_task(client.request_evaluation(_package("q2"), "", timeout=1.0))
    await asyncio.sleep(0.01)
    transport.push(events.EVALUATION_ERROR, {"message": "model overloaded"})

    with pytest.raises(EvaluationFailedError, match="model overloaded"):
        await pending
    await client.close()


@pytest.mark.asyncio
async def test_handlers_are_isolated_and_malformed_messages_ignored(fakes, fast_timings):
    transport = fakes.Transport()
    client = SessionProtocolClient(transport, fast_timings)
    seen = []

    async def _broken(data):
        raise RuntimeError("boom")

    async def _recorder(data):
        seen.append(data)

    client.on(events.BOT_INTERVENTION, _broken)
    client.on(events.BOT_INTERVENTION, _recorder)
    await client.connect()

    transport.push(events.ANSWER_RESULT, {"unexpected": True})
    transport.push(events.BOT_INTERVENTION, {"message": "Take your time."})
    await asyncio.sleep(0.02)

    assert seen == [{"message": "Take your time."}]
    await client.close()


@pytest.mark.asyncio
async def test_outbound_event_shapes(fakes, fast_timings):
    transport = fakes.Transport(responder=_ready_responder)
    client = SessionProtocolClient(transport, fast_timings)
    await client.connect()
    await client.open_session("ci-1", "cand-1")

    await client.send_audio_chunk(b"\x01\x00", 16000, timestamp=5)
    await client.send_silence(InterventionRecord(InterventionLevel.THINKING_CHECK, 0.0, "q1", 7.5))

    assert transport.events(events.AUDIO_CHUNK) == [
        {"sessionId": "s-1", "audioData": "AQA=", "sampleRate": 16000, "timestamp": 5}
    ]
    assert transport.events(events.SILENCE_DETECTED) == [
        {"sessionId": "s-1", "questionId": "q1", "silenceDuration": 7500, "interventionLevel": "thinking_check"}
    ]
    await client.close()
