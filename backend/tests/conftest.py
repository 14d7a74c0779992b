import asyncio
import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.config import OrchestratorTimings  # noqa: E402
from live_interview import system_metrics  # noqa: E402


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("QA_MODE", "true")
    monkeypatch.setenv("API_TOKEN", "test-token")
    monkeypatch.setenv("ORCHESTRATOR_WS_URL", "ws://127.0.0.1:1/session")
    system_metrics.reset_metrics()


@pytest.fixture
def fast_timings() -> OrchestratorTimings:
    return OrchestratorTimings(
        session_init_timeout=0.3,
        tts_start_timeout=0.2,
        tts_end_timeout=1.0,
        tts_failure_fallback=0.01,
        vad_interval=0.01,
        silence_tick=0.01,
        frame_interval=0.02,
        max_frames=10,
        recorder_flush_timeout=0.2,
        full_session_flush_timeout=0.2,
        upload_max_attempts=3,
        upload_backoff_base=0.0,
        upload_backoff_cap=0.0,
        evaluation_timeout=0.3,
        completion_grace=0.01,
        transcript_settle=0.0,
        question_defer_poll=0.01,
        question_lead_in=0.0,
        audio_chunk_ms=50,
        audio_sample_rate=16000,
    )


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += float(seconds)


class FakeRecorder:
    def __init__(self, payload: bytes = b"webm-bytes", flushes: bool = True):
        self.state = "inactive"
        self.payload = payload
        self.flushes = flushes
        self.starts: list[int] = []
        self.stops = 0

    def start(self, timeslice_ms: int) -> None:
        self.starts.append(timeslice_ms)
        self.state = "recording"

    def request_stop(self) -> None:
        self.stops += 1
        self.state = "inactive" if self.flushes else "stopping"

    def collect(self):
        return self.payload


class FakeStream:
    def __init__(self, frame: bytes = b"\x00\x00" * 160, recorder_payload: bytes = b"webm-bytes"):
        self.frame = frame
        self.recorder_payload = recorder_payload
        self.recorders: list[FakeRecorder] = []
        self.frames_grabbed = 0
        self.closed = False

    def latest_audio_frame(self) -> bytes:
        return self.frame

    async def read_audio_chunk(self, duration_ms: int, sample_rate: int) -> bytes:
        await asyncio.sleep(duration_ms / 1000.0)
        return b"\x01\x00" * 8

    async def grab_frame(self):
        self.frames_grabbed += 1
        return f"frame-{self.frames_grabbed}"

    def create_recorder(self) -> FakeRecorder:
        recorder = FakeRecorder(self.recorder_payload)
        self.recorders.append(recorder)
        return recorder

    def close(self) -> None:
        self.closed = True


class FakeDevice:
    def __init__(self, stream=None, error: Exception | None = None):
        self.stream = stream or FakeStream()
        self.error = error

    async def open(self):
        if self.error is not None:
            raise self.error
        return self.stream


class FakeSynthesizer:
    def __init__(self, duration: float = 0.0, starts: bool = True, error: Exception | None = None):
        self.duration = duration
        self.starts = starts
        self.error = error
        self.spoken: list[str] = []
        self.cancelled = 0

    async def speak(self, text, on_start):
        self.spoken.append(text)
        if self.error is not None:
            raise self.error
        if not self.starts:
            await asyncio.sleep(3600)
        on_start()
        await asyncio.sleep(self.duration)

    def cancel(self) -> None:
        self.cancelled += 1


class FakeRecognizer:
    def __init__(self):
        self.on_result = None
        self.on_error = None
        self.starts = 0
        self.stops = 0

    def start(self, on_result, on_error) -> None:
        self.starts += 1
        self.on_result = on_result
        self.on_error = on_error

    def stop(self) -> None:
        self.stops += 1

    def emit(self, index: int, text: str, is_final: bool = True) -> None:
        self.on_result(index, text, is_final)


class FakeDelivery:
    def __init__(self, upload_failures: int = 0, submit_error: Exception | None = None):
        self.upload_failures = upload_failures
        self.submit_error = submit_error
        self.upload_calls: list[tuple] = []
        self.submissions: list[tuple] = []
        self.completions: list[tuple] = []

    async def upload_video(self, interview_id, question_id, video, full_session=False):
        from live_interview.errors import UploadError

        self.upload_calls.append((interview_id, question_id, full_session))
        if self.upload_failures > 0:
            self.upload_failures -= 1
            raise UploadError("storage unavailable")
        return f"https://files.example/{interview_id}/{question_id}.webm"

    async def submit_answer(self, interview_id, question_id, payload):
        if self.submit_error is not None:
            raise self.submit_error
        self.submissions.append((interview_id, question_id, payload))

    async def complete_interview(self, interview_id, full_session_video_url=None):
        self.completions.append((interview_id, full_session_video_url))


class FakeTransport:
    """In-memory transport. responder(event, data) may return [(event, data), ...] replies."""

    def __init__(self, responder=None, fail_connect: bool = False):
        self.responder = responder
        self.fail_connect = fail_connect
        self.sent: list[tuple[str, dict]] = []
        self._connected = False
        self._queue: asyncio.Queue | None = None

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        if self.fail_connect:
            raise ConnectionRefusedError("refused")
        self._queue = asyncio.Queue()
        self._connected = True

    async def send(self, event: str, data: dict) -> None:
        if not self._connected:
            raise ConnectionError("not connected")
        self.sent.append((event, data))
        if self.responder is not None:
            for reply in self.responder(event, data) or []:
                self.push(*reply)

    def push(self, event: str, data: dict) -> None:
        self._queue.put_nowait((event, data))

    def drop(self) -> None:
        self._queue.put_nowait(None)

    async def messages(self):
        while self._connected:
            item = await self._queue.get()
            if item is None:
                self._connected = False
                return
            yield item

    async def close(self) -> None:
        if self._connected and self._queue is not None:
            self._queue.put_nowait(None)
        self._connected = False

    def events(self, name: str) -> list[dict]:
        return [data for event, data in self.sent if event == name]


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(interval)


@pytest.fixture
def fakes():
    class _Fakes:
        Clock = FakeClock
        Recorder = FakeRecorder
        Stream = FakeStream
        Device = FakeDevice
        Synthesizer = FakeSynthesizer
        Recognizer = FakeRecognizer
        Delivery = FakeDelivery
        Transport = FakeTransport

    return _Fakes


@pytest.fixture
def until():
    return wait_until
