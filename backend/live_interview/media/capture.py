import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from core.config import OrchestratorTimings
from live_interview.devices import MediaStream, Recorder
from live_interview.models import CapturedFrame, now_ms
from .frames import subsample_frames

logger = logging.getLogger("media_capture")

RECORDER_POLL_SEC = 0.1
QUESTION_TIMESLICE_MS = 100
FULL_SESSION_TIMESLICE_MS = 1000


@dataclass
class CaptureResult:
    question_id: Optional[str]
    video: Optional[bytes] = None
    frames: list[CapturedFrame] = field(default_factory=list)
    frames_seen: int = 0
    flushed: bool = True


async def wait_recorder_inactive(recorder: Recorder, timeout: float) -> bool:
    """Poll until the recorder has flushed. False when the bound expired first."""
    async def _poll():
        while recorder.state != "inactive":
            await asyncio.sleep(RECORDER_POLL_SEC)

    try:
        await asyncio.wait_for(_poll(), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        return False


class MediaCaptureManager:
    """
    Sole owner of recorder state transitions on the shared device stream.

    Two independent recordings: a question-scoped one (speech end -> answer
    stop) and a full-session one (interview start -> interview end). Frames are
    sampled while an answer is open.
    """

    def __init__(
        self,
        stream: MediaStream,
        timings: OrchestratorTimings = OrchestratorTimings(),
        clock_ms: Callable[[], int] = now_ms,
    ):
        self.stream = stream
        self.timings = timings
        self._clock_ms = clock_ms

        self._question_recorder: Optional[Recorder] = None
        self._full_session_recorder: Optional[Recorder] = None
        self._full_session_started = False
        self._full_session_stopped = False

        self.question_id: Optional[str] = None
        self._frames: list[CapturedFrame] = []
        self._frame_task: Optional[asyncio.Task] = None
        self._stopped = asyncio.Event()
        self._stopped.set()

    # -------------------------
    # STATE
    # -------------------------

    @property
    def is_recording(self) -> bool:
        return not self._stopped.is_set()

    @property
    def frames(self) -> list[CapturedFrame]:
        return list(self._frames)

    async def wait_stopped(self) -> None:
        await self._stopped.wait()

    # -------------------------
    # FULL SESSION
    # -------------------------

    def start_full_session(self) -> bool:
        if self._full_session_started:
            return False
        recorder = self.stream.create_recorder()
        recorder.start(FULL_SESSION_TIMESLICE_MS)
        self._full_session_recorder = recorder
        self._full_session_started = True
        logger.info("Full session recording started")
        return True

    async def stop_full_session(self) -> Optional[bytes]:
        recorder = self._full_session_recorder
        if recorder is None or self._full_session_stopped:
            return None
        self._full_session_stopped = True
        if recorder.state == "recording":
            recorder.request_stop()
        flushed = await wait_recorder_inactive(recorder, self.timings.full_session_flush_timeout)
        if not flushed:
            logger.warning("Full session recorder did not flush in %.1fs", self.timings.full_session_flush_timeout)
        blob = recorder.collect()
        logger.info("Full session recording stopped | bytes=%d", len(blob or b""))
        return blob or None

    # -------------------------
    # QUESTION SCOPE
    # -------------------------

    def on_question_speech_end(self, question_id: str) -> None:
        if self.is_recording:
            logger.warning(
                "Question capture already open for %s; ignoring start for %s",
                self.question_id,
                question_id,
            )
            return

        if self._question_recorder is None:
            self._question_recorder = self.stream.create_recorder()

        recorder = self._question_recorder
        if recorder.state == "inactive":
            recorder.start(QUESTION_TIMESLICE_MS)
        else:
            logger.warning("Question recorder in unexpected state: %s", recorder.state)

        self.question_id = question_id
        self._frames = []
        self._stopped.clear()
        self._frame_task = asyncio.get_running_loop().create_task(self._sample_frames())
        logger.info("Question capture started | question=%s", question_id)

    async def on_answer_stop(self) -> CaptureResult:
        if not self.is_recording:
            return CaptureResult(question_id=self.question_id)

        question_id = self.question_id
        try:
            await self._cancel_frame_task()

            video: Optional[bytes] = None
            flushed = True
            recorder = self._question_recorder
            if recorder is not None and recorder.state == "recording":
                recorder.request_stop()
                flushed = await wait_recorder_inactive(recorder, self.timings.recorder_flush_timeout)
                if not flushed:
                    logger.warning("Question recorder stop timeout | question=%s", question_id)
                video = recorder.collect() or None

            await self._capture_one()

            frames_seen = len(self._frames)
            selected = subsample_frames(self._frames, self.timings.max_frames)
            logger.info(
                "Question capture stopped | question=%s | frames=%d/%d | video_bytes=%d",
                question_id,
                len(selected),
                frames_seen,
                len(video or b""),
            )
            return CaptureResult(
                question_id=question_id,
                video=video,
                frames=selected,
                frames_seen=frames_seen,
                flushed=flushed,
            )
        finally:
            self._frames = []
            self._stopped.set()

    async def shutdown(self) -> None:
        await self._cancel_frame_task()
        recorder = self._question_recorder
        if recorder is not None and recorder.state == "recording":
            recorder.request_stop()
        self._stopped.set()

    # -------------------------
    # FRAMES
    # -------------------------

    async def _capture_one(self) -> None:
        try:
            image = await self.stream.grab_frame()
        except Exception as exc:
            logger.warning("Frame capture failed: %s", exc)
            return
        if image:
            self._frames.append(CapturedFrame(timestamp=self._clock_ms(), image=image))

    async def _sample_frames(self) -> None:
        await self._capture_one()
        while True:
            await asyncio.sleep(self.timings.frame_interval)
            await self._capture_one()

    async def _cancel_frame_task(self) -> None:
        task = self._frame_task
        self._frame_task = None
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
