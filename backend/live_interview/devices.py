from __future__ import annotations

from typing import Callable, Protocol


RecognitionResultHandler = Callable[[int, str, bool], None]
RecognitionErrorHandler = Callable[[str], None]


class Recorder(Protocol):
    """A media recorder bound to the shared device stream."""

    @property
    def state(self) -> str:
        """'inactive' | 'recording' | 'stopping'"""
        ...

    def start(self, timeslice_ms: int) -> None:
        ...

    def request_stop(self) -> None:
        ...

    def collect(self) -> bytes | None:
        """Blob of everything recorded since the last start, once inactive."""
        ...


class MediaStream(Protocol):
    """Camera + microphone, acquired once per session and shared read-only."""

    def latest_audio_frame(self) -> bytes:
        """Most recent PCM16 analysis window; never consumes audio."""
        ...

    async def read_audio_chunk(self, duration_ms: int, sample_rate: int) -> bytes:
        ...

    async def grab_frame(self) -> str | None:
        """Base64 JPEG snapshot of the camera, or None if unavailable."""
        ...

    def create_recorder(self) -> Recorder:
        ...

    def close(self) -> None:
        ...


class MediaDevice(Protocol):
    async def open(self) -> MediaStream:
        """Raises DeviceError when camera/microphone access is denied."""
        ...


class SpeechSynthesizer(Protocol):
    async def speak(self, text: str, on_start: Callable[[], None]) -> None:
        """Returns when playback ends; must call on_start when audio begins."""
        ...

    def cancel(self) -> None:
        ...


class SpeechRecognizer(Protocol):
    def start(self, on_result: RecognitionResultHandler, on_error: RecognitionErrorHandler) -> None:
        ...

    def stop(self) -> None:
        ...


class AnswerDeliveryClient(Protocol):
    async def upload_video(
        self,
        interview_id: str,
        question_id: str,
        video: bytes,
        full_session: bool = False,
    ) -> str:
        ...

    async def submit_answer(self, interview_id: str, question_id: str, payload: dict) -> None:
        ...

    async def complete_interview(self, interview_id: str, full_session_video_url: str | None = None) -> None:
        ...
