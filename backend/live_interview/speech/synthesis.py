import asyncio
import logging
import time
from typing import Optional

from core.config import TTS_END_TIMEOUT_SEC, TTS_START_TIMEOUT_SEC
from live_interview.devices import SpeechSynthesizer
from live_interview.errors import SynthesisError

logger = logging.getLogger("speech")


class SpeechOutput:
    """
    Watchdog wrapper around the text-to-speech capability.

    speak() returns when playback ends. It raises SynthesisError when audio
    does not start within start_timeout or the engine errors, and returns
    normally (with a warning) when playback overruns end_timeout.
    """

    def __init__(
        self,
        synthesizer: SpeechSynthesizer,
        start_timeout: float = TTS_START_TIMEOUT_SEC,
        end_timeout: float = TTS_END_TIMEOUT_SEC,
    ):
        self.synthesizer = synthesizer
        self.start_timeout = float(start_timeout)
        self.end_timeout = float(end_timeout)
        self.current_text: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def speaking(self) -> bool:
        return self._task is not None and not self._task.done()

    async def speak(self, text: str) -> None:
        text = str(text or "").strip()
        if not text:
            return

        if self.speaking and self.current_text == text:
            logger.info("Already speaking this text, skipping duplicate")
            return

        if self.speaking:
            await self.abort()

        started = asyncio.Event()
        task = asyncio.get_running_loop().create_task(self.synthesizer.speak(text, started.set))
        self._task = task
        self.current_text = text
        began_at = time.monotonic()

        try:
            start_waiter = asyncio.ensure_future(started.wait())
            try:
                await asyncio.wait(
                    {task, start_waiter},
                    timeout=self.start_timeout,
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                start_waiter.cancel()

            if task.done():
                self._raise_if_failed(task)
                return

            if not started.is_set():
                logger.warning("Speech did not start within %.1fs", self.start_timeout)
                await self._cancel_task(task)
                raise SynthesisError("speech synthesis did not start")

            remaining = max(0.0, self.end_timeout - (time.monotonic() - began_at))
            done, _ = await asyncio.wait({task}, timeout=remaining)
            if not done:
                logger.warning("Speech timeout - resolving anyway after %.0fs", self.end_timeout)
                await self._cancel_task(task)
                return
            self._raise_if_failed(task)
        finally:
            if not task.done():
                self.synthesizer.cancel()
                task.cancel()
            if self._task is task:
                self._task = None
                self.current_text = None

    async def abort(self) -> None:
        task = self._task
        self._task = None
        self.current_text = None
        if task is not None and not task.done():
            await self._cancel_task(task)

    async def _cancel_task(self, task: asyncio.Task) -> None:
        try:
            self.synthesizer.cancel()
        except Exception as exc:
            logger.warning("Synthesizer cancel failed: %s", exc)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    @staticmethod
    def _raise_if_failed(task: asyncio.Task) -> None:
        if task.cancelled():
            raise SynthesisError("speech synthesis was cancelled")
        exc = task.exception()
        if exc is None:
            return
        if isinstance(exc, SynthesisError):
            raise exc
        raise SynthesisError(f"speech synthesis failed: {exc}") from exc
