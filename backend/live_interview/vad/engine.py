import asyncio
import logging
import math
import time
from array import array
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Union

from core.config import VAD_ENERGY_FLOOR, VAD_INITIAL_THRESHOLD, VAD_INTERVAL_SEC
from live_interview.activity import SpeechActivity

logger = logging.getLogger("vad")

# Threshold learning rate: threshold = threshold * (1 - RATE) + energy * RATE
ADAPTATION_RATE = 0.01

AudioFrame = Union[bytes, bytearray, memoryview, Sequence[float]]


def compute_rms(frame: AudioFrame) -> float:
    """
    RMS energy normalised to 0..1.
    bytes are read as little-endian PCM16, sequences as floats in -1..1.
    """
    if isinstance(frame, (bytes, bytearray, memoryview)):
        raw = bytes(frame)
        if len(raw) % 2:
            raw = raw[:-1]
        if not raw:
            return 0.0
        samples = array("h")
        samples.frombytes(raw)
        total = sum(s * s for s in samples)
        return math.sqrt(total / len(samples)) / 32768.0

    if not frame:
        return 0.0
    total = sum(float(s) * float(s) for s in frame)
    return math.sqrt(total / len(frame))


@dataclass
class SpeakingState:
    is_speaking: bool
    energy: float
    threshold: float
    changed: bool = False
    timestamp: float = 0.0
    silence_duration: float = 0.0
    speaking_duration: float = 0.0


class VadEngine:
    """
    Energy-based voice activity detector with an adaptive threshold.
    Transitions are edge-triggered: on_transition fires only when the
    speaking flag flips.
    """

    def __init__(
        self,
        threshold: float = VAD_INITIAL_THRESHOLD,
        energy_floor: float = VAD_ENERGY_FLOOR,
        clock: Callable[[], float] = time.monotonic,
        on_transition: Optional[Callable[[SpeakingState], None]] = None,
        activity: Optional[SpeechActivity] = None,
    ):
        self.initial_threshold = float(threshold)
        self.threshold = float(threshold)
        self.energy_floor = float(energy_floor)
        self._clock = clock
        self.on_transition = on_transition
        self.activity = activity

        self.is_speaking = False
        self.last_energy = 0.0
        self.last_speech_time: Optional[float] = None
        self._speaking_started_at: Optional[float] = None
        self._silence_started_at: Optional[float] = None
        self.samples_seen = 0

    def reset(self) -> None:
        self.threshold = self.initial_threshold
        self.is_speaking = False
        self.last_energy = 0.0
        self._speaking_started_at = None
        self._silence_started_at = None
        self.samples_seen = 0

    def sample(self, frame: AudioFrame) -> SpeakingState:
        return self.sample_energy(compute_rms(frame))

    def sample_energy(self, energy: float) -> SpeakingState:
        now = self._clock()
        energy = max(0.0, float(energy))
        self.samples_seen += 1
        self.last_energy = energy

        speaking = energy > self.threshold
        state = SpeakingState(
            is_speaking=speaking,
            energy=energy,
            threshold=self.threshold,
            timestamp=now,
        )

        if speaking != self.is_speaking:
            self.is_speaking = speaking
            state.changed = True

            if speaking:
                if self._silence_started_at is not None:
                    state.silence_duration = now - self._silence_started_at
                self._speaking_started_at = now
                self._silence_started_at = None
                self.last_speech_time = now
                if self.activity is not None:
                    self.activity.mark(now)
            else:
                if self._speaking_started_at is not None:
                    state.speaking_duration = now - self._speaking_started_at
                self._speaking_started_at = None
                self._silence_started_at = now
        elif not speaking and self._silence_started_at is None:
            self._silence_started_at = now

        # Track ambient level; below the floor the input is treated as dead air.
        if energy > self.energy_floor:
            self.threshold = self.threshold * (1.0 - ADAPTATION_RATE) + energy * ADAPTATION_RATE

        if state.changed and self.on_transition is not None:
            try:
                self.on_transition(state)
            except Exception as exc:
                logger.error("VAD transition handler failed: %s", exc)

        return state

    async def run(
        self,
        read_frame: Callable[[], AudioFrame],
        stop_event: asyncio.Event,
        interval: float = VAD_INTERVAL_SEC,
    ) -> None:
        try:
            while not stop_event.is_set():
                try:
                    self.sample(read_frame())
                except Exception as exc:
                    logger.warning("VAD sample skipped: %s", exc)
                await asyncio.sleep(interval)
        finally:
            logger.info("VAD loop terminated")
