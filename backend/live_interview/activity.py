import time
from typing import Callable, Optional


class SpeechActivity:
    """
    Single source of "last time the candidate was heard".
    Written by VAD edges and recognition results, read by the silence monitor.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.last_speech_time: Optional[float] = None

    def now(self) -> float:
        return self._clock()

    def mark(self, ts: Optional[float] = None) -> float:
        self.last_speech_time = self._clock() if ts is None else float(ts)
        return self.last_speech_time

    def clear(self) -> None:
        self.last_speech_time = None

    def silence_duration(self, now: Optional[float] = None) -> Optional[float]:
        if self.last_speech_time is None:
            return None
        current = self._clock() if now is None else now
        return max(0.0, current - self.last_speech_time)
