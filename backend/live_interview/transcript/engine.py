import time
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from live_interview.activity import SpeechActivity
from .state import TranscriptBuffer
from . import rules

logging.basicConfig(
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger("transcript_engine")


@dataclass
class IngestResult:
    accepted: bool
    reason: str
    chunk: str = ""
    completion_phrase: bool = False


class TranscriptAggregator:
    """
    Deterministic transcript engine.
    Folds interim/final recognition results into one stable transcript.
    Single source of truth = TranscriptBuffer.
    """

    def __init__(
        self,
        activity: Optional[SpeechActivity] = None,
        on_final_chunk: Optional[Callable[[str], None]] = None,
        on_completion_phrase: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.activity = activity
        self.on_final_chunk = on_final_chunk
        self.on_completion_phrase = on_completion_phrase
        self._clock = clock
        self.state = TranscriptBuffer()
        self.resets = 0

    def reset(self) -> None:
        self.state = TranscriptBuffer()
        self.resets += 1
        logger.info("TRANSCRIPT_BUFFER reset")

    @property
    def finalized_text(self) -> str:
        return self.state.finalized_text

    @property
    def display_text(self) -> str:
        return self.state.display_text

    def ingest(self, result_index: int, text: str, is_final: bool) -> IngestResult:
        chunk = str(text or "").strip()
        if self.state.frozen:
            return IngestResult(False, "frozen", chunk)
        if not chunk:
            return IngestResult(False, "empty")

        now = self._clock()
        if self.activity is not None:
            self.activity.mark(now)

        if not is_final:
            self.state.register_interim(chunk)
            return IngestResult(False, "interim", chunk)

        completion = rules.contains_completion_phrase(chunk)
        if completion and self.on_completion_phrase is not None:
            self._safe_call(self.on_completion_phrase, chunk)

        if result_index in self.state.consumed_indices:
            return IngestResult(False, "consumed_index", chunk, completion)

        words = rules.tokenize(chunk)
        if rules.is_engine_repeat(self.state.trailing_words, words):
            self.state.consume_index(result_index)
            self.state.duplicates_dropped += 1
            logger.info("FINAL_CHUNK dropped as engine repeat")
            return IngestResult(False, "duplicate", chunk, completion)

        self.state.commit_final(result_index, chunk, now)
        logger.info("FINAL_CHUNK committed")

        if self.on_final_chunk is not None:
            self._safe_call(self.on_final_chunk, chunk)

        return IngestResult(True, "final", chunk, completion)

    def freeze(self) -> str:
        """Stop accepting results and return the finalized transcript."""
        self.state.frozen = True
        self.state.interim_text = ""
        return self.state.finalized_text

    def snapshot(self) -> dict:
        return {
            "finalized_words": len(rules.tokenize(self.state.finalized_text)),
            "final_count": self.state.final_count,
            "duplicates_dropped": self.state.duplicates_dropped,
            "consumed_indices": len(self.state.consumed_indices),
            "frozen": self.state.frozen,
        }

    @staticmethod
    def _safe_call(fn: Callable[[str], None], chunk: str) -> None:
        try:
            fn(chunk)
        except Exception as exc:
            logger.error("transcript callback failed: %s", exc)
