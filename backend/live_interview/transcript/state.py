from typing import List, Optional, Set

from . import rules


class TranscriptBuffer:
    """
    Holds all transcript state for ONE answer.
    Reset at answer start, frozen at answer stop.
    """

    def __init__(self):
        self.finalized_chunks: List[str] = []
        self.trailing_words: List[str] = []
        self.consumed_indices: Set[int] = set()

        # Display-only, never committed
        self.interim_text: str = ""

        self.frozen: bool = False
        self.final_count: int = 0
        self.duplicates_dropped: int = 0
        self.last_final_ts: Optional[float] = None

    @property
    def finalized_text(self) -> str:
        return " ".join(self.finalized_chunks).strip()

    @property
    def display_text(self) -> str:
        if not self.interim_text:
            return self.finalized_text
        return f"{self.finalized_text} {self.interim_text}".strip()

    def register_interim(self, text: str) -> None:
        self.interim_text = text.strip()

    def consume_index(self, index: int) -> None:
        self.consumed_indices.add(index)

    def commit_final(self, index: int, text: str, ts: float) -> None:
        words = rules.tokenize(text)
        self.finalized_chunks.append(text.strip())
        self.trailing_words = (self.trailing_words + words)[-rules.TRAILING_WINDOW_WORDS:]
        self.consumed_indices.add(index)
        self.interim_text = ""
        self.final_count += 1
        self.last_final_ts = ts
