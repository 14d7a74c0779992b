"""
Duplicate-suppression and completion heuristics.
Changing these changes system behavior.
"""
import re

# Trailing window of finalized words kept for duplicate detection
TRAILING_WINDOW_WORDS = 10

# How many leading words of a new final chunk are compared to the window tail
MAX_OVERLAP_WORDS = 5

COMPLETION_PHRASES = (
    "i'm done", "i am done", "that's all", "thats all", "that is all",
    "i'm finished", "i am finished", "i finished", "finished",
    "that's it", "thats it", "that is it", "done", "complete",
    "i'm complete", "i am complete", "i complete", "all done",
    "nothing more", "no more", "end of answer", "end of my answer",
)

_COMPLETION_PATTERN = re.compile(
    r"(?<![\w'])(?:" + "|".join(re.escape(p) for p in sorted(COMPLETION_PHRASES, key=len, reverse=True)) + r")(?![\w'])"
)


def tokenize(text: str) -> list[str]:
    return [w for w in str(text or "").lower().split() if w]


def is_engine_repeat(window: list[str], words: list[str]) -> bool:
    """
    True when the first words of a new chunk equal the tail of the window.
    Compares min(len(words), len(window), MAX_OVERLAP_WORDS) words.
    """
    overlap = min(len(words), len(window), MAX_OVERLAP_WORDS)
    if overlap <= 0:
        return False
    return window[-overlap:] == words[:overlap]


def contains_completion_phrase(text: str) -> bool:
    return bool(_COMPLETION_PATTERN.search(str(text or "").lower()))
