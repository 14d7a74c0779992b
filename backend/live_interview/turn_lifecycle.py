import asyncio
from enum import Enum
import time
import uuid
import logging

logger = logging.getLogger("turn")


class AnswerState(Enum):
    OPEN = "open"
    STOPPING = "stopping"
    DISPATCHED = "dispatched"


class AnswerTurn:
    """One answer cycle. stop_answering may be requested from several places; only the first wins."""

    def __init__(self, question_id: str):
        self.turn_id = str(uuid.uuid4())
        self.question_id = question_id
        self.state = AnswerState.OPEN
        self.lock = asyncio.Lock()
        self.started_at = time.monotonic()
        self.dispatched_at = None
        self.stop_reason = None

    @property
    def is_open(self) -> bool:
        return self.state == AnswerState.OPEN

    async def try_stop(self, reason: str) -> bool:
        async with self.lock:
            if self.state != AnswerState.OPEN:
                logger.info(f"[TURN {self.question_id}] Stop skipped (already {self.state.value}) | reason={reason}")
                return False

            logger.info(f"[TURN {self.question_id}] Transition OPEN → STOPPING | reason={reason}")
            self.state = AnswerState.STOPPING
            self.stop_reason = reason
            return True

    async def mark_dispatched(self):
        async with self.lock:
            self.state = AnswerState.DISPATCHED
            self.dispatched_at = time.monotonic()
            logger.info(f"[TURN {self.question_id}] DISPATCHED | answer_duration={self.dispatched_at - self.started_at:.2f}s")
