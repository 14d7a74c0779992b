import asyncio
import logging
from typing import Awaitable, Callable, Optional

from core.config import SILENCE_TICK_SEC
from core.state import InterventionLevel
from live_interview.activity import SpeechActivity
from live_interview.models import InterventionRecord
from . import rules

logger = logging.getLogger("silence")

EscalationHandler = Callable[[InterventionRecord], Awaitable[None]]


class SilenceEscalationMonitor:
    """
    Watches post-question silence for one answer cycle and raises at most one
    InterventionRecord per level, in increasing order.

    arm() starts a cycle, disarm() ends it. pause()/resume() bracket candidate
    speech inside a cycle without forgetting what was already emitted.
    """

    def __init__(
        self,
        activity: SpeechActivity,
        on_escalation: EscalationHandler,
        is_candidate_speaking: Callable[[], bool] = lambda: False,
        tick: float = SILENCE_TICK_SEC,
    ):
        self.activity = activity
        self.on_escalation = on_escalation
        self.is_candidate_speaking = is_candidate_speaking
        self.tick = float(tick)

        self.question_id: Optional[str] = None
        self.records: list[InterventionRecord] = []
        self._armed = False
        self._paused = False
        self._exhausted = False
        self._generation = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def armed(self) -> bool:
        return self._armed

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def last_level(self) -> Optional[InterventionLevel]:
        return self.records[-1].level if self.records else None

    # -------------------------
    # CYCLE CONTROL
    # -------------------------

    def arm(self, question_id: str) -> None:
        self.disarm("rearm")
        self._generation += 1
        self.question_id = question_id
        self.records = []
        self._armed = True
        self._paused = False
        self._exhausted = False
        self._start_loop()
        logger.info("Silence monitor armed | question=%s", question_id)

    def disarm(self, reason: str = "stop") -> None:
        if not self._armed and self._task is None:
            return
        self._armed = False
        self._paused = False
        self._generation += 1
        self._cancel_loop()
        logger.info("Silence monitor disarmed | question=%s | reason=%s", self.question_id, reason)

    def pause(self) -> None:
        if not self._armed or self._paused:
            return
        self._paused = True
        self._generation += 1
        self._cancel_loop()

    def resume(self) -> None:
        if not self._armed or not self._paused or self._exhausted:
            return
        self._paused = False
        self._generation += 1
        self._start_loop()

    # -------------------------
    # EVALUATION
    # -------------------------

    def evaluate(self, now: Optional[float] = None) -> list[InterventionRecord]:
        """
        One monitoring step. Returns the records to emit, lowest level first.
        A level skipped because the tick was late is emitted before the higher one.
        """
        if not self._armed or self._paused or self._exhausted or self.question_id is None:
            return []
        if self.is_candidate_speaking():
            return []

        current = self.activity.now() if now is None else now
        silence = self.activity.silence_duration(current)
        if silence is None:
            return []

        target = rules.level_for(silence)
        emitted: list[InterventionRecord] = []
        if target is not None and rules.rank(target) > rules.rank(self.last_level):
            start = rules.rank(self.last_level) + 1
            for level in rules.LEVEL_ORDER[start:rules.rank(target) + 1]:
                record = InterventionRecord(
                    level=level,
                    emitted_at=current,
                    question_id=self.question_id,
                    silence_duration=silence,
                )
                self.records.append(record)
                emitted.append(record)

        if self.last_level == InterventionLevel.FORCE_MOVE:
            self._exhausted = True
        return emitted

    # -------------------------
    # LOOP
    # -------------------------

    def _start_loop(self) -> None:
        generation = self._generation
        try:
            self._task = asyncio.get_running_loop().create_task(self._run(generation))
        except RuntimeError:
            # No loop: evaluate() is driven manually.
            self._task = None

    def _cancel_loop(self) -> None:
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        task.cancel()

    async def _run(self, generation: int) -> None:
        try:
            while generation == self._generation:
                await asyncio.sleep(self.tick)
                if generation != self._generation:
                    break
                for record in self.evaluate():
                    logger.info(
                        "Silence escalation | question=%s | level=%s | silence=%.1fs",
                        record.question_id,
                        record.level.value,
                        record.silence_duration,
                    )
                    try:
                        await self.on_escalation(record)
                    except Exception as exc:
                        logger.error("Escalation handler failed: %s", exc)
                if self._exhausted:
                    if generation == self._generation:
                        self._armed = False
                        self._task = None
                    break
        finally:
            logger.debug("Silence loop finished | question=%s", self.question_id)
