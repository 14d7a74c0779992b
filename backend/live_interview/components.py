from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable


logger = logging.getLogger("components")

NotifyFn = Callable[[str, str], Awaitable[None]]


async def _log_only(level: str, message: str) -> None:
    logger.info("notify[%s] %s", level, message)


@dataclass
class UserNotifier:
    """Candidate-facing toasts. Never raises into the caller."""
    send_fn: NotifyFn = _log_only
    history: list[tuple[str, str]] = field(default_factory=list)

    async def notify(self, level: str, message: str) -> None:
        self.history.append((level, message))
        try:
            await self.send_fn(level, message)
        except Exception as exc:
            logger.warning("notifier failed: %s", exc)

    async def error(self, message: str) -> None:
        await self.notify("error", message)

    async def info(self, message: str) -> None:
        await self.notify("info", message)

