from __future__ import annotations

import asyncio
import json
import logging
import urllib.parse
from typing import AsyncIterator, Protocol

import websockets
from websockets.exceptions import ConnectionClosed

logger = logging.getLogger("protocol_transport")

MAX_MESSAGE_BYTES = 8 * 1024 * 1024


class SessionTransport(Protocol):
    @property
    def connected(self) -> bool:
        ...

    async def connect(self) -> None:
        ...

    async def send(self, event: str, data: dict) -> None:
        ...

    def messages(self) -> AsyncIterator[tuple[str, dict]]:
        ...

    async def close(self) -> None:
        ...


def encode_envelope(event: str, data: dict) -> str:
    return json.dumps({"event": str(event), "data": dict(data or {})}, ensure_ascii=False, default=str)


def decode_envelope(raw: str | bytes) -> tuple[str, dict] | None:
    try:
        message = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(message, dict):
        return None
    event = str(message.get("event") or message.get("type") or "").strip()
    if not event:
        return None
    data = message.get("data")
    return event, data if isinstance(data, dict) else {}


class WebSocketTransport:
    """JSON {event, data} envelopes over a single websocket connection."""

    def __init__(self, url: str, token: str = "", open_timeout: float = 10.0):
        if token:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}{urllib.parse.urlencode({'token': token})}"
        self.url = url
        self.open_timeout = float(open_timeout)
        self._ws = None
        self._send_lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(self) -> None:
        self._ws = await websockets.connect(
            self.url,
            open_timeout=self.open_timeout,
            max_size=MAX_MESSAGE_BYTES,
        )
        logger.info("Session transport connected")

    async def send(self, event: str, data: dict) -> None:
        if self._ws is None:
            raise ConnectionError("session transport is not connected")
        async with self._send_lock:
            await self._ws.send(encode_envelope(event, data))

    async def messages(self) -> AsyncIterator[tuple[str, dict]]:
        if self._ws is None:
            return
        try:
            async for raw in self._ws:
                decoded = decode_envelope(raw)
                if decoded is None:
                    logger.warning("Dropping malformed session message")
                    continue
                yield decoded
        except ConnectionClosed as exc:
            logger.warning("Session transport closed: %s", exc)
        finally:
            self._ws = None

    async def close(self) -> None:
        ws = self._ws
        self._ws = None
        if ws is not None:
            try:
                await ws.close()
            except Exception as exc:
                logger.debug("Transport close error ignored: %s", exc)
