from __future__ import annotations

import time
from dataclasses import dataclass, replace
from threading import Lock
from typing import Any, Callable, Optional

DEFAULT_INACTIVE_TTL_SEC = 900.0
MIN_INACTIVE_TTL_SEC = 30.0


@dataclass
class RegistryEntry:
    session_id: str
    candidate_interview_id: str
    controller: Any
    registered_at: float
    last_seen_at: float
    active: bool = True


class SessionRegistry:
    """Live interview controllers by session id, for host-process lookup and cleanup."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = Lock()
        self._entries: dict[str, RegistryEntry] = {}

    def register(self, session_id: str, candidate_interview_id: str, controller) -> RegistryEntry:
        now = self._clock()
        entry = RegistryEntry(
            session_id=session_id,
            candidate_interview_id=candidate_interview_id,
            controller=controller,
            registered_at=now,
            last_seen_at=now,
        )
        with self._lock:
            self._entries[session_id] = entry
        return replace(entry)

    def touch(self, session_id: str) -> None:
        with self._lock:
            entry = self._entries.get(session_id)
            if entry is not None:
                entry.last_seen_at = self._clock()

    def mark_inactive(self, session_id: str) -> None:
        with self._lock:
            entry = self._entries.get(session_id)
            if entry is not None and entry.active:
                entry.active = False
                entry.last_seen_at = self._clock()

    def get(self, session_id: str) -> Optional[RegistryEntry]:
        with self._lock:
            entry = self._entries.get(session_id)
            return replace(entry) if entry else None

    def find_by_interview(self, candidate_interview_id: str) -> Optional[RegistryEntry]:
        """Most recently registered active entry for a candidate interview."""
        with self._lock:
            matches = [
                entry for entry in self._entries.values()
                if entry.active and entry.candidate_interview_id == candidate_interview_id
            ]
        if not matches:
            return None
        return replace(max(matches, key=lambda entry: entry.registered_at))

    def active_count(self) -> int:
        with self._lock:
            return sum(1 for entry in self._entries.values() if entry.active)

    def cleanup_inactive(self, ttl_sec: Optional[float] = DEFAULT_INACTIVE_TTL_SEC) -> int:
        ttl = DEFAULT_INACTIVE_TTL_SEC if ttl_sec is None else float(ttl_sec)
        cutoff = self._clock() - max(MIN_INACTIVE_TTL_SEC, ttl)
        with self._lock:
            stale = [
                session_id for session_id, entry in self._entries.items()
                if not entry.active and entry.last_seen_at <= cutoff
            ]
            for session_id in stale:
                del self._entries[session_id]
        return len(stale)


session_registry = SessionRegistry()
