"""
Agent-session collaborator.

The transport layer owns sessions; the OAuth flow only ensures one exists for
an incoming ``sid`` and attaches provider tokens once a callback resolves.
"""

from __future__ import annotations

import time
from typing import Callable, Dict, Optional, Protocol

from oauth_proxy.models.tokens import SessionRecord

SESSION_TTL_SECONDS = 24 * 60 * 60


class SessionStore(Protocol):
    async def ensure(self, session_id: str) -> None:
        ...

    async def get(self, session_id: str) -> Optional[SessionRecord]:
        ...

    async def put(self, session_id: str, record: SessionRecord) -> None:
        ...

    async def delete(self, session_id: str) -> None:
        ...


class MemorySessionStore:
    """Process-local session records with a 24 hour lifetime."""

    def __init__(
        self,
        *,
        ttl_seconds: int = SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttl_ms = ttl_seconds * 1000
        self._clock = clock
        self._sessions: Dict[str, SessionRecord] = {}

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def ensure(self, session_id: str) -> None:
        if await self.get(session_id) is None:
            self._sessions[session_id] = SessionRecord(created_at=self._now_ms())

    async def get(self, session_id: str) -> Optional[SessionRecord]:
        record = self._sessions.get(session_id)
        if record is None:
            return None
        if self._now_ms() - record.created_at > self._ttl_ms:
            self._sessions.pop(session_id, None)
            return None
        return record

    async def put(self, session_id: str, record: SessionRecord) -> None:
        self._sessions[session_id] = record

    async def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)


__all__ = ["MemorySessionStore", "SESSION_TTL_SECONDS", "SessionStore"]
