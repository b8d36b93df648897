from __future__ import annotations

"""In-memory repository implementations.

Used when no database URL is configured and throughout the unit tests.
Sessions are deep-copied on the way in and out so callers never share state
with the store.
"""

import asyncio
from typing import Dict, List, Optional

from ..schemas.domain import Session, SessionEvent
from .interfaces import EventRepository, SessionRepository


class InMemorySessionRepository(SessionRepository):
    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()

    async def save(self, session: Session) -> None:
        async with self._lock:
            self._sessions[session.id] = session.model_copy(deep=True)

    async def get(self, session_id: str) -> Optional[Session]:
        async with self._lock:
            s = self._sessions.get(session_id)
            return s.model_copy(deep=True) if s is not None else None

    async def delete(self, session_id: str) -> None:
        async with self._lock:
            self._sessions.pop(session_id, None)

    async def list_active(self) -> list[Session]:
        async with self._lock:
            return [s.model_copy(deep=True) for s in self._sessions.values() if s.is_active]


class InMemoryEventRepository(EventRepository):
    def __init__(self) -> None:
        self._events: Dict[str, List[SessionEvent]] = {}

    async def append(self, event: SessionEvent) -> None:
        self._events.setdefault(event.session_id, []).append(event.model_copy(deep=True))

    async def list(self, session_id: str, limit: int = 100) -> list[SessionEvent]:
        return [e.model_copy(deep=True) for e in self._events.get(session_id, [])[:limit]]
