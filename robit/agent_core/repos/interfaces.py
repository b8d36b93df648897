from __future__ import annotations

"""Repository interface contracts.

The runtime depends on these Protocols instead of concrete persistence
implementations.

Contract guidelines
-------------------

- All methods are async.
- Repositories hand out copies: mutating a returned ``Session`` has no effect
  until it is passed back to ``save``.
- ``save`` replaces any stored session with the same id (a new plan for a
  room replaces the finished one).
- The event repository is append-only and returns events in append order.
"""

from typing import Optional, Protocol

from ..schemas.domain import Session, SessionEvent


class SessionRepository(Protocol):
    """Persist the current session of each workspace/room pair."""

    async def save(self, session: Session) -> None:
        """
        Insert or replace a session.

        Args:
            session: The session state to persist.
        """
        ...

    async def get(self, session_id: str) -> Optional[Session]:
        """
        Retrieve a session by id.

        Returns:
            The session if found, else None.
        """
        ...

    async def delete(self, session_id: str) -> None:
        """Remove a session; unknown ids are ignored."""
        ...

    async def list_active(self) -> list[Session]:
        """Return every session that is running or awaiting approval."""
        ...


class EventRepository(Protocol):
    """Append-only store for the session audit trail."""

    async def append(self, event: SessionEvent) -> None:
        """
        Append a new event to the store.

        Args:
            event: The event to persist.
        """
        ...

    async def list(self, session_id: str, limit: int = 100) -> list[SessionEvent]:
        """
        List events for one session, oldest first.

        Args:
            session_id: The session identifier.
            limit: Max number of events to return.
        """
        ...
