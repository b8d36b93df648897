"""Repository interfaces and implementations for session persistence.

Responsibilities
----------------

- Provide the async repository Protocols the runtime depends on.
- Persist the current ``Session`` of every workspace/room pair; a suspended
  session is its own resume checkpoint.
- Keep an append-only audit trail of ``SessionEvent`` records.

Implementations: in-memory (``repos.memory``) and async SQLAlchemy
(``repos.sql``).
"""

from .interfaces import EventRepository, SessionRepository
from .memory import InMemoryEventRepository, InMemorySessionRepository

__all__ = [
    "EventRepository",
    "InMemoryEventRepository",
    "InMemorySessionRepository",
    "SessionRepository",
]
