from __future__ import annotations

"""SQLAlchemy async repository implementations.

Usage
-----

Typical wiring (tests or application setup):

- Create an async engine with ``create_engine``.
- Create tables with ``create_all``.
- Create a session factory with ``create_sessionmaker``.
- Build repository instances with ``build_sql_repos``.

Transaction model
-----------------

Each repository method opens an ``AsyncSession``, performs its operation, and
commits, so every saved session state and every audit event is durable when
the method returns.
"""

import re
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..schemas.domain import Session, SessionEvent, SessionEventType, SessionStatus
from .interfaces import EventRepository, SessionRepository
from .models import Base, EventRow, SessionRow

_ACTIVE_STATUSES = (SessionStatus.running.value, SessionStatus.awaiting_approval.value)


def create_engine(db_url: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    The helper normalizes plain driver URLs to their async drivers:
    ``sqlite://`` becomes ``sqlite+aiosqlite://`` and Postgres variants become
    ``postgresql+asyncpg://``.
    """
    url = re.sub(r"^sqlite(?:\+[a-z0-9_]+)?://", "sqlite+aiosqlite://", db_url, count=1)
    url = re.sub(r"^postgres(?:ql)?(?:\+[a-z0-9_]+)?://", "postgresql+asyncpg://", url, count=1)
    if url.startswith("sqlite"):
        return create_async_engine(url)
    return create_async_engine(url, pool_pre_ping=True)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an ``async_sessionmaker`` with safe defaults for this project."""
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables for the current ORM metadata."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@dataclass(frozen=True)
class SqlSessionRepository(SessionRepository):
    """SQL implementation of ``SessionRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def save(self, session: Session) -> None:
        """
        Insert or replace a session row.

        Args:
            session: The session domain object to store.
        """
        document = session.model_dump(mode="json")
        async with self.session_factory() as s:
            row = await s.get(SessionRow, session.id)
            if row is None:
                s.add(
                    SessionRow(
                        id=session.id,
                        workspace_id=session.workspace_id,
                        room_id=session.room_id,
                        status=session.status.value,
                        document=document,
                        created_at=session.created_at,
                        updated_at=session.updated_at,
                    )
                )
            else:
                row.status = session.status.value
                row.document = document
                row.created_at = session.created_at
                row.updated_at = session.updated_at
            await s.commit()

    async def get(self, session_id: str) -> Optional[Session]:
        async with self.session_factory() as s:
            row = await s.get(SessionRow, session_id)
            if row is None:
                return None
            return Session.model_validate(row.document)

    async def delete(self, session_id: str) -> None:
        async with self.session_factory() as s:
            await s.execute(delete(SessionRow).where(SessionRow.id == session_id))
            await s.commit()

    async def list_active(self) -> list[Session]:
        async with self.session_factory() as s:
            stmt = select(SessionRow).where(SessionRow.status.in_(_ACTIVE_STATUSES)).order_by(SessionRow.id.asc())
            result = await s.execute(stmt)
            return [Session.model_validate(row.document) for row in result.scalars().all()]


@dataclass(frozen=True)
class SqlEventRepository(EventRepository):
    """SQL implementation of ``EventRepository`` (append-only)."""

    session_factory: async_sessionmaker[AsyncSession]

    async def append(self, event: SessionEvent) -> None:
        """
        Append a new event to the store.

        Args:
            event: The event domain object.
        """
        async with self.session_factory() as s:
            s.add(
                EventRow(
                    id=event.id,
                    session_id=event.session_id,
                    type=event.type.value,
                    created_at=event.created_at,
                    payload=event.model_dump(mode="json")["payload"],
                )
            )
            await s.commit()

    async def list(self, session_id: str, limit: int = 100) -> list[SessionEvent]:
        """
        List events for a specific session in append order.

        Args:
            session_id: The session identifier.
            limit: Max number of events to return.
        """
        async with self.session_factory() as s:
            stmt = select(EventRow).where(EventRow.session_id == session_id).order_by(EventRow.seq.asc()).limit(limit)
            result = await s.execute(stmt)
            return [
                SessionEvent(
                    id=row.id,
                    session_id=row.session_id,
                    type=SessionEventType(row.type),
                    created_at=row.created_at,
                    payload=row.payload,
                )
                for row in result.scalars().all()
            ]


@dataclass(frozen=True)
class SqlRepoBundle:
    sessions: SqlSessionRepository
    events: SqlEventRepository


def build_sql_repos(*, session_factory: async_sessionmaker[AsyncSession]) -> SqlRepoBundle:
    """Build a ``SqlRepoBundle`` from a session factory."""
    return SqlRepoBundle(
        sessions=SqlSessionRepository(session_factory=session_factory),
        events=SqlEventRepository(session_factory=session_factory),
    )
