from __future__ import annotations

"""SQLAlchemy ORM models for session persistence.

These ORM models define the SQL schema used by the SQL repository
implementation in ``robit.agent_core.repos.sql``.

Design
------

- A session row stores the full ``Session`` as a JSON document plus the few
  columns needed for querying (status, timestamps). The document is the
  resume checkpoint.
- Events form an append-only timeline ordered by an autoincrement sequence.

Table names are prefixed with ``robit_`` to avoid collisions in shared
databases.
"""

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class SessionRow(Base):
    """Row model for ``robit_sessions``.

    ``document`` holds ``Session.model_dump(mode="json")``.
    """

    __tablename__ = "robit_sessions"

    id: Mapped[str] = mapped_column(String(256), primary_key=True)
    workspace_id: Mapped[str] = mapped_column(String(128))
    room_id: Mapped[str] = mapped_column(String(128))

    status: Mapped[str] = mapped_column(String(32), index=True)
    document: Mapped[Dict[str, Any]] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class EventRow(Base):
    """Row model for ``robit_session_events``.

    ``payload`` is stored as JSON to capture structured details for auditing.
    """

    __tablename__ = "robit_session_events"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(64), unique=True)
    session_id: Mapped[str] = mapped_column(String(256), index=True)

    type: Mapped[str] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    payload: Mapped[Dict[str, Any]] = mapped_column(JSON)
