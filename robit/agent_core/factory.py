from __future__ import annotations

"""Convenience factories for wiring the agent core.

This module contains small helpers to build the default action registry,
the repositories selected by settings, and an ``ExecutionEngine`` or a ready
``RobitService`` from a ``PolicyConfig``.

The intent is to keep application wiring and tests concise, while still
allowing deployments to provide their own registry, repositories and
planner.
"""

import logging
from typing import Optional, Tuple

from .actions.browser import BrowserOpenUrlAction
from .actions.fs_ops import EnsureDirAction, ListDirAction, ReadFileAction, ReplaceTextAction, WriteFileAction
from .actions.registry import ActionRegistry
from .actions.shell import ShellRunAction
from .actions.web import BraveSearchAction, FetchUrlAction
from .approvals.coordinator import ApprovalCoordinator
from .policy.models import PolicyConfig
from .repos.interfaces import EventRepository, SessionRepository
from .repos.memory import InMemoryEventRepository, InMemorySessionRepository
from .runtime.engine import ExecutionEngine
from .runtime.models import EngineDeps
from .service import Planner, RobitService

logger = logging.getLogger(__name__)


def build_default_registry(*, brave_api_key: Optional[str] = None) -> ActionRegistry:
    """
    Build the default ``ActionRegistry`` with every built-in action.

    Args:
        brave_api_key: Fallback token for ``web.search_brave`` when a step
            does not pass its own ``api_key``.
    """
    reg = ActionRegistry()
    reg.register(ReadFileAction())
    reg.register(WriteFileAction())
    reg.register(ReplaceTextAction())
    reg.register(ListDirAction())
    reg.register(EnsureDirAction())
    reg.register(ShellRunAction())
    reg.register(FetchUrlAction())
    reg.register(BraveSearchAction(api_key=brave_api_key))
    reg.register(BrowserOpenUrlAction())
    return reg


async def build_repos(database_url: Optional[str] = None) -> Tuple[SessionRepository, EventRepository]:
    """
    Build the session and event repositories.

    With a database URL the SQL repositories are used (tables are created if
    missing); otherwise the in-memory ones.
    """
    if not database_url:
        return InMemorySessionRepository(), InMemoryEventRepository()

    from .repos.sql import build_sql_repos, create_all, create_engine, create_sessionmaker

    engine = create_engine(database_url)
    await create_all(engine)
    bundle = build_sql_repos(session_factory=create_sessionmaker(engine))
    logger.info("Using SQL persistence for sessions and events")
    return bundle.sessions, bundle.events


def build_engine(
    *,
    policy_config: PolicyConfig,
    registry: Optional[ActionRegistry] = None,
    sessions: Optional[SessionRepository] = None,
    events: Optional[EventRepository] = None,
    approvals: Optional[ApprovalCoordinator] = None,
) -> ExecutionEngine:
    """Construct an ``ExecutionEngine``; missing pieces get in-memory defaults."""
    deps = EngineDeps(
        sessions=sessions if sessions is not None else InMemorySessionRepository(),
        events=events if events is not None else InMemoryEventRepository(),
        actions=registry if registry is not None else build_default_registry(),
        approvals=approvals if approvals is not None else ApprovalCoordinator(),
    )
    return ExecutionEngine(policy=policy_config, deps=deps)


def build_service(
    *,
    policy_config: PolicyConfig,
    planner: Optional[Planner] = None,
    **engine_kwargs,
) -> RobitService:
    """Construct a ``RobitService`` around a freshly built engine."""
    return RobitService(engine=build_engine(policy_config=policy_config, **engine_kwargs), planner=planner)
