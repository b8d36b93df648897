from __future__ import annotations

"""Runtime dependency bundle and LangGraph state types.

The runtime engine is designed to be dependency-injected.

- ``EngineDeps`` collects the repositories, the registry and the approval
  coordinator the engine needs.
- ``_GraphState`` is the state passed between LangGraph nodes.

The graph state only carries identifiers and flags. The persisted
``Session`` is the checkpoint: a suspended session can be resumed by a fresh
engine (after a restart) from the session record alone.
"""

from dataclasses import dataclass
from typing import NotRequired, Optional, Required, TypedDict

from ..actions.registry import ActionRegistry
from ..approvals.coordinator import ApprovalCoordinator
from ..repos.interfaces import EventRepository, SessionRepository


@dataclass(frozen=True)
class EngineDeps:
    """Dependency bundle for ``ExecutionEngine``.

    This object is typically constructed by ``factory.build_engine`` and holds:

    - persistence repositories (sessions, audit events)
    - the action registry used to resolve plan steps
    - the approval coordinator shared with the service
    """

    sessions: SessionRepository
    events: EventRepository
    actions: ActionRegistry
    approvals: ApprovalCoordinator


class _GraphState(TypedDict):
    """LangGraph state for one drive of a session.

    Required keys:

    - ``session_id``: the session being driven.
    - ``awaiting_approval_id``: set when the step suspended for approval.

    Optional keys:

    - ``_finished``: all steps have an outcome; route to ``finish``.
    - ``_resume_skip_approval``: one-shot flag so an approved step runs
      without being asked about again.
    """

    session_id: Required[str]
    awaiting_approval_id: Required[Optional[str]]
    _finished: NotRequired[bool]
    _resume_skip_approval: NotRequired[bool]
