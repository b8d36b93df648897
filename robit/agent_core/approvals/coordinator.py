from __future__ import annotations

"""Approval coordinator.

Holds the table of outstanding ``ApprovalRequest`` objects and turns inbound
``ApprovalDecision`` messages into ``Resolution`` values for the engine.

Rules enforced here:

- a session has at most one pending request at a time,
- a request resolves exactly once; later decisions for the same id raise
  ``AlreadyResolvedError`` and never change the first outcome,
- ids are opaque, unique for the coordinator's lifetime (``appr-<n>``).

The table is guarded by an ``asyncio.Lock`` so decisions arriving from
several adapters are applied one at a time.
"""

import asyncio
import itertools
import logging
from collections import OrderedDict
from typing import Dict, List, Optional

from ..errors import AlreadyResolvedError, DuplicatePendingError, UnknownApprovalIdError
from ..schemas.domain import (
    ApprovalDecision,
    ApprovalRequest,
    DecisionKind,
    Resolution,
    ResolutionKind,
    RiskLevel,
)

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 1024

_RESOLUTION_FOR = {
    DecisionKind.approve: ResolutionKind.approved,
    DecisionKind.approve_all: ResolutionKind.approved_all,
    DecisionKind.deny: ResolutionKind.denied,
}


class ApprovalCoordinator:
    """
    In-memory pending-approval table shared by all sessions.

    Args:
        history_size: How many resolved ids to remember for duplicate
            detection. The oldest entries are forgotten first.
    """

    def __init__(self, *, history_size: int = DEFAULT_HISTORY_SIZE) -> None:
        self._lock = asyncio.Lock()
        self._pending: Dict[str, ApprovalRequest] = {}
        self._by_session: Dict[str, str] = {}
        self._resolved: "OrderedDict[str, ResolutionKind]" = OrderedDict()
        self._history_size = max(1, history_size)
        self._counter = itertools.count(1)

    def _next_id(self) -> str:
        while True:
            candidate = f"appr-{next(self._counter)}"
            if candidate not in self._pending and candidate not in self._resolved:
                return candidate

    async def request(
        self,
        *,
        session_id: str,
        plan_id: str,
        step_id: str,
        action: str,
        risk: RiskLevel,
        summary: str,
    ) -> ApprovalRequest:
        """
        Create and register a pending approval for one step.

        Raises:
            DuplicatePendingError: If the session already waits on a request.
        """
        async with self._lock:
            existing = self._by_session.get(session_id)
            if existing is not None:
                raise DuplicatePendingError(session_id, existing)
            req = ApprovalRequest(
                id=self._next_id(),
                session_id=session_id,
                plan_id=plan_id,
                step_id=step_id,
                action=action,
                risk=risk,
                summary=summary,
            )
            self._pending[req.id] = req
            self._by_session[session_id] = req.id
        logger.info(f"Approval requested: {req.id} session={session_id} step={step_id} action={action} risk={risk.value}")
        return req

    async def resolve(self, decision: ApprovalDecision) -> Resolution:
        """
        Apply a decision to its pending request.

        Raises:
            AlreadyResolvedError: If the id was resolved before.
            UnknownApprovalIdError: If the id was never issued (or has been
                discarded together with its session).
        """
        async with self._lock:
            req = self._pending.get(decision.approval_id)
            if req is None:
                if decision.approval_id in self._resolved:
                    raise AlreadyResolvedError(decision.approval_id)
                raise UnknownApprovalIdError(decision.approval_id)
            kind = _RESOLUTION_FOR[decision.decision]
            del self._pending[req.id]
            if self._by_session.get(req.session_id) == req.id:
                del self._by_session[req.session_id]
            self._remember(req.id, kind)
        logger.info(f"Approval resolved: {req.id} -> {kind.value} by {decision.sender_id or 'unknown'}")
        return Resolution(request=req, kind=kind, sender_id=decision.sender_id)

    async def discard_session(self, session_id: str) -> List[ApprovalRequest]:
        """Drop every pending request of a session (plan abandoned or replaced)."""
        async with self._lock:
            dropped = [r for r in self._pending.values() if r.session_id == session_id]
            for r in dropped:
                del self._pending[r.id]
            self._by_session.pop(session_id, None)
        for r in dropped:
            logger.info(f"Approval discarded: {r.id} session={session_id}")
        return dropped

    async def restore(self, request: ApprovalRequest) -> None:
        """
        Re-register a persisted pending request after a restart.

        Restoring the same request twice is a no-op.

        Raises:
            DuplicatePendingError: If the session already waits on a different request.
        """
        async with self._lock:
            existing = self._by_session.get(request.session_id)
            if existing == request.id:
                return
            if existing is not None:
                raise DuplicatePendingError(request.session_id, existing)
            self._pending[request.id] = request
            self._by_session[request.session_id] = request.id
        logger.debug(f"Approval restored: {request.id} session={request.session_id}")

    def find(self, approval_id: str) -> Optional[ApprovalRequest]:
        """Return the pending request with this id, if any."""
        return self._pending.get(approval_id)

    def pending_for_session(self, session_id: str) -> Optional[ApprovalRequest]:
        approval_id = self._by_session.get(session_id)
        if approval_id is None:
            return None
        return self._pending.get(approval_id)

    def pending_count(self) -> int:
        return len(self._pending)

    def _remember(self, approval_id: str, kind: ResolutionKind) -> None:
        self._resolved[approval_id] = kind
        while len(self._resolved) > self._history_size:
            self._resolved.popitem(last=False)
