from __future__ import annotations

"""High-level service mapping envelopes to engine calls.

``RobitService`` is what adapters talk to. It turns inbound envelopes into
plans, decisions and abandon requests, calls ``ExecutionEngine``, and turns
the resulting session state into outbound ``response`` envelopes.

Workflow
--------

- ``message``: chat commands (``help``, ``actions``, ``abandon``, approval
  commands such as ``approve``/``deny``/``approve all``) are handled
  directly; any other text goes through the plan parser (``action:`` shorthand
  or JSON) and, failing that, through the optional ``Planner``.
- ``plan``/``action``: validated and started with ``run_plan``.
- ``approval_decision``: applied with ``resume``.
- ``abandon``: remaining steps are skipped and pending approvals discarded.

When an adapter closes, the sessions it started are abandoned unless the
caller keeps them for restart recovery (``abandon_on_close=False``).

Error policy
------------

Nothing raised by the engine reaches the adapter. Plan validation errors,
busy sessions and approval protocol errors become ``chat`` responses; the
latter are also logged at WARNING. Anything unexpected is logged with its
traceback by ``run_with_adapter`` and answered with an ``internal error`` chat
response. The service holds one ``asyncio.Lock`` per session while calls for
it are in progress, so calls for the same room never interleave while
different rooms run concurrently.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional, Protocol, Set, Tuple

from .errors import ApprovalError, PlanValidationError, RobitError, SessionBusyError
from .planning.parser import PlannerResponse, parse_explicit_action, parse_planner_output
from .planning.steps import build_plan
from .protocol import (
    AbandonBody,
    ActionBody,
    ActionListRequestBody,
    ActionListResultBody,
    ApprovalDecisionBody,
    Envelope,
    MessageBody,
    PingBody,
    PlanBody,
    PongBody,
    ResponseBody,
    ResponseKind,
    ScopedBody,
    wrap,
)
from .runtime.engine import ExecutionEngine
from .schemas.domain import (
    ActionSpec,
    ApprovalDecision,
    DecisionKind,
    OutcomeStatus,
    Plan,
    Session,
    SessionStatus,
    session_id_for,
)

logger = logging.getLogger(__name__)

HELP_TEXT = """commands:
  help                 show this help
  actions              list actions
  approve [id]         approve the pending step (also: yes, y)
  approve all [id]     approve this and every later step of the plan
  deny [id]            deny the pending step (also: no, n, reject)
  abandon              stop the current plan, skipping remaining steps
  dry-run on|off       simulate (on) or perform (off) side effects in this room
  dry-run              show the execution mode of this room

examples:
  action:fs.list_dir path=.
  action:fs.write_file path=notes.txt content=hello
  {"steps": [{"action": "fs.read_file", "params": {"path": "README.md"}}]}"""

_APPROVE_WORDS = {"approve", "yes", "y"}
_DENY_WORDS = {"deny", "no", "n", "reject"}


class Planner(Protocol):
    """Turns free text into planner output understood by ``parse_planner_output``."""

    async def plan(self, text: str, *, actions: List[ActionSpec]) -> str: ...


def parse_approval_command(text: str) -> Optional[Tuple[DecisionKind, Optional[str]]]:
    """
    Recognise chat approval commands.

    Returns:
        ``(decision, approval_id)`` where the id is None when the user did not
        name one, or None if ``text`` is not an approval command.
    """
    words = text.strip().split()
    if not words:
        return None
    head = words[0].lower()
    if head in _APPROVE_WORDS:
        rest = words[1:]
        if head == "approve" and rest and rest[0].lower() == "all":
            rest = rest[1:]
            decision = DecisionKind.approve_all
        else:
            decision = DecisionKind.approve
    elif head in _DENY_WORDS:
        rest = words[1:]
        decision = DecisionKind.deny
    else:
        return None
    if len(rest) > 1:
        return None
    return decision, (rest[0] if rest else None)


@dataclass(frozen=True)
class _Scope:
    workspace_id: str
    room_id: str
    in_reply_to: Optional[str] = None
    sender_id: Optional[str] = None

    @property
    def session_id(self) -> str:
        return session_id_for(self.workspace_id, self.room_id)


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class RobitService:
    """Map inbound envelopes to engine operations and responses."""

    def __init__(
        self,
        *,
        engine: ExecutionEngine,
        planner: Optional[Planner] = None,
        default_workspace_id: str = "local",
        default_room_id: str = "default",
    ) -> None:
        self._engine = engine
        self._planner = planner
        self._default_workspace_id = default_workspace_id
        self._default_room_id = default_room_id
        self._locks: Dict[str, _LockEntry] = {}
        self._dry_run: Dict[str, bool] = {}

    @property
    def engine(self) -> ExecutionEngine:
        return self._engine

    async def start(self) -> None:
        """Re-attach sessions that were waiting for approval before a restart."""
        await self._engine.recover()

    @asynccontextmanager
    async def _session_lock(self, session_id: str) -> AsyncIterator[None]:
        """Hold the session's lock; the entry is dropped once nobody holds or awaits it."""
        entry = self._locks.get(session_id)
        if entry is None:
            entry = self._locks[session_id] = _LockEntry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[session_id]

    def _scope(
        self,
        workspace_id: Optional[str],
        room_id: Optional[str],
        in_reply_to: Optional[str] = None,
        sender_id: Optional[str] = None,
    ) -> _Scope:
        return _Scope(
            workspace_id=workspace_id or self._default_workspace_id,
            room_id=room_id or self._default_room_id,
            in_reply_to=in_reply_to,
            sender_id=sender_id,
        )

    def _scope_of(self, env: Envelope) -> _Scope:
        body = env.body
        if isinstance(body, ScopedBody):
            return self._scope(body.workspace_id, body.room_id, env.id, getattr(body, "sender_id", None))
        return self._scope(None, None, env.id)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def handle_envelope(self, env: Envelope) -> List[Envelope]:
        """
        Handle one inbound envelope.

        Returns:
            The outbound envelopes to send back, in order. Never raises for
            engine or protocol errors.
        """
        body = env.body
        if isinstance(body, MessageBody):
            scope = self._scope(body.workspace_id, body.room_id, body.message_id, body.sender_id)
            return await self._handle_text(body.text, scope)
        if isinstance(body, PlanBody):
            scope = self._scope(body.workspace_id, body.room_id, body.message_id or env.id, body.sender_id)
            try:
                plan = build_plan(body.steps)
            except PlanValidationError as e:
                return [self._chat(scope, f"invalid plan: {e}")]
            return await self._run(plan, scope)
        if isinstance(body, ActionBody):
            scope = self._scope(body.workspace_id, body.room_id, body.message_id or env.id, body.sender_id)
            step = {"action": body.action, "params": body.params, "requires_approval": body.requires_approval}
            try:
                plan = build_plan([step])
            except PlanValidationError as e:
                return [self._chat(scope, f"invalid plan: {e}")]
            return await self._run(plan, scope)
        if isinstance(body, ApprovalDecisionBody):
            scope = self._scope(body.workspace_id, body.room_id, body.in_reply_to or env.id, body.sender_id)
            decision = ApprovalDecision(approval_id=body.approval_id, decision=body.decision, sender_id=body.sender_id)
            return await self._decide(decision, scope)
        if isinstance(body, AbandonBody):
            scope = self._scope(body.workspace_id, body.room_id, body.message_id or env.id)
            return await self._abandon(scope)
        if isinstance(body, ActionListRequestBody):
            return [wrap(ActionListResultBody(actions=self._engine.deps.actions.list(), in_reply_to=env.id))]
        if isinstance(body, PingBody):
            return [wrap(PongBody(in_reply_to=env.id))]
        logger.debug(f"Ignoring outbound-only envelope type '{body.type}'")
        return []

    async def run_with_adapter(self, adapter, *, abandon_on_close: bool = True) -> None:
        """
        Read envelopes from ``adapter`` until it closes, answering each one.

        Envelopes are handled in their own tasks so that different rooms
        progress concurrently; per-session locks keep each room in order.

        Args:
            adapter: The connection to serve.
            abandon_on_close: Abandon the sessions this adapter started once
                it closes, discarding their pending approvals. Pass False when
                a persistent repository keeps them for ``start`` to recover.
        """
        tasks: Set[asyncio.Task] = set()
        served: Set[str] = set()

        async def _serve(env: Envelope) -> None:
            try:
                outbound = await self.handle_envelope(env)
            except Exception as e:
                logger.exception(f"Unhandled error while handling envelope {env.id}")
                outbound = [self._chat(self._scope_of(env), f"internal error: {e}", {"error": type(e).__name__})]
            try:
                for out in outbound:
                    await adapter.send(out)
            except Exception:
                logger.exception(f"Failed to send responses for envelope {env.id}")

        while True:
            env = await adapter.receive()
            if env is None:
                break
            if isinstance(env.body, (MessageBody, PlanBody, ActionBody)):
                served.add(self._scope_of(env).session_id)
            task = asyncio.create_task(_serve(env))
            tasks.add(task)
            task.add_done_callback(tasks.discard)
            # let the task take its session lock before the next envelope arrives
            await asyncio.sleep(0)
        if tasks:
            await asyncio.gather(*tasks)
        if abandon_on_close:
            await self._abandon_all(served)

    async def _abandon_all(self, session_ids: Set[str]) -> None:
        for session_id in sorted(session_ids):
            async with self._session_lock(session_id):
                session = await self._engine.abandon(session_id)
            if session is not None:
                logger.info(f"Abandoned session {session_id}: its adapter closed")

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _handle_text(self, text: str, scope: _Scope) -> List[Envelope]:
        command = text.strip()
        lower = command.lower()
        if lower == "help":
            return [self._chat(scope, HELP_TEXT)]
        if lower == "actions":
            return [self._chat(scope, self._actions_text())]
        if lower in {"abandon", "cancel"}:
            return await self._abandon(scope)
        if lower in {"dry-run on", "dry-run off"}:
            return await self._set_dry_run(scope, lower == "dry-run on")
        if lower == "dry-run":
            enabled = self._dry_run.get(scope.session_id, self._engine.policy.dry_run)
            return [self._chat(scope, f"dry-run is {'on' if enabled else 'off'}", {"dry_run": enabled})]

        parsed = parse_approval_command(command)
        if parsed is not None:
            decision_kind, approval_id = parsed
            if approval_id is None:
                return await self._decide_pending(decision_kind, scope)
            decision = ApprovalDecision(approval_id=approval_id, decision=decision_kind, sender_id=scope.sender_id)
            return await self._decide(decision, scope)

        response = await self._plan_from_text(command)
        if response.kind == "plan" and response.plan is not None:
            return await self._run(response.plan, scope)
        if response.kind == "need_input":
            return [self._chat(scope, response.prompt or "need more input", {"need_input": True})]
        return [self._chat(scope, response.message or "no plan")]

    async def _plan_from_text(self, text: str) -> PlannerResponse:
        if parse_explicit_action(text) is not None or text.lstrip().startswith("{") or self._planner is None:
            return parse_planner_output(text)
        try:
            raw = await self._planner.plan(text, actions=self._engine.deps.actions.list())
        except Exception as e:
            logger.warning(f"Planner failed: {e}")
            return PlannerResponse(kind="unknown", message=f"planner error: {e}")
        return parse_planner_output(raw)

    async def _run(self, plan: Plan, scope: _Scope) -> List[Envelope]:
        async with self._session_lock(scope.session_id):
            try:
                session = await self._engine.run_plan(
                    plan=plan,
                    workspace_id=scope.workspace_id,
                    room_id=scope.room_id,
                    in_reply_to=scope.in_reply_to,
                    dry_run=self._dry_run.get(scope.session_id),
                )
            except SessionBusyError:
                return [
                    self._chat(
                        scope,
                        "a plan is already in progress in this room; answer the pending approval or send 'abandon'",
                    )
                ]
            except PlanValidationError as e:
                return [self._chat(scope, f"invalid plan: {e}")]
        return self._responses(session, scope, already_reported=0)

    async def _decide(self, decision: ApprovalDecision, scope: _Scope) -> List[Envelope]:
        pending = self._engine.deps.approvals.find(decision.approval_id)
        target = pending.session_id if pending is not None else scope.session_id
        async with self._session_lock(target):
            return await self._decide_locked(decision, scope, target)

    async def _decide_pending(self, kind: DecisionKind, scope: _Scope) -> List[Envelope]:
        """Apply a decision to whatever the room is waiting on ("approve" without an id)."""
        async with self._session_lock(scope.session_id):
            pending = self._engine.deps.approvals.pending_for_session(scope.session_id)
            if pending is None:
                return [self._chat(scope, "no pending approvals")]
            decision = ApprovalDecision(approval_id=pending.id, decision=kind, sender_id=scope.sender_id)
            return await self._decide_locked(decision, scope, scope.session_id)

    async def _decide_locked(self, decision: ApprovalDecision, scope: _Scope, target: str) -> List[Envelope]:
        before = await self._engine.get_session(target)
        reported = len(before.outcomes) if before is not None else 0
        try:
            session = await self._engine.resume(decision)
        except ApprovalError as e:
            logger.warning(f"Dropped approval decision {decision.approval_id}: {e}")
            return [self._chat(scope, str(e), {"error": type(e).__name__})]
        except RobitError as e:
            logger.warning(f"Approval decision {decision.approval_id} failed: {e}")
            return [self._chat(scope, str(e), {"error": type(e).__name__})]
        reply_scope = _Scope(session.workspace_id, session.room_id, scope.in_reply_to, scope.sender_id)
        return self._responses(session, reply_scope, already_reported=reported)

    async def _set_dry_run(self, scope: _Scope, enabled: bool) -> List[Envelope]:
        """Switch the room's execution mode, including a plan that is already in flight."""
        async with self._session_lock(scope.session_id):
            self._dry_run[scope.session_id] = enabled
            await self._engine.set_dry_run(scope.session_id, enabled)
        logger.info(f"Dry-run {'enabled' if enabled else 'disabled'} for session {scope.session_id}")
        return [self._chat(scope, f"dry-run {'enabled' if enabled else 'disabled'}", {"dry_run": enabled})]

    async def _abandon(self, scope: _Scope) -> List[Envelope]:
        async with self._session_lock(scope.session_id):
            session = await self._engine.abandon(scope.session_id)
        if session is None:
            return [self._chat(scope, "nothing to abandon")]
        return [self._plan_completed(session, scope)]

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    def _responses(self, session: Session, scope: _Scope, *, already_reported: int) -> List[Envelope]:
        out: List[Envelope] = []
        for outcome in session.outcomes[already_reported:]:
            if outcome.status == OutcomeStatus.success:
                text = f"ok: {outcome.message}"
            else:
                text = f"{outcome.status.value}: {outcome.message}"
            out.append(
                self._response(
                    scope,
                    ResponseKind.action_result,
                    text,
                    {
                        "step_id": outcome.step_id,
                        "action": outcome.action,
                        "status": outcome.status.value,
                        "result": outcome.result,
                        "reasons": list(outcome.reasons),
                    },
                )
            )

        if session.status == SessionStatus.awaiting_approval and session.pending_approval is not None:
            req = session.pending_approval
            text = (
                f"approval required for step {req.step_id}: {req.summary}\n"
                f"reply 'approve {req.id}', 'approve all {req.id}' or 'deny {req.id}'"
            )
            out.append(
                self._response(
                    scope,
                    ResponseKind.approval_request,
                    text,
                    {
                        "approval_id": req.id,
                        "step_id": req.step_id,
                        "action": req.action,
                        "risk": req.risk.value,
                    },
                )
            )
        elif session.status in {SessionStatus.completed, SessionStatus.abandoned}:
            out.append(self._plan_completed(session, scope))
        return out

    def _plan_completed(self, session: Session, scope: _Scope) -> Envelope:
        summary = session.summary
        text = summary.text if summary is not None else "plan finished"
        meta = {"status": session.status.value, "plan_id": session.plan.id}
        if summary is not None:
            meta["summary"] = summary.model_dump(mode="json")
        return self._response(scope, ResponseKind.plan_completed, text, meta)

    def _chat(self, scope: _Scope, text: str, metadata: Optional[dict] = None) -> Envelope:
        return self._response(scope, ResponseKind.chat, text, metadata or {})

    def _response(self, scope: _Scope, kind: ResponseKind, text: str, metadata: dict) -> Envelope:
        return wrap(
            ResponseBody(
                kind=kind,
                text=text,
                in_reply_to=scope.in_reply_to,
                workspace_id=scope.workspace_id,
                room_id=scope.room_id,
                metadata=metadata,
            )
        )

    def _actions_text(self) -> str:
        lines = []
        for spec in self._engine.deps.actions.list():
            flag = ", approval" if spec.requires_approval else ""
            lines.append(f"{spec.name} v{spec.version} [{spec.risk.value}{flag}] - {spec.description}")
        return "\n".join(lines) if lines else "no actions registered"
