from __future__ import annotations

"""LangGraph execution engine.

``ExecutionEngine`` drives a validated ``Plan`` for one workspace/room
session.

Execution model
---------------

- The engine runs a LangGraph state machine
  (``start -> execute (loop) -> pause_for_approval | finish``).
- Each pass through ``execute`` handles exactly one plan step, the one at
  ``Session.current_index``, and records exactly one ``ExecutionOutcome``
  unless the step suspends for approval.

Per step
--------

1. Resolve the handler; unknown actions fail the step before preflight.
2. Run preflight; denied steps fail with the joined policy reasons.
3. Validate the parameters; invalid parameters fail the step before anyone
   is asked to approve it.
4. When approval is required and the session has no ``approve_all`` grant,
   create an approval request, persist the session as ``awaiting_approval``
   and end the graph run.
5. Invoke the handler in the session's dry-run mode (the policy default
   unless the room switched it). Handler errors fail the step only; later
   steps still run.

Pause/resume
------------

The persisted ``Session`` is the checkpoint. ``resume`` resolves a decision
through the coordinator, records the denied step or marks the parked step as
approved, and drives the graph again from the same index.
"""

import logging
from typing import Any, Dict, List, Optional

from langgraph.graph import END, StateGraph
from pydantic import BaseModel, ValidationError

from ..actions.base import ActionContext, ActionHandler
from ..errors import HandlerError, PolicyDenial, SessionBusyError, UnknownApprovalIdError
from ..planning.steps import validate_plan
from ..policy.models import PolicyConfig
from ..policy.preflight import evaluate, raise_for_denial
from ..schemas.domain import (
    ApprovalDecision,
    ExecutionOutcome,
    OutcomeStatus,
    Plan,
    PlanStep,
    PreflightReport,
    ResolutionKind,
    Session,
    SessionEvent,
    SessionEventType,
    SessionStatus,
    StepStatus,
    session_id_for,
)
from .models import EngineDeps, _GraphState
from .summary import summarize

logger = logging.getLogger(__name__)

_STEP_STATUS_FOR = {
    OutcomeStatus.success: StepStatus.success,
    OutcomeStatus.failed: StepStatus.failed,
    OutcomeStatus.denied: StepStatus.denied,
    OutcomeStatus.skipped: StepStatus.skipped,
}

_EVENT_FOR = {
    OutcomeStatus.success: SessionEventType.action_executed,
    OutcomeStatus.failed: SessionEventType.action_failed,
}

_SECRET_PARAMS = {"api_key", "password", "token"}


def describe_step(step: PlanStep, report: PreflightReport) -> str:
    """Human readable one-liner shown in approval requests."""
    params = ", ".join(f"{k}='***'" if k in _SECRET_PARAMS else f"{k}={v!r}" for k, v in step.params.items())
    text = f"{step.action}({params}) [risk={report.risk.value}]"
    if step.note:
        text = f"{text} - {step.note}"
    warnings = [r for r in report.reasons if r.startswith("warning:")]
    if warnings:
        text = f"{text} ({'; '.join(warnings)})"
    return text


class ExecutionEngine:
    """Execute session plans with preflight, approvals and persistence.

    The engine is orchestration-only: policy decisions come from
    ``policy.preflight.evaluate`` and the actual work is done by handlers
    registered in ``EngineDeps.actions``.

    Callers must not drive the same session concurrently; ``RobitService``
    serialises calls per session.
    """

    def __init__(self, *, policy: PolicyConfig, deps: EngineDeps) -> None:
        """
        Initialize the ExecutionEngine.

        Args:
            policy: The shared, read-only policy.
            deps: Repositories, registry and approval coordinator.
        """
        self._policy = policy
        self._deps = deps
        self._graph = self._build_graph()

    @property
    def policy(self) -> PolicyConfig:
        return self._policy

    @property
    def deps(self) -> EngineDeps:
        return self._deps

    def _build_graph(self):
        """Build and compile the LangGraph state machine."""
        g: StateGraph = StateGraph(_GraphState)
        g.add_node("start", self._node_start)
        g.add_node("execute", self._node_execute_next)
        g.add_node("pause_for_approval", self._node_pause_for_approval)
        g.add_node("finish", self._node_finish)

        g.set_entry_point("start")
        g.add_edge("start", "execute")

        g.add_conditional_edges(
            "execute",
            self._route_after_execute,
            {
                "pause": "pause_for_approval",
                "finish": "finish",
                "continue": "execute",
            },
        )
        g.add_edge("pause_for_approval", END)
        g.add_edge("finish", END)
        return g.compile()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run_plan(
        self,
        *,
        plan: Plan,
        workspace_id: str,
        room_id: str,
        in_reply_to: Optional[str] = None,
        dry_run: Optional[bool] = None,
    ) -> Session:
        """
        Start a plan for a workspace/room and drive it until it finishes or suspends.

        ``dry_run`` overrides the policy's execution mode for this session;
        None keeps the policy default.

        Raises:
            PlanValidationError: If the plan is empty or has blank/duplicate ids.
            SessionBusyError: If the room already has a running or suspended plan.
        """
        validate_plan(plan)
        session_id = session_id_for(workspace_id, room_id)
        existing = await self._deps.sessions.get(session_id)
        if existing is not None and existing.is_active:
            raise SessionBusyError(session_id)

        session = Session(
            id=session_id,
            workspace_id=workspace_id,
            room_id=room_id,
            plan=plan,
            step_status={s.id: StepStatus.pending for s in plan.steps},
            in_reply_to=in_reply_to,
            dry_run=dry_run,
        )
        await self._deps.sessions.save(session)
        await self._emit(
            session_id,
            SessionEventType.plan_started,
            {"plan_id": plan.id, "steps": [s.model_dump(mode="json") for s in plan.steps]},
        )
        logger.info(f"Plan {plan.id} started for session {session_id} with {len(plan.steps)} step(s)")

        await self._drive({"session_id": session_id, "awaiting_approval_id": None}, len(plan.steps))
        return await self._load(session_id)

    async def resume(self, decision: ApprovalDecision) -> Session:
        """
        Apply an approval decision and continue the suspended session.

        Denied steps get a ``denied`` outcome and execution moves on to the
        next step. Approved steps run without prompting again; ``approve_all``
        additionally auto-approves every later step of the same plan.

        Raises:
            UnknownApprovalIdError: If the id is unknown, or its session no
                longer waits on it.
            AlreadyResolvedError: If the id was already resolved.
        """
        resolution = await self._deps.approvals.resolve(decision)
        req = resolution.request
        session = await self._deps.sessions.get(req.session_id)
        if session is None or session.pending_approval is None or session.pending_approval.id != req.id:
            logger.warning(f"Approval {req.id} resolved but session {req.session_id} is not waiting on it")
            raise UnknownApprovalIdError(req.id)

        await self._emit(
            session.id,
            SessionEventType.approval_resolved,
            {
                "approval_id": req.id,
                "step_id": req.step_id,
                "decision": resolution.kind.value,
                "sender_id": resolution.sender_id,
            },
        )

        session.pending_approval = None
        session.status = SessionStatus.running
        state: _GraphState = {"session_id": session.id, "awaiting_approval_id": None}

        if resolution.kind == ResolutionKind.denied:
            step = session.plan.steps[session.current_index]
            who = f" by {resolution.sender_id}" if resolution.sender_id else ""
            outcome = ExecutionOutcome(
                step_id=step.id,
                action=step.action,
                status=OutcomeStatus.denied,
                message=f"denied{who}",
                result={"error": "approval denied"},
            )
            self._record(session, outcome)
            logger.info(f"Step {step.id} of session {session.id} denied{who}")
        else:
            if resolution.kind == ResolutionKind.approved_all:
                session.approve_all = True
            session.step_status[req.step_id] = StepStatus.pending
            state["_resume_skip_approval"] = True

        session.touch()
        await self._deps.sessions.save(session)
        await self._drive(state, len(session.plan.steps) - session.current_index)
        return await self._load(session.id)

    async def abandon(self, session_id: str) -> Optional[Session]:
        """
        Abandon the in-flight plan of a session.

        Pending approvals are discarded, remaining steps are recorded as
        ``skipped`` and the summary is produced from the outcomes so far.

        Returns:
            The abandoned session, or None if nothing was in flight.
        """
        session = await self._deps.sessions.get(session_id)
        if session is None or not session.is_active:
            return None

        dropped = await self._deps.approvals.discard_session(session_id)
        session.pending_approval = None
        for step in session.plan.steps[session.current_index :]:
            self._record(
                session,
                ExecutionOutcome(
                    step_id=step.id,
                    action=step.action,
                    status=OutcomeStatus.skipped,
                    message="skipped: plan abandoned",
                ),
            )
        session.status = SessionStatus.abandoned
        session.summary = summarize(session.outcomes, session.plan)
        session.touch()
        await self._deps.sessions.save(session)
        await self._emit(
            session_id,
            SessionEventType.plan_abandoned,
            {"plan_id": session.plan.id, "discarded_approvals": [r.id for r in dropped], **session.summary.counts},
        )
        logger.info(f"Plan {session.plan.id} abandoned for session {session_id}")
        return session

    async def recover(self) -> List[Session]:
        """
        Re-attach persisted sessions after a restart.

        Sessions suspended for approval get their pending request
        re-registered with the coordinator. Sessions found ``running`` were
        interrupted mid-step; they are abandoned because the interrupted step
        may have partially run.

        Returns:
            The sessions that are waiting for approval again.
        """
        restored: List[Session] = []
        for session in await self._deps.sessions.list_active():
            if session.status == SessionStatus.awaiting_approval and session.pending_approval is not None:
                await self._deps.approvals.restore(session.pending_approval)
                restored.append(session)
                continue
            logger.warning(f"Session {session.id} was interrupted while running; abandoning it")
            await self.abandon(session.id)
        if restored:
            logger.info(f"Recovered {len(restored)} session(s) awaiting approval")
        return restored

    async def get_session(self, session_id: str) -> Optional[Session]:
        return await self._deps.sessions.get(session_id)

    async def set_dry_run(self, session_id: str, dry_run: Optional[bool]) -> Optional[Session]:
        """
        Switch the execution mode of the in-flight plan of a session.

        Steps that already ran keep their outcome; the parked or next step
        runs in the new mode. None falls back to the policy default.

        Returns:
            The updated session, or None if nothing was in flight.
        """
        session = await self._deps.sessions.get(session_id)
        if session is None or not session.is_active:
            return None
        session.dry_run = dry_run
        session.touch()
        await self._deps.sessions.save(session)
        logger.info(f"Session {session_id} dry-run set to {dry_run}")
        return session

    # ------------------------------------------------------------------
    # Graph nodes
    # ------------------------------------------------------------------

    async def _node_start(self, state: _GraphState) -> _GraphState:
        """Graph entry node. Currently a no-op."""
        return state

    async def _node_execute_next(self, state: _GraphState) -> _GraphState:
        """Handle the step at ``Session.current_index``."""
        session = await self._load(state["session_id"])
        skip_approval = bool(state.get("_resume_skip_approval"))
        state["_resume_skip_approval"] = False

        idx = session.current_index
        if idx >= len(session.plan.steps):
            state["_finished"] = True
            return state

        step = session.plan.steps[idx]
        handler = self._deps.actions.lookup(step.action)
        if handler is None:
            self._record(
                session,
                ExecutionOutcome(
                    step_id=step.id,
                    action=step.action,
                    status=OutcomeStatus.failed,
                    message=f"unknown_action: {step.action}",
                    result={"error": f"unknown action: {step.action}"},
                    reasons=["unknown_action"],
                ),
            )
            logger.warning(f"Step {step.id} of session {session.id} references unknown action '{step.action}'")
            await self._commit(session, step.id)
            return state

        report = evaluate(handler.spec, step.params, self._policy, step_override=step.requires_approval)
        await self._emit(
            session.id,
            SessionEventType.step_preflight,
            {
                "step_id": step.id,
                "action": step.action,
                "allowed": report.allowed,
                "reasons": list(report.reasons),
                "risk": report.risk.value,
                "requires_approval": report.requires_approval,
                "paths": list(report.paths),
            },
        )

        try:
            raise_for_denial(report)
        except PolicyDenial as denial:
            self._record(
                session,
                ExecutionOutcome(
                    step_id=step.id,
                    action=step.action,
                    status=OutcomeStatus.failed,
                    message=f"policy denied: {'; '.join(denial.reasons)}",
                    result={"error": report.summary()},
                    reasons=list(denial.reasons),
                ),
            )
            await self._emit(
                session.id,
                SessionEventType.step_denied_by_policy,
                {"step_id": step.id, "action": step.action, "reasons": list(denial.reasons)},
            )
            logger.warning(f"Step {step.id} of session {session.id} refused: {denial}")
            await self._commit(session, step.id)
            return state

        try:
            params = handler.parse_params(step.params)
        except ValidationError as e:
            self._record(
                session,
                ExecutionOutcome(
                    step_id=step.id,
                    action=step.action,
                    status=OutcomeStatus.failed,
                    message=f"invalid_params: {e.error_count()} validation error(s)",
                    result={"error": "invalid_params", "details": e.errors(include_url=False, include_context=False)},
                    reasons=["invalid_params"],
                ),
            )
            logger.warning(f"Step {step.id} of session {session.id} has invalid params for {step.action}")
            await self._commit(session, step.id)
            return state

        if report.requires_approval and not skip_approval:
            if session.approve_all:
                await self._emit(
                    session.id,
                    SessionEventType.approval_auto_approved,
                    {"step_id": step.id, "action": step.action, "risk": report.risk.value},
                )
                logger.info(f"Step {step.id} ({step.action}) of session {session.id} auto-approved (approve all)")
            else:
                req = await self._deps.approvals.request(
                    session_id=session.id,
                    plan_id=session.plan.id,
                    step_id=step.id,
                    action=step.action,
                    risk=report.risk,
                    summary=describe_step(step, report),
                )
                session.pending_approval = req
                session.status = SessionStatus.awaiting_approval
                session.step_status[step.id] = StepStatus.awaiting_approval
                session.touch()
                await self._deps.sessions.save(session)
                await self._emit(
                    session.id,
                    SessionEventType.approval_requested,
                    {"approval_id": req.id, "step_id": step.id, "action": step.action, "risk": report.risk.value},
                )
                state["awaiting_approval_id"] = req.id
                return state

        outcome = await self._invoke(handler, step, session, report, params)
        self._record(session, outcome)
        await self._commit(session, step.id)
        return state

    async def _node_pause_for_approval(self, state: _GraphState) -> _GraphState:
        """Pause node.

        The graph transitions to END after this node; resuming is driven by
        ``resume`` from the persisted session.
        """
        return state

    async def _node_finish(self, state: _GraphState) -> _GraphState:
        """Finish node: mark the session completed and fold the summary."""
        session = await self._load(state["session_id"])
        session.status = SessionStatus.completed
        session.pending_approval = None
        session.summary = summarize(session.outcomes, session.plan)
        session.touch()
        await self._deps.sessions.save(session)
        await self._emit(
            session.id,
            SessionEventType.plan_completed,
            {"plan_id": session.plan.id, **session.summary.counts},
        )
        logger.info(f"Plan {session.plan.id} completed for session {session.id}: {session.summary.counts}")
        return state

    def _route_after_execute(self, state: _GraphState) -> str:
        """Route to pause/finish/continue after executing a step."""
        if state.get("awaiting_approval_id"):
            return "pause"
        if state.get("_finished"):
            return "finish"
        return "continue"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _drive(self, state: _GraphState, remaining_steps: int) -> None:
        # start + one execute per step + the terminal execute + finish
        limit = max(25, 2 * remaining_steps + 10)
        await self._graph.ainvoke(state, config={"recursion_limit": limit})

    async def _invoke(
        self,
        handler: ActionHandler,
        step: PlanStep,
        session: Session,
        report: PreflightReport,
        params: BaseModel,
    ) -> ExecutionOutcome:
        ctx = ActionContext(
            cwd=self._policy.base_dir,
            dry_run=self._policy.dry_run if session.dry_run is None else session.dry_run,
            policy=self._policy,
            session_id=session.id,
            step_id=step.id,
        )
        try:
            res = await handler.execute(ctx, params=params)
        except PolicyDenial as denial:
            await self._emit(
                session.id,
                SessionEventType.step_denied_by_policy,
                {"step_id": step.id, "action": step.action, "reasons": list(denial.reasons)},
            )
            logger.warning(f"Step {step.id} of session {session.id} refused at execution: {denial}")
            return ExecutionOutcome(
                step_id=step.id,
                action=step.action,
                status=OutcomeStatus.failed,
                message=f"policy denied: {'; '.join(denial.reasons)}",
                result={"error": "; ".join(denial.reasons)},
                reasons=list(denial.reasons),
            )
        except HandlerError as e:
            logger.warning(f"Action {step.action} failed in step {step.id} of session {session.id}: {e}")
            return ExecutionOutcome(
                step_id=step.id,
                action=step.action,
                status=OutcomeStatus.failed,
                message=str(e),
                result={"error": str(e)},
            )
        except Exception as e:
            logger.exception(f"Action {step.action} raised during step {step.id} of session {session.id}")
            return ExecutionOutcome(
                step_id=step.id,
                action=step.action,
                status=OutcomeStatus.failed,
                message=f"error: {e}",
                result={"error": str(e)},
            )

        if not res.ok:
            logger.warning(f"Action {step.action} failed in step {step.id} of session {session.id}: {res.summary}")
            return ExecutionOutcome(
                step_id=step.id,
                action=step.action,
                status=OutcomeStatus.failed,
                message=res.summary,
                result=res.output or {"error": res.summary},
                raw_output=res.raw_output,
            )
        return ExecutionOutcome(
            step_id=step.id,
            action=step.action,
            status=OutcomeStatus.success,
            message=res.summary,
            result=res.output,
            raw_output=res.raw_output,
            reasons=[r for r in report.reasons if r.startswith("warning:")],
        )

    def _record(self, session: Session, outcome: ExecutionOutcome) -> None:
        session.outcomes.append(outcome)
        session.step_status[outcome.step_id] = _STEP_STATUS_FOR[outcome.status]
        session.current_index += 1

    async def _commit(self, session: Session, step_id: str) -> None:
        session.touch()
        await self._deps.sessions.save(session)
        outcome = session.outcomes[-1]
        event_type = _EVENT_FOR.get(outcome.status)
        if event_type is not None:
            await self._emit(
                session.id,
                event_type,
                {"step_id": step_id, "action": outcome.action, "message": outcome.message},
            )

    async def _load(self, session_id: str) -> Session:
        session = await self._deps.sessions.get(session_id)
        if session is None:
            raise ValueError(f"session not found: {session_id}")
        return session

    async def _emit(self, session_id: str, type_: SessionEventType, payload: Dict[str, Any]) -> None:
        await self._deps.events.append(SessionEvent(session_id=session_id, type=type_, payload=payload))
