from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from pydantic import Field, field_validator

from .base import BaseSchema, FrozenSchema


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def session_id_for(workspace_id: str, room_id: str) -> str:
    """Build the session key for one workspace/room pair."""
    return f"{workspace_id}:{room_id}"


class RiskLevel(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class StepStatus(str, Enum):
    pending = "pending"
    awaiting_approval = "awaiting_approval"
    success = "success"
    failed = "failed"
    denied = "denied"
    skipped = "skipped"


class OutcomeStatus(str, Enum):
    success = "success"
    failed = "failed"
    denied = "denied"
    skipped = "skipped"


class SessionStatus(str, Enum):
    running = "running"
    awaiting_approval = "awaiting_approval"
    completed = "completed"
    abandoned = "abandoned"


class DecisionKind(str, Enum):
    approve = "approve"
    deny = "deny"
    approve_all = "approve_all"


class ResolutionKind(str, Enum):
    approved = "approved"
    approved_all = "approved_all"
    denied = "denied"


class SessionEventType(str, Enum):
    plan_started = "plan.started"
    step_preflight = "step.preflight"
    step_denied_by_policy = "step.denied_by_policy"
    approval_requested = "approval.requested"
    approval_resolved = "approval.resolved"
    approval_auto_approved = "approval.auto_approved"
    action_executed = "action.executed"
    action_failed = "action.failed"
    plan_completed = "plan.completed"
    plan_abandoned = "plan.abandoned"


class ActionSpec(FrozenSchema):
    """Published contract of one executable action.

    ``capabilities`` keeps declaration order so preflight reasons are stable.
    """

    name: str = Field(min_length=1)
    version: str = "1"
    description: str = ""
    params_schema: Dict[str, Any] = Field(default_factory=dict)
    result_schema: Dict[str, Any] = Field(default_factory=dict)
    risk: RiskLevel = RiskLevel.low
    requires_approval: bool = False
    capabilities: Tuple[str, ...] = ()

    @field_validator("capabilities", mode="before")
    @classmethod
    def _dedupe_capabilities(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            seen: list[str] = []
            for cap in value:
                if cap not in seen:
                    seen.append(cap)
            return tuple(seen)
        return value


class PlanStep(FrozenSchema):
    id: str = Field(min_length=1)
    action: str = Field(min_length=1)
    params: Dict[str, Any] = Field(default_factory=dict)
    note: Optional[str] = None
    requires_approval: Optional[bool] = None


class Plan(FrozenSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    steps: Tuple[PlanStep, ...] = ()


class PreflightReport(FrozenSchema):
    action: str
    allowed: bool
    reasons: Tuple[str, ...] = ()
    risk: RiskLevel
    requires_approval: bool
    capabilities: Tuple[str, ...] = ()
    paths: Tuple[str, ...] = ()

    def summary(self) -> str:
        """One-line verdict used in outcomes and logs."""
        if self.allowed:
            return "ok"
        if not self.reasons:
            return "blocked"
        return f"blocked: {'; '.join(self.reasons)}"


class ApprovalRequest(BaseSchema):
    id: str
    session_id: str
    plan_id: str
    step_id: str
    action: str
    risk: RiskLevel
    summary: str
    created_at: datetime = Field(default_factory=_utc_now)


class ApprovalDecision(BaseSchema):
    approval_id: str
    decision: DecisionKind
    sender_id: Optional[str] = None


class Resolution(BaseSchema):
    request: ApprovalRequest
    kind: ResolutionKind
    sender_id: Optional[str] = None

    @property
    def approved(self) -> bool:
        return self.kind != ResolutionKind.denied


class ExecutionOutcome(BaseSchema):
    step_id: str
    action: str
    status: OutcomeStatus
    message: str = ""
    result: Any = None
    raw_output: Optional[str] = None
    reasons: List[str] = Field(default_factory=list)


class StepSummary(BaseSchema):
    step_id: str
    action: str
    status: StepStatus


class Summary(BaseSchema):
    text: str
    steps: List[StepSummary] = Field(default_factory=list)
    counts: Dict[str, int] = Field(default_factory=dict)


class Session(BaseSchema):
    id: str
    workspace_id: str
    room_id: str

    plan: Plan
    status: SessionStatus = SessionStatus.running
    current_index: int = 0
    step_status: Dict[str, StepStatus] = Field(default_factory=dict)
    outcomes: List[ExecutionOutcome] = Field(default_factory=list)

    approve_all: bool = False
    dry_run: Optional[bool] = None
    pending_approval: Optional[ApprovalRequest] = None
    summary: Optional[Summary] = None

    in_reply_to: Optional[str] = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @property
    def is_active(self) -> bool:
        return self.status in {SessionStatus.running, SessionStatus.awaiting_approval}

    def touch(self) -> None:
        self.updated_at = _utc_now()


class SessionEvent(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    session_id: str

    type: SessionEventType
    created_at: datetime = Field(default_factory=_utc_now)

    payload: Dict[str, Any] = Field(default_factory=dict)
