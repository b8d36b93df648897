"""Schemas and DTOs for the agent core."""

from .domain import (
    ActionSpec,
    ApprovalDecision,
    ApprovalRequest,
    DecisionKind,
    ExecutionOutcome,
    OutcomeStatus,
    Plan,
    PlanStep,
    PreflightReport,
    Resolution,
    ResolutionKind,
    RiskLevel,
    Session,
    SessionEvent,
    SessionEventType,
    SessionStatus,
    StepStatus,
    StepSummary,
    Summary,
    session_id_for,
)

__all__ = [
    "ActionSpec",
    "ApprovalDecision",
    "ApprovalRequest",
    "DecisionKind",
    "ExecutionOutcome",
    "OutcomeStatus",
    "Plan",
    "PlanStep",
    "PreflightReport",
    "Resolution",
    "ResolutionKind",
    "RiskLevel",
    "Session",
    "SessionEvent",
    "SessionEventType",
    "SessionStatus",
    "StepStatus",
    "StepSummary",
    "Summary",
    "session_id_for",
]
