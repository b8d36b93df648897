from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import Field, ValidationError

from ..errors import PlanValidationError
from ..schemas.base import BaseSchema
from ..schemas.domain import Plan, PlanStep


class PlanStepInput(BaseSchema):
    """A plan step as received from a planner or an envelope; ``id`` may be omitted."""

    id: Optional[str] = None
    action: str
    params: Dict[str, Any] = Field(default_factory=dict)
    note: Optional[str] = None
    requires_approval: Optional[bool] = None


def validate_plan(plan: Plan) -> Plan:
    """
    Reject plans that must not start.

    Raises:
        PlanValidationError: For an empty plan, blank step ids or action
            names, or duplicate step ids.
    """
    if not plan.steps:
        raise PlanValidationError("plan has no steps")
    seen: set[str] = set()
    for pos, step in enumerate(plan.steps, start=1):
        if not step.id.strip():
            raise PlanValidationError(f"step {pos} has a blank id")
        if not step.action.strip():
            raise PlanValidationError(f"step '{step.id}' has a blank action name")
        if step.id in seen:
            raise PlanValidationError(f"duplicate step id: '{step.id}'")
        seen.add(step.id)
    return plan


def build_plan(raw_steps: Iterable[Mapping[str, Any] | PlanStepInput]) -> Plan:
    """
    Normalize raw step payloads into a validated ``Plan``.

    Steps without an id are numbered by position (``s1``, ``s2``, ...).
    Whitespace around ids and action names is stripped.
    """
    steps: List[PlanStep] = []
    try:
        for pos, raw in enumerate(raw_steps, start=1):
            if isinstance(raw, PlanStepInput):
                item = raw
            else:
                item = PlanStepInput.model_validate(dict(raw) if isinstance(raw, Mapping) else raw)
            step_id = (item.id or "").strip() or f"s{pos}"
            steps.append(
                PlanStep(
                    id=step_id,
                    action=item.action.strip(),
                    params=dict(item.params),
                    note=item.note,
                    requires_approval=item.requires_approval,
                )
            )
    except ValidationError as e:
        raise PlanValidationError(f"malformed plan step: {e}") from e
    return validate_plan(Plan(steps=tuple(steps)))


def single_step_plan(action: str, params: Optional[Mapping[str, Any]] = None) -> Plan:
    return build_plan([{"action": action, "params": dict(params or {})}])
