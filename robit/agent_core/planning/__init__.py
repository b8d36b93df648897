"""Planning components.

The planning subsystem turns planner output into a validated ``Plan``. It
never executes anything; plans are consumed by
``robit.agent_core.runtime.ExecutionEngine``.
"""

from .parser import PlannerResponse, extract_json, parse_explicit_action, parse_planner_output
from .steps import PlanStepInput, build_plan, single_step_plan, validate_plan

__all__ = [
    "PlanStepInput",
    "PlannerResponse",
    "build_plan",
    "extract_json",
    "parse_explicit_action",
    "parse_planner_output",
    "single_step_plan",
    "validate_plan",
]
