from __future__ import annotations

import json
from typing import Dict, Iterable, List, Optional

from ..schemas.domain import ExecutionOutcome, OutcomeStatus, Plan, StepStatus, StepSummary, Summary

BLOCK_LIMIT = 2000

_STATUS_FOR_OUTCOME = {
    OutcomeStatus.success: StepStatus.success,
    OutcomeStatus.failed: StepStatus.failed,
    OutcomeStatus.denied: StepStatus.denied,
    OutcomeStatus.skipped: StepStatus.skipped,
}


def _clip(text: str) -> str:
    if len(text) <= BLOCK_LIMIT:
        return text
    return f"{text[:BLOCK_LIMIT]}\n... ({len(text) - BLOCK_LIMIT} more chars)"


def output_block(outcome: ExecutionOutcome) -> Optional[str]:
    """
    Render what a step produced as a fenced block.

    The structured result is preferred; the raw output is the fallback for
    steps that only produced text. Denied and skipped steps never ran, so
    they have no block.
    """
    if outcome.status not in (OutcomeStatus.success, OutcomeStatus.failed):
        return None
    if outcome.result:
        body = json.dumps(outcome.result, indent=2, sort_keys=True, ensure_ascii=False, default=str)
        return f"```json\n{_clip(body)}\n```"
    if outcome.raw_output:
        return f"```\n{_clip(outcome.raw_output.rstrip())}\n```"
    return None


def summarize(outcomes: Iterable[ExecutionOutcome], plan: Plan) -> Summary:
    """
    Fold step outcomes into the session summary.

    Pure: nothing is re-executed. Steps without an outcome are reported as
    ``pending``. Counts always contain every outcome status, zero included.
    Each step line is followed by the step's output block, if any.
    """
    by_step: Dict[str, ExecutionOutcome] = {o.step_id: o for o in outcomes}
    counts: Dict[str, int] = {s.value: 0 for s in OutcomeStatus}
    steps: List[StepSummary] = []
    lines: List[str] = []

    for step in plan.steps:
        outcome = by_step.get(step.id)
        block = None
        if outcome is None:
            status = StepStatus.pending
            detail = ""
        else:
            status = _STATUS_FOR_OUTCOME[outcome.status]
            counts[outcome.status.value] += 1
            detail = outcome.message
            block = output_block(outcome)
        steps.append(StepSummary(step_id=step.id, action=step.action, status=status))
        line = f"- [{status.value}] {step.id} {step.action}"
        lines.append(f"{line}: {detail}" if detail else line)
        if block is not None:
            lines.append(block)

    header = (
        f"plan finished: {counts['success']} succeeded, {counts['failed']} failed, "
        f"{counts['denied']} denied, {counts['skipped']} skipped"
    )
    return Summary(text="\n".join([header, *lines]), steps=steps, counts=counts)
