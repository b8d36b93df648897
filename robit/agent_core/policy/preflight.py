from __future__ import annotations

"""Preflight evaluation for plan steps.

``evaluate`` is the single authority the engine consults before a step runs.
It answers two questions:

- may the step run at all (capability gate, path policy, parameter size)?
- does it need a human approval first?

The function is pure. Paths are resolved lexically against the
``base_dir``/``home_dir`` captured in ``PolicyConfig``; nothing is read from
the filesystem or the environment, so identical inputs always produce an
identical report.
"""

import json
import os
from pathlib import PurePath
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from ..errors import PolicyDenial
from ..schemas.domain import ActionSpec, PreflightReport, RiskLevel
from .models import PolicyConfig, risk_ge

BLOCKED_ROOT = "blocked_root"
CAPABILITY_DENIED = "capability_denied"
PATH_NOT_ALLOWED = "path_not_allowed"
PARAMS_TOO_LARGE = "params_too_large"
WARNING_PREFIX = "warning:"


def effective_requires_approval(
    spec: ActionSpec,
    policy: PolicyConfig,
    step_override: Optional[bool] = None,
) -> bool:
    """
    Merge every approval source into one decision.

    The result is a monotonic OR: the action default, an explicit ``True``
    from the plan step, and the policy's risk routing can each force approval,
    and none of them can lift a requirement set by another. High risk actions
    always require approval.

    Args:
        spec: The action being evaluated.
        policy: The active policy.
        step_override: ``PlanStep.requires_approval``; ``None`` defers to the action.

    Returns:
        True if a human must approve the step before it runs.
    """
    if spec.requires_approval or step_override is True:
        return True
    if risk_ge(spec.risk, RiskLevel.high):
        return True
    return spec.risk in policy.approval_risk_levels


def resolve_path(raw: str, *, base_dir: str, home_dir: Optional[str]) -> str:
    """Expand ``~`` and make ``raw`` absolute, using string operations only."""
    expanded = raw.strip()
    if home_dir and (expanded == "~" or expanded.startswith("~/")):
        expanded = home_dir + expanded[1:]
    if not os.path.isabs(expanded):
        expanded = os.path.join(base_dir, expanded)
    return os.path.normpath(expanded)


def is_under(path: str, root: str) -> bool:
    """Component-wise prefix check (``/data2`` is not under ``/data``)."""
    return PurePath(path).is_relative_to(PurePath(root))


def collect_paths(params: Any, path_keys: Iterable[str]) -> List[str]:
    """
    Collect string values stored under path-bearing keys.

    Objects are walked recursively; list items inherit the key of the list
    that holds them. Key matching is case-insensitive.
    """
    keys = {k.lower() for k in path_keys}
    out: List[str] = []

    def _walk(value: Any, key: Optional[str]) -> None:
        if isinstance(value, str):
            if key is not None and key.lower() in keys:
                out.append(value)
        elif isinstance(value, Mapping):
            for child_key, child in value.items():
                _walk(child, str(child_key))
        elif isinstance(value, (list, tuple)):
            for item in value:
                _walk(item, key)

    _walk(params, None)
    return out


def _capability_reasons(spec: ActionSpec, policy: PolicyConfig) -> List[str]:
    reasons: List[str] = []
    for cap in spec.capabilities:
        norm = cap.lower()
        if norm in policy.denied_capabilities:
            reasons.append(f"{CAPABILITY_DENIED}:{cap}")
        elif policy.allowed_capabilities and norm not in policy.allowed_capabilities:
            reasons.append(f"{CAPABILITY_DENIED}:{cap}")
    return reasons


def _path_reasons(paths: List[str], policy: PolicyConfig) -> Tuple[List[str], List[str]]:
    def _norm(root: str) -> str:
        return resolve_path(root, base_dir=policy.base_dir, home_dir=policy.home_dir)

    blocked = [_norm(r) for r in policy.blocked_roots]
    allowed = [_norm(r) for r in policy.allowed_roots]
    hard: List[str] = []
    warnings: List[str] = []

    for path in paths:
        root = next((b for b in blocked if is_under(path, b)), None)
        if root is not None:
            hard.append(f"{BLOCKED_ROOT}: {path} (under {root})")
            continue
        if not policy.enforce_policy_roots:
            continue
        if any(is_under(path, a) for a in allowed):
            continue
        if policy.strict:
            hard.append(f"{PATH_NOT_ALLOWED}: {path} is outside allowed roots")
        else:
            warnings.append(f"{WARNING_PREFIX} path outside allowed roots: {path}")
    return hard, warnings


def evaluate(
    spec: ActionSpec,
    params: Mapping[str, Any],
    policy: PolicyConfig,
    *,
    step_override: Optional[bool] = None,
) -> PreflightReport:
    """
    Evaluate one step against the policy.

    Steps:
    1. Capability gate: denied capabilities, or capabilities missing from a
       non-empty allow set, hard-deny with ``capability_denied:<cap>``.
    2. Path policy: every path-bearing parameter is resolved; blocked roots
       hard-deny, paths outside allowed roots hard-deny in strict mode and
       produce a warning otherwise.
    3. Parameter size limit.
    4. Approval routing via ``effective_requires_approval``.

    Args:
        spec: The registered action spec for the step.
        params: The concrete step parameters.
        policy: The active policy.
        step_override: The plan step's explicit ``requires_approval`` value.

    Returns:
        A frozen ``PreflightReport``. ``allowed`` is False only when a
        hard-deny reason was recorded; warnings never block.
    """
    requires_approval = effective_requires_approval(spec, policy, step_override)
    raw_paths = collect_paths(params, policy.path_keys)
    paths = [resolve_path(p, base_dir=policy.base_dir, home_dir=policy.home_dir) for p in raw_paths]

    if not policy.enabled:
        return PreflightReport(
            action=spec.name,
            allowed=True,
            reasons=(),
            risk=spec.risk,
            requires_approval=requires_approval,
            capabilities=spec.capabilities,
            paths=tuple(paths),
        )

    hard = _capability_reasons(spec, policy)
    path_hard, warnings = _path_reasons(paths, policy)
    hard.extend(path_hard)

    size = len(json.dumps(params, default=str, sort_keys=True).encode("utf-8"))
    if size > policy.max_params_bytes:
        hard.append(f"{PARAMS_TOO_LARGE}: {size} bytes exceeds {policy.max_params_bytes}")

    return PreflightReport(
        action=spec.name,
        allowed=not hard,
        reasons=tuple(hard + warnings),
        risk=spec.risk,
        requires_approval=requires_approval,
        capabilities=spec.capabilities,
        paths=tuple(paths),
    )


def raise_for_denial(report: PreflightReport) -> PreflightReport:
    """
    Return ``report`` unchanged when it allows the step.

    Raises:
        PolicyDenial: Carrying the report's reasons when the step is refused.
    """
    if not report.allowed:
        raise PolicyDenial(report.action, list(report.reasons))
    return report
