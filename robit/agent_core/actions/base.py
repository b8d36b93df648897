from __future__ import annotations

"""Action handler protocol and execution data models.

An action is the concrete execution unit behind a ``PlanStep``.

The runtime engine resolves ``PlanStep.action`` through an ``ActionRegistry``
and executes the handler with an ``ActionContext``.

Handlers should:

- validate their parameters with a pydantic model (``parse_params``),
- return structured outputs in ``ActionResult.output``,
- honour ``ActionContext.dry_run`` by describing instead of performing the
  side effect,
- report expected failures with ``ok=False`` or by raising ``HandlerError``;
  anything else raised is treated as a bug and logged with a traceback,
- leave policy decisions to preflight, except that filesystem paths go
  through ``BaseAction.checked_path`` so symlinks are checked by their
  real target.
"""

import os
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Protocol, Tuple, Type

from pydantic import BaseModel, ConfigDict

from ..errors import PolicyDenial
from ..policy.models import PolicyConfig
from ..policy.preflight import BLOCKED_ROOT, PATH_NOT_ALLOWED, is_under, resolve_path
from ..schemas.domain import ActionSpec, RiskLevel


@dataclass(frozen=True)
class ActionContext:
    """Execution context passed to action handlers.

    Attributes
    ----------
    cwd:
        Directory that relative path parameters are resolved against.
    dry_run:
        When True the handler must not perform its side effect.
    policy:
        The active ``PolicyConfig`` (read-only).
    session_id, step_id:
        Identify the step for logging.
    """

    cwd: str
    dry_run: bool
    policy: PolicyConfig
    session_id: str = ""
    step_id: str = ""


@dataclass(frozen=True)
class ActionResult:
    """Structured action execution result."""

    ok: bool
    summary: str
    output: Dict[str, Any]
    raw_output: Optional[str] = None


class ActionHandler(Protocol):
    """Protocol for action handler implementations."""

    @property
    def spec(self) -> ActionSpec: ...

    def parse_params(self, params: Mapping[str, Any]) -> BaseModel: ...

    async def execute(self, ctx: ActionContext, *, params: BaseModel) -> ActionResult: ...


class ActionParams(BaseModel):
    """Base model for handler parameters; unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")


class ActionOutput(BaseModel):
    """Base model for handler results."""


class BaseAction:
    """
    Convenience base for built-in handlers.

    Subclasses declare their contract as class attributes; the published
    ``ActionSpec`` derives ``params_schema`` and ``result_schema`` from the
    pydantic models so the catalogue never drifts from validation.
    """

    name: ClassVar[str]
    description: ClassVar[str] = ""
    version: ClassVar[str] = "1"
    risk: ClassVar[RiskLevel] = RiskLevel.low
    requires_approval: ClassVar[bool] = False
    capabilities: ClassVar[Tuple[str, ...]] = ()
    params_model: ClassVar[Type[ActionParams]] = ActionParams
    result_model: ClassVar[Type[ActionOutput]] = ActionOutput

    @property
    def spec(self) -> ActionSpec:
        return ActionSpec(
            name=self.name,
            version=self.version,
            description=self.description,
            params_schema=self.params_model.model_json_schema(),
            result_schema=self.result_model.model_json_schema(),
            risk=self.risk,
            requires_approval=self.requires_approval,
            capabilities=self.capabilities,
        )

    def parse_params(self, params: Mapping[str, Any]) -> BaseModel:
        return self.params_model.model_validate(dict(params))

    def result(self, ok: bool, summary: str, raw_output: Optional[str] = None, **fields: Any) -> ActionResult:
        """Build an ``ActionResult`` whose output is validated by ``result_model``."""
        output = self.result_model.model_validate(fields).model_dump(mode="json")
        return ActionResult(ok=ok, summary=summary, output=output, raw_output=raw_output)

    def failure(self, message: str) -> ActionResult:
        return ActionResult(ok=False, summary=message, output={"error": message})

    def checked_path(self, raw: str, ctx: ActionContext) -> str:
        """
        Resolve a path parameter and re-check where it really points.

        Preflight only sees the text of a path, so a symlink inside an allowed
        root can still lead into a blocked root. Every handler that touches
        the filesystem resolves its paths through here before using them.

        Raises:
            PolicyDenial: If the real path is under a blocked root, or outside
                the allowed roots while the policy is strict.
        """
        path = resolve_user_path(raw, ctx)
        reason = real_path_violation(path, ctx.policy)
        if reason is not None:
            raise PolicyDenial(self.name, [reason])
        return path

    async def execute(self, ctx: ActionContext, *, params: BaseModel) -> ActionResult:
        raise NotImplementedError


def resolve_user_path(raw: str, ctx: ActionContext) -> str:
    """Expand ``~`` and make ``raw`` absolute against the context directory."""
    expanded = raw.strip()
    home = ctx.policy.home_dir
    if home and (expanded == "~" or expanded.startswith("~/")):
        expanded = home + expanded[1:]
    if not os.path.isabs(expanded):
        expanded = os.path.join(ctx.cwd, expanded)
    return os.path.normpath(expanded)


def _real_roots(roots: Tuple[str, ...], policy: PolicyConfig) -> List[str]:
    return [os.path.realpath(resolve_path(r, base_dir=policy.base_dir, home_dir=policy.home_dir)) for r in roots]


def real_path_violation(path: str, policy: PolicyConfig) -> Optional[str]:
    """
    Check the symlink-resolved form of ``path`` against the policy roots.

    Roots are resolved the same way, so a root that is itself a symlink still
    matches. Blocked roots win over allowed roots; allowed roots only refuse
    in strict mode, mirroring preflight.

    Returns:
        A ``blocked_root``/``path_not_allowed`` reason, or None if the path may be used.
    """
    if not policy.enabled:
        return None
    real = os.path.realpath(path)
    for root in _real_roots(policy.blocked_roots, policy):
        if is_under(real, root):
            return f"{BLOCKED_ROOT}: {path} resolves to {real} (under {root})"
    if policy.enforce_policy_roots and policy.strict:
        if not any(is_under(real, root) for root in _real_roots(policy.allowed_roots, policy)):
            return f"{PATH_NOT_ALLOWED}: {path} resolves to {real}, outside allowed roots"
    return None
