from __future__ import annotations

import os
from typing import Any, FrozenSet, Optional, Tuple

from pydantic import Field, field_validator

from ..schemas.base import FrozenSchema
from ..schemas.domain import RiskLevel

DEFAULT_PATH_KEYS: FrozenSet[str] = frozenset(
    {"path", "dir", "directory", "cwd", "file", "target", "src", "dst", "source", "destination"}
)


def _default_allowed_roots() -> Tuple[str, ...]:
    roots = [os.getcwd()]
    home = os.environ.get("HOME")
    if home:
        roots.append(home)
    return tuple(roots)


def _default_home_dir() -> Optional[str]:
    return os.environ.get("HOME") or None


class PolicyConfig(FrozenSchema):
    """
    Static policy for action execution.

    Loaded once at startup and shared by every session, so the model is
    frozen. To change policy, load a new instance and swap it in.

    ``base_dir`` and ``home_dir`` are captured when the config is built so
    that preflight can resolve relative and ``~`` paths without touching the
    process environment.
    """

    version: str = Field(default="policy-v1")

    enabled: bool = Field(default=True, description="Run capability and path gates at all.")
    strict: bool = Field(
        default=True,
        description="Deny paths outside allowed roots instead of only warning.",
    )
    dry_run: bool = Field(default=True, description="Default execution mode handed to action handlers.")

    allowed_capabilities: FrozenSet[str] = Field(
        default_factory=frozenset,
        description="If non-empty, every capability of an action must be listed here.",
    )
    denied_capabilities: FrozenSet[str] = Field(
        default_factory=frozenset,
        description="Capabilities that are always refused; wins over the allow set.",
    )

    blocked_roots: Tuple[str, ...] = Field(
        default=(),
        description="Path prefixes that are always refused; wins over allowed roots.",
    )
    allowed_roots: Tuple[str, ...] = Field(default_factory=_default_allowed_roots)
    enforce_policy_roots: bool = True

    approval_risk_levels: FrozenSet[RiskLevel] = Field(
        default=frozenset({RiskLevel.medium, RiskLevel.high}),
        description="Risk levels that always require approval regardless of the action default.",
    )
    path_keys: FrozenSet[str] = Field(default=DEFAULT_PATH_KEYS)

    base_dir: str = Field(default_factory=os.getcwd)
    home_dir: Optional[str] = Field(default_factory=_default_home_dir)

    max_params_bytes: int = Field(default=64_000, ge=1, le=5_000_000)

    @field_validator("allowed_capabilities", "denied_capabilities", "path_keys", mode="before")
    @classmethod
    def _lowercase_names(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple, set, frozenset)):
            return frozenset(str(v).strip().lower() for v in value if str(v).strip())
        return value

    @field_validator("approval_risk_levels", mode="before")
    @classmethod
    def _parse_risk_levels(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple, set, frozenset)):
            return frozenset(v.strip().lower() if isinstance(v, str) else v for v in value)
        return value


_RISK_ORDER = {RiskLevel.low: 0, RiskLevel.medium: 1, RiskLevel.high: 2}


def risk_ge(a: RiskLevel, b: RiskLevel) -> bool:
    """Check if risk level 'a' is greater than or equal to 'b'."""
    return _RISK_ORDER[a] >= _RISK_ORDER[b]
