from __future__ import annotations

"""Policy document loading.

The policy document is a TOML file with two optional tables::

    [policy]
    allowed_roots = ["~/projects"]
    approval_risk_levels = ["medium", "high"]
    dry_run = false

    [preflight]
    strict = true
    denied_capabilities = ["system_control"]
    blocked_roots = ["/etc"]

Lookup order for the document:

1) ``ROBIT_CONFIG_PATH`` (settings ``config_path``); the file must exist
2) ``<cwd>/configs/policy.toml``
3) ``<cwd>/robit.toml``
4) built-in defaults
"""

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from ...core.config import RobitSettings
from ...core.config import settings as default_settings
from ..errors import ConfigError
from .models import PolicyConfig

logger = logging.getLogger(__name__)

CANDIDATE_FILES = (Path("configs") / "policy.toml", Path("robit.toml"))

POLICY_TABLE_KEYS = frozenset(
    {"version", "allowed_roots", "approval_risk_levels", "dry_run", "max_params_bytes"}
)
PREFLIGHT_TABLE_KEYS = frozenset(
    {
        "enabled",
        "strict",
        "allowed_capabilities",
        "denied_capabilities",
        "blocked_roots",
        "enforce_policy_roots",
        "path_keys",
    }
)


def resolve_config_path(settings: Optional[RobitSettings] = None, *, cwd: Optional[str] = None) -> Optional[Path]:
    """
    Find the policy document to load.

    Args:
        settings: Process settings; defaults to the module-level settings.
        cwd: Directory used for the working-directory candidates.

    Returns:
        The path of the document, or None when built-in defaults apply.

    Raises:
        ConfigError: If ``ROBIT_CONFIG_PATH`` names a file that does not exist.
    """
    s = settings or default_settings
    base = Path(cwd or os.getcwd())
    if s.config_path and s.config_path.strip():
        explicit = Path(s.config_path.strip()).expanduser()
        if not explicit.is_absolute():
            explicit = base / explicit
        if not explicit.is_file():
            raise ConfigError(f"policy document not found: {explicit}")
        return explicit
    for candidate in CANDIDATE_FILES:
        path = base / candidate
        if path.is_file():
            return path
    return None


def _table(doc: Mapping[str, Any], name: str, allowed: frozenset[str]) -> Dict[str, Any]:
    raw = doc.get(name)
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"[{name}] must be a table")
    unknown = sorted(set(raw) - allowed)
    if unknown:
        raise ConfigError(f"unknown key(s) in [{name}]: {', '.join(unknown)}")
    return dict(raw)


def parse_policy_document(
    doc: Mapping[str, Any],
    *,
    base_dir: Optional[str] = None,
    home_dir: Optional[str] = None,
) -> PolicyConfig:
    """
    Build a ``PolicyConfig`` from an already parsed TOML document.

    Keys missing from the document keep their defaults. ``allowed_roots``
    from the document replaces the default (cwd, home) list entirely.

    Raises:
        ConfigError: If a table is malformed or a value fails validation.
    """
    unknown_tables = sorted(set(doc) - {"policy", "preflight"})
    if unknown_tables:
        raise ConfigError(f"unknown table(s) in policy document: {', '.join(unknown_tables)}")

    values: Dict[str, Any] = {}
    values.update(_table(doc, "policy", POLICY_TABLE_KEYS))
    values.update(_table(doc, "preflight", PREFLIGHT_TABLE_KEYS))
    if base_dir is not None:
        values["base_dir"] = base_dir
    if home_dir is not None:
        values["home_dir"] = home_dir

    try:
        return PolicyConfig.model_validate(values)
    except ValidationError as e:
        raise ConfigError(f"invalid policy document: {e}") from e


def load_policy_file(path: Path, *, base_dir: Optional[str] = None) -> PolicyConfig:
    """Read and parse one policy document."""
    try:
        with path.open("rb") as fh:
            doc = tomllib.load(fh)
    except OSError as e:
        raise ConfigError(f"cannot read policy document {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"malformed policy document {path}: {e}") from e
    return parse_policy_document(doc, base_dir=base_dir)


def load_policy_config(settings: Optional[RobitSettings] = None, *, cwd: Optional[str] = None) -> PolicyConfig:
    """
    Resolve and load the active policy.

    Args:
        settings: Process settings; defaults to the module-level settings.
        cwd: Working directory for candidate lookup and relative paths.

    Returns:
        The loaded policy, or ``PolicyConfig()`` defaults when no document exists.

    Raises:
        ConfigError: If the document is missing (explicit path), unreadable or invalid.
    """
    path = resolve_config_path(settings, cwd=cwd)
    if path is None:
        logger.info("No policy document found; using built-in defaults")
        if cwd is not None:
            return PolicyConfig(base_dir=cwd)
        return PolicyConfig()
    logger.info(f"Loading policy document from {path}")
    return load_policy_file(path, base_dir=cwd)
