"""Policy subsystem: static configuration and preflight evaluation.

Components
----------

- ``PolicyConfig``: immutable capability, path and approval-routing settings,
  shared read-only by every session.
- ``evaluate``: pure preflight check of one step against the policy;
  ``raise_for_denial`` turns a refusing report into ``PolicyDenial``.
- ``effective_requires_approval``: the single place where approval sources
  are merged.
- ``load_policy_config``: resolves and parses the TOML policy document.
"""

from .loader import load_policy_config, parse_policy_document, resolve_config_path
from .models import PolicyConfig, risk_ge
from .preflight import effective_requires_approval, evaluate, raise_for_denial

__all__ = [
    "PolicyConfig",
    "effective_requires_approval",
    "evaluate",
    "load_policy_config",
    "parse_policy_document",
    "raise_for_denial",
    "resolve_config_path",
    "risk_ge",
]
