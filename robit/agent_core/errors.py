from __future__ import annotations

"""Error types for the robit agent core.

Only ``ConfigError`` is allowed to end the process, and only at startup.
Every other error is converted by the engine or the service into a step-level
outcome or a chat response.
"""


class RobitError(Exception):
    """Base error for all robit exceptions."""


class ConfigError(RobitError):
    """Raised when the policy document or settings are missing or malformed."""


class RegistryError(RobitError):
    """Base error for action registry failures."""


class DuplicateActionError(RegistryError):
    """Raised when an action name is registered twice."""

    def __init__(self, name: str) -> None:
        super().__init__(f"action already registered: '{name}'")
        self.name = name


class UnknownActionError(RegistryError):
    """Raised when a plan step references an action that is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"unknown action: '{name}'")
        self.name = name


class PolicyDenial(RobitError):
    """Raised when preflight refuses a step; carries the ordered reasons."""

    def __init__(self, action: str, reasons: list[str]) -> None:
        super().__init__(f"action '{action}' denied by policy: {'; '.join(reasons) or 'blocked'}")
        self.action = action
        self.reasons = list(reasons)


class ApprovalError(RobitError):
    """Base error for approval protocol violations between adapter and engine."""


class DuplicatePendingError(ApprovalError):
    """Raised when a session already has an outstanding approval request."""

    def __init__(self, session_id: str, approval_id: str) -> None:
        super().__init__(f"session '{session_id}' already has a pending approval: '{approval_id}'")
        self.session_id = session_id
        self.approval_id = approval_id


class UnknownApprovalIdError(ApprovalError):
    """Raised when a decision references no known approval request."""

    def __init__(self, approval_id: str) -> None:
        super().__init__(f"approval id not found: '{approval_id}'")
        self.approval_id = approval_id


class AlreadyResolvedError(ApprovalError):
    """Raised when a decision targets an approval that was already resolved."""

    def __init__(self, approval_id: str) -> None:
        super().__init__(f"approval already resolved: '{approval_id}'")
        self.approval_id = approval_id


class HandlerError(RobitError):
    """Raised by action handlers for action-specific failures."""


class PlanValidationError(RobitError):
    """Raised when a plan is rejected before any of its steps run."""


class SessionBusyError(RobitError):
    """Raised when a new plan is submitted while the session still runs another."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"session '{session_id}' already has a plan in progress")
        self.session_id = session_id
