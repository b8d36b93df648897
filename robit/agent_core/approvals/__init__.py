"""Human approval bookkeeping for suspended sessions."""

from .coordinator import ApprovalCoordinator

__all__ = ["ApprovalCoordinator"]
