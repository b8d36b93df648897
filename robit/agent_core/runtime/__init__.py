"""Runtime execution engine.

``ExecutionEngine`` drives plan steps through preflight, approval and the
action handlers, persisting the ``Session`` after every step so a suspended
session can be resumed later, even by a different process.
"""

from .engine import ExecutionEngine
from .models import EngineDeps
from .summary import summarize

__all__ = ["EngineDeps", "ExecutionEngine", "summarize"]
