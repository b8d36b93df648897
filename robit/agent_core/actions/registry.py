from __future__ import annotations

"""Action registry.

The registry maps an action name (``fs.read_file``, ``shell.run``, ...) to the
handler that implements it.

The runtime engine uses this registry to resolve ``PlanStep.action`` values
into handlers, and the service uses ``list`` to publish the action catalogue.
"""

import logging
from typing import Dict, List, Optional

from ..errors import DuplicateActionError, UnknownActionError
from ..schemas.domain import ActionSpec
from .base import ActionHandler

logger = logging.getLogger(__name__)


class ActionRegistry:
    """
    In-memory mapping of action names to handlers.

    The registry is populated once at startup and then only read, so sessions
    may share it without locking.

    Notes:
        - ``register`` refuses to overwrite an existing name.
        - ``get`` raises ``UnknownActionError``; ``lookup`` returns None.
    """

    def __init__(self) -> None:
        """Initialize an empty action registry."""
        self._handlers: Dict[str, ActionHandler] = {}

    def register(self, handler: ActionHandler) -> None:
        """
        Register an action handler under ``handler.spec.name``.

        Args:
            handler: The handler instance to register.

        Raises:
            DuplicateActionError: If the name is already registered.
        """
        name = handler.spec.name
        if name in self._handlers:
            raise DuplicateActionError(name)
        self._handlers[name] = handler
        logger.debug(f"Registered action '{name}'")

    def lookup(self, name: str) -> Optional[ActionHandler]:
        return self._handlers.get(name)

    def get(self, name: str) -> ActionHandler:
        """
        Retrieve a registered handler by name.

        Raises:
            UnknownActionError: If no handler is registered with the given name.
        """
        handler = self._handlers.get(name)
        if handler is None:
            raise UnknownActionError(name)
        return handler

    def has(self, name: str) -> bool:
        return name in self._handlers

    def list(self) -> List[ActionSpec]:
        """Return every registered spec, sorted by name."""
        return [self._handlers[name].spec for name in sorted(self._handlers)]

    def __len__(self) -> int:
        return len(self._handlers)
