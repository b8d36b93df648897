from __future__ import annotations

from typing import Optional, Protocol

from ..agent_core.protocol import Envelope


class Adapter(Protocol):
    """Message source and sink for one transport.

    ``receive`` returns None once the transport is closed; the service then
    stops reading from it.
    """

    async def receive(self) -> Optional[Envelope]: ...

    async def send(self, envelope: Envelope) -> None: ...
