from __future__ import annotations

"""In-process adapter backed by two ``asyncio.Queue`` objects.

Useful for bridging chat rooms that live in the same process, and for tests:
push inbound envelopes with ``put``, read what the service sent with
``get_sent`` or ``sent``.
"""

import asyncio
from typing import List, Optional

from ..agent_core.protocol import Envelope
from .base import Adapter


class QueueAdapter(Adapter):
    def __init__(self) -> None:
        self._inbound: "asyncio.Queue[Optional[Envelope]]" = asyncio.Queue()
        self._outbound: "asyncio.Queue[Envelope]" = asyncio.Queue()
        self._sent: List[Envelope] = []

    async def put(self, envelope: Envelope) -> None:
        await self._inbound.put(envelope)

    async def close(self) -> None:
        """Signal end of input; ``receive`` returns None after queued envelopes."""
        await self._inbound.put(None)

    async def receive(self) -> Optional[Envelope]:
        return await self._inbound.get()

    async def send(self, envelope: Envelope) -> None:
        self._sent.append(envelope)
        await self._outbound.put(envelope)

    async def get_sent(self, timeout: float = 5.0) -> Envelope:
        return await asyncio.wait_for(self._outbound.get(), timeout=timeout)

    @property
    def sent(self) -> List[Envelope]:
        return list(self._sent)
