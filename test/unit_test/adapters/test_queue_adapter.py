from __future__ import annotations

import pytest

from robit.adapters.queue import QueueAdapter
from robit.agent_core.protocol import PingBody, PongBody, wrap


@pytest.mark.asyncio
async def test_receive_returns_queued_envelopes_then_none() -> None:
    adapter = QueueAdapter()
    env = wrap(PingBody())
    await adapter.put(env)
    await adapter.close()

    assert await adapter.receive() == env
    assert await adapter.receive() is None


@pytest.mark.asyncio
async def test_sent_envelopes_are_recorded() -> None:
    adapter = QueueAdapter()
    env = wrap(PongBody())

    await adapter.send(env)

    assert await adapter.get_sent(timeout=1.0) == env
    assert adapter.sent == [env]
