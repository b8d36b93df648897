from __future__ import annotations

from pathlib import Path
from typing import Iterable

import httpx
import pytest

from robit.agent_core.policy.models import PolicyConfig


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A directory that plays the role of cwd and $HOME for policy tests."""
    root = tmp_path / "ws"
    root.mkdir()
    return root


@pytest.fixture
def make_policy(workspace: Path):
    """Build a ``PolicyConfig`` rooted at the test workspace instead of the real cwd/home."""

    def _make(**overrides) -> PolicyConfig:
        values = {
            "base_dir": str(workspace),
            "home_dir": str(workspace),
            "allowed_roots": (str(workspace),),
        }
        values.update(overrides)
        return PolicyConfig(**values)

    return _make


@pytest.fixture(autouse=True)
def _global_offline_http_guard(monkeypatch: pytest.MonkeyPatch):
    allowed_prefixes: Iterable[str] = (
        "http://mock",
        "https://mock",
        "http://localhost",
        "http://127.0.0.1",
    )

    orig_async = httpx._client.AsyncClient.request

    def _is_allowed(url_str: str) -> bool:
        return any(url_str.startswith(p) for p in allowed_prefixes)

    async def offline_async(self, method, url, *args, **kwargs):
        url_str = str(url)
        if _is_allowed(url_str):
            return await orig_async(self, method, url, *args, **kwargs)
        raise RuntimeError(f"External HTTP blocked by global offline guard (async): {url_str}")

    monkeypatch.setattr(httpx._client.AsyncClient, "request", offline_async, raising=True)
