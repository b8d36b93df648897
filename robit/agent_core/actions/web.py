from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Optional, Tuple

import httpx
from pydantic import Field

from ..errors import HandlerError
from ..schemas.domain import RiskLevel
from .base import ActionContext, ActionOutput, ActionParams, ActionResult, BaseAction

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 20_000
DEFAULT_TIMEOUT_SECONDS = 20.0
BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"


class FetchUrlParams(ActionParams):
    url: str = Field(min_length=1)
    max_chars: Optional[int] = Field(default=None, ge=1)


class FetchUrlOutput(ActionOutput):
    url: str
    status: Optional[int] = None
    content_type: Optional[str] = None
    body: str = ""
    truncated: bool = False


@dataclass(frozen=True)
class FetchUrlAction(BaseAction):
    """
    Fetch a URL via HTTP GET.

    ``transport`` lets callers (tests, proxies) swap the httpx transport.
    Responses with a 4xx/5xx status are returned with ``ok=False``; transport
    failures raise ``HandlerError``.
    """

    name: ClassVar[str] = "web.fetch_url"
    description: ClassVar[str] = "Fetch a URL via HTTP GET."
    risk: ClassVar[RiskLevel] = RiskLevel.medium
    requires_approval: ClassVar[bool] = True
    capabilities: ClassVar[Tuple[str, ...]] = ("network",)
    params_model: ClassVar[type] = FetchUrlParams
    result_model: ClassVar[type] = FetchUrlOutput

    timeout: float = DEFAULT_TIMEOUT_SECONDS
    transport: Optional[httpx.AsyncBaseTransport] = None

    async def execute(self, ctx: ActionContext, *, params: Any) -> ActionResult:
        url = params.url.strip()
        if not url.startswith(("http://", "https://")):
            return self.failure(f"unsupported url scheme: {url}")
        if ctx.dry_run:
            return self.result(True, f"dry run: would fetch {url}", url=url)

        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self.transport,
        ) as client:
            try:
                resp = await client.get(url)
            except httpx.HTTPError as e:
                raise HandlerError(f"failed to fetch {url}: {e}") from e

        body = resp.text
        max_chars = params.max_chars or DEFAULT_MAX_CHARS
        truncated = len(body) > max_chars
        out = body[:max_chars] if truncated else body
        return self.result(
            resp.is_success,
            f"fetched {url} ({resp.status_code})",
            raw_output=out,
            url=url,
            status=resp.status_code,
            content_type=resp.headers.get("content-type", ""),
            body=out,
            truncated=truncated,
        )


class BraveSearchParams(ActionParams):
    query: str = Field(min_length=1)
    api_key: Optional[str] = None
    count: Optional[int] = Field(default=None, ge=1, le=20)


class BraveSearchOutput(ActionOutput):
    query: str
    results: List[Dict[str, Any]] = Field(default_factory=list)


def _web_results(payload: Any) -> List[Dict[str, Any]]:
    web = payload.get("web") if isinstance(payload, dict) else None
    results = web.get("results") if isinstance(web, dict) else None
    if not isinstance(results, list):
        return []
    return [r for r in results if isinstance(r, dict)]


@dataclass(frozen=True)
class BraveSearchAction(BaseAction):
    """
    Search the web through the Brave Search API.

    The subscription token comes from the ``api_key`` parameter or, failing
    that, from the handler's ``api_key`` (``ROBIT_BRAVE_API_KEY``). Error
    statuses and transport failures raise ``HandlerError``.
    """

    name: ClassVar[str] = "web.search_brave"
    description: ClassVar[str] = "Search the web via Brave Search API."
    risk: ClassVar[RiskLevel] = RiskLevel.medium
    requires_approval: ClassVar[bool] = True
    capabilities: ClassVar[Tuple[str, ...]] = ("network",)
    params_model: ClassVar[type] = BraveSearchParams
    result_model: ClassVar[type] = BraveSearchOutput

    api_key: Optional[str] = None
    endpoint: str = BRAVE_SEARCH_URL
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    transport: Optional[httpx.AsyncBaseTransport] = None

    async def execute(self, ctx: ActionContext, *, params: Any) -> ActionResult:
        query = params.query.strip()
        if not query:
            return self.failure("query cannot be empty")
        api_key = (params.api_key or self.api_key or "").strip()
        if not api_key:
            return self.failure("api_key cannot be empty")
        if ctx.dry_run:
            return self.result(True, f"dry run: would search brave for '{query}'", query=query, results=[])

        query_params = {"q": query}
        if params.count is not None:
            query_params["count"] = str(params.count)
        headers = {"Accept": "application/json", "X-Subscription-Token": api_key}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                resp = await client.get(self.endpoint, params=query_params, headers=headers)
            except httpx.HTTPError as e:
                raise HandlerError(f"failed to call brave search: {e}") from e

        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        if not resp.is_success:
            raise HandlerError(f"brave search error {resp.status_code}: {payload}")

        results = _web_results(payload)
        logger.debug(f"Brave search for {ctx.session_id}/{ctx.step_id} returned {len(results)} result(s)")
        return self.result(True, f"brave search ok ({len(results)})", query=query, results=results)
