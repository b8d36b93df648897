from __future__ import annotations

import asyncio
import logging
import webbrowser
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Optional, Tuple

from pydantic import Field

from ..errors import HandlerError
from ..schemas.domain import RiskLevel
from .base import ActionContext, ActionOutput, ActionParams, ActionResult, BaseAction

logger = logging.getLogger(__name__)


class BrowserOpenParams(ActionParams):
    url: str = Field(min_length=1)
    app: Optional[str] = None
    dry_run: bool = False


class BrowserOpenOutput(ActionOutput):
    url: str
    app: Optional[str] = None
    dry_run: bool


def _open_with_webbrowser(url: str, app: Optional[str]) -> bool:
    browser = webbrowser.get(app) if app else webbrowser.get()
    return browser.open(url, new=2)


@dataclass(frozen=True)
class BrowserOpenUrlAction(BaseAction):
    """Open a URL in the user's browser (a named one when ``app`` is given)."""

    name: ClassVar[str] = "browser.open_url"
    description: ClassVar[str] = "Open a URL in a browser."
    risk: ClassVar[RiskLevel] = RiskLevel.medium
    requires_approval: ClassVar[bool] = True
    capabilities: ClassVar[Tuple[str, ...]] = ("browser",)
    params_model: ClassVar[type] = BrowserOpenParams
    result_model: ClassVar[type] = BrowserOpenOutput

    opener: Callable[[str, Optional[str]], bool] = _open_with_webbrowser

    async def execute(self, ctx: ActionContext, *, params: Any) -> ActionResult:
        url = params.url.strip()
        where = params.app or "the default browser"
        if ctx.dry_run or params.dry_run:
            return self.result(True, f"dry run: would open {url} in {where}", url=url, app=params.app, dry_run=True)

        try:
            opened = await asyncio.to_thread(self.opener, url, params.app)
        except webbrowser.Error as e:
            raise HandlerError(f"failed to open browser: {e}") from e
        if not opened:
            return self.failure(f"browser refused to open {url}")
        return self.result(True, f"opened {url} in {where}", url=url, app=params.app, dry_run=False)
