from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, ClassVar, Optional, Tuple

from pydantic import Field

from ..schemas.domain import RiskLevel
from .base import ActionContext, ActionOutput, ActionParams, ActionResult, BaseAction

logger = logging.getLogger(__name__)

OUTPUT_LIMIT = 4000
DEFAULT_TIMEOUT_SECONDS = 600.0


class ShellRunParams(ActionParams):
    command: str = Field(min_length=1)
    cwd: Optional[str] = None
    timeout: Optional[float] = Field(default=None, gt=0)
    dry_run: bool = False


class ShellRunOutput(ActionOutput):
    command: str
    cwd: Optional[str] = None
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    truncated: bool = False
    dry_run: bool


def _truncate(text: str) -> Tuple[str, bool]:
    if len(text) > OUTPUT_LIMIT:
        return text[:OUTPUT_LIMIT], True
    return text, False


@dataclass(frozen=True)
class ShellRunAction(BaseAction):
    """
    Run a shell command through ``sh -lc``.

    Output streams are truncated to ``OUTPUT_LIMIT`` characters each. A
    non-zero exit code yields ``ok=False`` so the step is recorded as failed.
    Nothing is sandboxed; the approval gate is the only protection.
    """

    name: ClassVar[str] = "shell.run"
    description: ClassVar[str] = "Run a shell command (macOS/Linux)."
    risk: ClassVar[RiskLevel] = RiskLevel.high
    requires_approval: ClassVar[bool] = True
    capabilities: ClassVar[Tuple[str, ...]] = ("shell", "process")
    params_model: ClassVar[type] = ShellRunParams
    result_model: ClassVar[type] = ShellRunOutput

    shell: str = "sh"

    async def execute(self, ctx: ActionContext, *, params: Any) -> ActionResult:
        command = params.command.strip()
        if not command:
            return self.failure("command cannot be empty")

        cwd: Optional[str] = None
        if params.cwd:
            cwd = self.checked_path(params.cwd, ctx)
            if not os.path.exists(cwd):
                return self.failure(f"cwd does not exist: {cwd}")
            if not os.path.isdir(cwd):
                return self.failure(f"cwd is not a directory: {cwd}")

        if ctx.dry_run or params.dry_run:
            return self.result(True, f"dry run: would run `{command}`", command=command, cwd=cwd, dry_run=True)

        logger.info(f"Running shell command for {ctx.session_id}/{ctx.step_id}: {command}")
        proc = await asyncio.create_subprocess_exec(
            self.shell,
            "-lc",
            command,
            cwd=cwd or ctx.cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        timeout = params.timeout or DEFAULT_TIMEOUT_SECONDS
        try:
            out_b, err_b = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return self.failure(f"command timed out after {timeout:g}s: {command}")

        stdout, out_cut = _truncate(out_b.decode("utf-8", errors="replace"))
        stderr, err_cut = _truncate(err_b.decode("utf-8", errors="replace"))
        exit_code = proc.returncode if proc.returncode is not None else -1
        ok = exit_code == 0
        summary = f"command exited with {exit_code}" if ok else f"command failed with {exit_code}"
        return self.result(
            ok,
            summary,
            raw_output=stdout if ok else (stderr or stdout),
            command=command,
            cwd=cwd,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            truncated=out_cut or err_cut,
            dry_run=False,
        )
