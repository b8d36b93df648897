from __future__ import annotations

"""Filesystem actions: read, write, replace, list and ensure directories.

Path parameters are resolved against ``ActionContext.cwd`` with ``~``
expanded. Preflight has already checked them against the policy roots, so the
handlers only validate what preflight cannot know (existence, file type,
write mode).
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field

from ..schemas.domain import RiskLevel
from .base import ActionContext, ActionOutput, ActionParams, ActionResult, BaseAction

logger = logging.getLogger(__name__)

DEFAULT_READ_MAX_CHARS = 20_000
DEFAULT_LIST_MAX_ENTRIES = 200


class ReadFileParams(ActionParams):
    path: str = Field(min_length=1)
    max_chars: Optional[int] = Field(default=None, ge=1)


class ReadFileOutput(ActionOutput):
    path: str
    content: str
    truncated: bool
    chars: int
    total_chars: int


class WriteFileParams(ActionParams):
    path: str = Field(min_length=1)
    content: str
    mode: Literal["overwrite", "append", "create_only"] = "overwrite"
    create_parents: bool = True
    dry_run: bool = False


class WriteFileOutput(ActionOutput):
    path: str
    bytes: int
    mode: str
    dry_run: bool


class ReplaceTextParams(ActionParams):
    path: str = Field(min_length=1)
    find: str = Field(min_length=1)
    replace: str
    all: Optional[bool] = None
    count: Optional[int] = Field(default=None, ge=1)
    dry_run: bool = False


class ReplaceTextOutput(ActionOutput):
    path: str
    replaced: int
    dry_run: bool


class ListDirParams(ActionParams):
    path: str = Field(min_length=1)
    include_hidden: bool = False
    max_entries: Optional[int] = Field(default=None, ge=1)


class DirEntry(BaseModel):
    name: str
    kind: Literal["dir", "file", "other"]
    size: Optional[int] = None


class ListDirOutput(ActionOutput):
    path: str
    entries: List[DirEntry]
    truncated: bool


class EnsureDirParams(ActionParams):
    path: str = Field(min_length=1)
    create_parents: bool = True
    dry_run: bool = False


class EnsureDirOutput(ActionOutput):
    path: str
    created: bool
    dry_run: bool


def replace_n(haystack: str, needle: str, replacement: str, limit: int) -> Tuple[str, int]:
    """Replace at most ``limit`` occurrences, left to right."""
    if not needle or limit <= 0:
        return haystack, 0
    found = haystack.count(needle)
    replaced = min(found, limit)
    return haystack.replace(needle, replacement, replaced), replaced


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8") as fh:
        return fh.read()


def _write_text(path: str, content: str, mode: str) -> None:
    flags = {"overwrite": "w", "append": "a", "create_only": "x"}[mode]
    with open(path, flags, encoding="utf-8") as fh:
        fh.write(content)


@dataclass(frozen=True)
class ReadFileAction(BaseAction):
    """Read a text file, truncated to ``max_chars`` characters."""

    name: ClassVar[str] = "fs.read_file"
    description: ClassVar[str] = "Read a text file (optionally truncated)."
    risk: ClassVar[RiskLevel] = RiskLevel.low
    capabilities: ClassVar[Tuple[str, ...]] = ("filesystem",)
    params_model: ClassVar[type] = ReadFileParams
    result_model: ClassVar[type] = ReadFileOutput

    async def execute(self, ctx: ActionContext, *, params: Any) -> ActionResult:
        path = self.checked_path(params.path, ctx)
        if not os.path.exists(path):
            return self.failure(f"path does not exist: {path}")
        if not os.path.isfile(path):
            return self.failure(f"path is not a file: {path}")

        content = await asyncio.to_thread(_read_text, path)
        total_chars = len(content)
        max_chars = params.max_chars or DEFAULT_READ_MAX_CHARS
        truncated = total_chars > max_chars
        out = content[:max_chars] if truncated else content
        suffix = " (truncated)" if truncated else ""
        return self.result(
            True,
            f"read {len(out)} chars{suffix} from {path}",
            raw_output=out,
            path=path,
            content=out,
            truncated=truncated,
            chars=len(out),
            total_chars=total_chars,
        )


@dataclass(frozen=True)
class WriteFileAction(BaseAction):
    """Write text to a file in overwrite, append or create_only mode."""

    name: ClassVar[str] = "fs.write_file"
    description: ClassVar[str] = "Write text to a file (overwrite, append, or create_only)."
    risk: ClassVar[RiskLevel] = RiskLevel.medium
    requires_approval: ClassVar[bool] = True
    capabilities: ClassVar[Tuple[str, ...]] = ("filesystem",)
    params_model: ClassVar[type] = WriteFileParams
    result_model: ClassVar[type] = WriteFileOutput

    async def execute(self, ctx: ActionContext, *, params: Any) -> ActionResult:
        path = self.checked_path(params.path, ctx)
        if params.mode == "create_only" and os.path.exists(path):
            return self.failure(f"file already exists: {path}")
        parent = os.path.dirname(path)
        if parent and not os.path.isdir(parent) and not params.create_parents:
            return self.failure(f"parent directory does not exist: {parent}")

        dry_run = ctx.dry_run or params.dry_run
        size = len(params.content.encode("utf-8"))
        if dry_run:
            summary = f"dry run: would write {size} bytes to {path}"
        else:
            if params.create_parents and parent:
                await asyncio.to_thread(os.makedirs, parent, exist_ok=True)
            await asyncio.to_thread(_write_text, path, params.content, params.mode)
            summary = f"wrote {size} bytes to {path}"
        return self.result(True, summary, path=path, bytes=size, mode=params.mode, dry_run=dry_run)


@dataclass(frozen=True)
class ReplaceTextAction(BaseAction):
    """Replace occurrences of ``find`` in a text file.

    Without ``count`` every occurrence is replaced; with ``count`` only the
    first ``count`` are, unless ``all`` is set explicitly.
    """

    name: ClassVar[str] = "fs.replace_text"
    description: ClassVar[str] = "Replace text in a file."
    risk: ClassVar[RiskLevel] = RiskLevel.medium
    requires_approval: ClassVar[bool] = True
    capabilities: ClassVar[Tuple[str, ...]] = ("filesystem",)
    params_model: ClassVar[type] = ReplaceTextParams
    result_model: ClassVar[type] = ReplaceTextOutput

    async def execute(self, ctx: ActionContext, *, params: Any) -> ActionResult:
        path = self.checked_path(params.path, ctx)
        if not os.path.exists(path):
            return self.failure(f"path does not exist: {path}")
        if not os.path.isfile(path):
            return self.failure(f"path is not a file: {path}")

        dry_run = ctx.dry_run or params.dry_run
        content = await asyncio.to_thread(_read_text, path)
        do_all = params.all if params.all is not None else params.count is None
        if do_all:
            replaced = content.count(params.find)
            updated = content.replace(params.find, params.replace)
        else:
            updated, replaced = replace_n(content, params.find, params.replace, params.count or 1)

        if not dry_run and replaced > 0:
            await asyncio.to_thread(_write_text, path, updated, "overwrite")

        if dry_run:
            summary = f"dry run: would replace {replaced} occurrence(s) in {path}"
        else:
            summary = f"replaced {replaced} occurrence(s) in {path}"
        return self.result(True, summary, path=path, replaced=replaced, dry_run=dry_run)


@dataclass(frozen=True)
class ListDirAction(BaseAction):
    name: ClassVar[str] = "fs.list_dir"
    description: ClassVar[str] = "List entries in a directory."
    risk: ClassVar[RiskLevel] = RiskLevel.low
    capabilities: ClassVar[Tuple[str, ...]] = ("filesystem",)
    params_model: ClassVar[type] = ListDirParams
    result_model: ClassVar[type] = ListDirOutput

    async def execute(self, ctx: ActionContext, *, params: Any) -> ActionResult:
        path = self.checked_path(params.path, ctx)
        if not os.path.exists(path):
            return self.failure(f"path does not exist: {path}")
        if not os.path.isdir(path):
            return self.failure(f"path is not a directory: {path}")

        max_entries = params.max_entries or DEFAULT_LIST_MAX_ENTRIES
        entries: List[Dict[str, Any]] = []
        truncated = False
        with os.scandir(path) as it:
            for entry in sorted(it, key=lambda e: e.name):
                if not params.include_hidden and entry.name.startswith("."):
                    continue
                if len(entries) >= max_entries:
                    truncated = True
                    break
                if entry.is_dir():
                    kind = "dir"
                elif entry.is_file():
                    kind = "file"
                else:
                    kind = "other"
                try:
                    size: Optional[int] = entry.stat().st_size
                except OSError:
                    size = None
                entries.append({"name": entry.name, "kind": kind, "size": size})

        suffix = " (truncated)" if truncated else ""
        return self.result(
            True,
            f"listed {len(entries)} entries{suffix} in {path}",
            raw_output="\n".join(e["name"] for e in entries),
            path=path,
            entries=entries,
            truncated=truncated,
        )


@dataclass(frozen=True)
class EnsureDirAction(BaseAction):
    name: ClassVar[str] = "fs.ensure_dir"
    description: ClassVar[str] = "Ensure a directory exists."
    risk: ClassVar[RiskLevel] = RiskLevel.medium
    requires_approval: ClassVar[bool] = True
    capabilities: ClassVar[Tuple[str, ...]] = ("filesystem",)
    params_model: ClassVar[type] = EnsureDirParams
    result_model: ClassVar[type] = EnsureDirOutput

    async def execute(self, ctx: ActionContext, *, params: Any) -> ActionResult:
        path = self.checked_path(params.path, ctx)
        if os.path.exists(path) and not os.path.isdir(path):
            return self.failure(f"path exists and is not a directory: {path}")

        dry_run = ctx.dry_run or params.dry_run
        existed = os.path.isdir(path)
        if not dry_run and not existed:
            if params.create_parents:
                await asyncio.to_thread(os.makedirs, path, exist_ok=True)
            else:
                await asyncio.to_thread(os.mkdir, path)

        created = not existed
        if dry_run:
            summary = f"dry run: would ensure directory exists at {path}"
        elif created:
            summary = f"created directory {path}"
        else:
            summary = f"directory already exists at {path}"
        return self.result(True, summary, path=path, created=created, dry_run=dry_run)
