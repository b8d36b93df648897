from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from robit.agent_core.actions.base import ActionContext, real_path_violation
from robit.agent_core.actions.fs_ops import (
    EnsureDirAction,
    ListDirAction,
    ReadFileAction,
    ReplaceTextAction,
    WriteFileAction,
    replace_n,
)
from robit.agent_core.actions.shell import ShellRunAction
from robit.agent_core.errors import PolicyDenial


@pytest.fixture
def ctx(make_policy, workspace: Path) -> ActionContext:
    return ActionContext(cwd=str(workspace), dry_run=False, policy=make_policy(dry_run=False))


@pytest.fixture
def dry_ctx(make_policy, workspace: Path) -> ActionContext:
    return ActionContext(cwd=str(workspace), dry_run=True, policy=make_policy())


async def _run(handler, ctx, **params):
    return await handler.execute(ctx, params=handler.parse_params(params))


@pytest.mark.asyncio
async def test_read_file_truncates(ctx: ActionContext, workspace: Path) -> None:
    (workspace / "a.txt").write_text("hello world")

    res = await _run(ReadFileAction(), ctx, path="a.txt", max_chars=5)

    assert res.ok is True
    assert res.output["content"] == "hello"
    assert res.output["truncated"] is True
    assert res.output["total_chars"] == 11
    assert res.summary == f"read 5 chars (truncated) from {workspace / 'a.txt'}"


@pytest.mark.asyncio
async def test_read_file_missing_fails(ctx: ActionContext) -> None:
    res = await _run(ReadFileAction(), ctx, path="missing.txt")

    assert res.ok is False
    assert "path does not exist" in res.output["error"]


@pytest.mark.asyncio
async def test_write_file_modes(ctx: ActionContext, workspace: Path) -> None:
    handler = WriteFileAction()

    res = await _run(handler, ctx, path="out/notes.txt", content="one")
    assert res.ok is True
    assert res.output == {"path": str(workspace / "out" / "notes.txt"), "bytes": 3, "mode": "overwrite", "dry_run": False}

    await _run(handler, ctx, path="out/notes.txt", content="two", mode="append")
    assert (workspace / "out" / "notes.txt").read_text() == "onetwo"

    res = await _run(handler, ctx, path="out/notes.txt", content="x", mode="create_only")
    assert res.ok is False
    assert "already exists" in res.summary


@pytest.mark.asyncio
async def test_write_file_dry_run_touches_nothing(dry_ctx: ActionContext, workspace: Path) -> None:
    res = await _run(WriteFileAction(), dry_ctx, path="notes.txt", content="hello")

    assert res.ok is True
    assert res.summary.startswith("dry run: would write 5 bytes to ")
    assert not (workspace / "notes.txt").exists()


@pytest.mark.asyncio
async def test_write_file_param_dry_run_overrides_context(ctx: ActionContext, workspace: Path) -> None:
    res = await _run(WriteFileAction(), ctx, path="notes.txt", content="hello", dry_run=True)

    assert res.output["dry_run"] is True
    assert not (workspace / "notes.txt").exists()


def test_write_file_rejects_unknown_mode() -> None:
    with pytest.raises(ValidationError):
        WriteFileAction().parse_params({"path": "x", "content": "y", "mode": "truncate"})


@pytest.mark.asyncio
async def test_replace_text_all_and_count(ctx: ActionContext, workspace: Path) -> None:
    target = workspace / "t.txt"
    target.write_text("a a a")

    res = await _run(ReplaceTextAction(), ctx, path="t.txt", find="a", replace="b", count=2)
    assert res.output["replaced"] == 2
    assert target.read_text() == "b b a"

    res = await _run(ReplaceTextAction(), ctx, path="t.txt", find="b", replace="c")
    assert res.output["replaced"] == 2
    assert target.read_text() == "c c a"


@pytest.mark.asyncio
async def test_replace_text_dry_run(dry_ctx: ActionContext, workspace: Path) -> None:
    target = workspace / "t.txt"
    target.write_text("x x")

    res = await _run(ReplaceTextAction(), dry_ctx, path="t.txt", find="x", replace="y")

    assert res.summary.startswith("dry run: would replace 2 occurrence(s)")
    assert target.read_text() == "x x"


def test_replace_n() -> None:
    assert replace_n("aaaa", "a", "b", 3) == ("bbba", 3)
    assert replace_n("abc", "z", "y", 1) == ("abc", 0)
    assert replace_n("abc", "", "y", 1) == ("abc", 0)


@pytest.mark.asyncio
async def test_list_dir_hides_dotfiles_and_truncates(ctx: ActionContext, workspace: Path) -> None:
    for name in ("b.txt", "a.txt", ".hidden"):
        (workspace / name).write_text("x")
    (workspace / "sub").mkdir()

    res = await _run(ListDirAction(), ctx, path=".", max_entries=2)

    assert [e["name"] for e in res.output["entries"]] == ["a.txt", "b.txt"]
    assert res.output["truncated"] is True

    res = await _run(ListDirAction(), ctx, path=".", include_hidden=True)
    kinds = {e["name"]: e["kind"] for e in res.output["entries"]}
    assert kinds == {".hidden": "file", "a.txt": "file", "b.txt": "file", "sub": "dir"}
    assert res.output["truncated"] is False


@pytest.mark.asyncio
async def test_list_dir_on_file_fails(ctx: ActionContext, workspace: Path) -> None:
    (workspace / "f").write_text("x")

    res = await _run(ListDirAction(), ctx, path="f")

    assert res.ok is False
    assert "not a directory" in res.summary


@pytest.mark.asyncio
async def test_ensure_dir(ctx: ActionContext, workspace: Path) -> None:
    res = await _run(EnsureDirAction(), ctx, path="a/b")
    assert res.output["created"] is True
    assert (workspace / "a" / "b").is_dir()

    res = await _run(EnsureDirAction(), ctx, path="a/b")
    assert res.output["created"] is False
    assert res.summary.startswith("directory already exists")


@pytest.mark.asyncio
async def test_ensure_dir_dry_run(dry_ctx: ActionContext, workspace: Path) -> None:
    res = await _run(EnsureDirAction(), dry_ctx, path="new")

    assert res.summary == f"dry run: would ensure directory exists at {workspace / 'new'}"
    assert not (workspace / "new").exists()


@pytest.fixture
def secret(tmp_path: Path, workspace: Path) -> Path:
    """A directory outside the workspace, reachable through ``workspace/link``."""
    target = tmp_path / "secret"
    target.mkdir()
    (target / "key").write_text("TOPSECRET")
    (workspace / "link").symlink_to(target, target_is_directory=True)
    return target


class TestRealPathChecks:
    @pytest.mark.asyncio
    async def test_read_through_symlink_into_blocked_root(self, make_policy, workspace: Path, secret: Path) -> None:
        policy = make_policy(dry_run=False, blocked_roots=(str(secret),))
        ctx = ActionContext(cwd=str(workspace), dry_run=False, policy=policy)

        with pytest.raises(PolicyDenial) as exc_info:
            await _run(ReadFileAction(), ctx, path="link/key")

        assert exc_info.value.action == "fs.read_file"
        assert exc_info.value.reasons[0].startswith("blocked_root: ")
        assert str(secret.resolve()) in exc_info.value.reasons[0]

    @pytest.mark.asyncio
    async def test_write_through_symlink_is_not_performed(self, make_policy, workspace: Path, secret: Path) -> None:
        policy = make_policy(dry_run=False, blocked_roots=(str(secret),))
        ctx = ActionContext(cwd=str(workspace), dry_run=False, policy=policy)

        with pytest.raises(PolicyDenial):
            await _run(WriteFileAction(), ctx, path="link/new.txt", content="x")

        assert not (secret / "new.txt").exists()

    @pytest.mark.asyncio
    async def test_symlink_leaving_allowed_roots_in_strict_mode(self, ctx: ActionContext, secret: Path) -> None:
        with pytest.raises(PolicyDenial) as exc_info:
            await _run(ListDirAction(), ctx, path="link")

        assert exc_info.value.reasons[0].startswith("path_not_allowed: ")

    @pytest.mark.asyncio
    async def test_symlink_leaving_allowed_roots_when_not_strict(
        self, make_policy, workspace: Path, secret: Path
    ) -> None:
        ctx = ActionContext(cwd=str(workspace), dry_run=False, policy=make_policy(dry_run=False, strict=False))

        res = await _run(ReadFileAction(), ctx, path="link/key")

        assert res.ok is True
        assert res.output["content"] == "TOPSECRET"

    @pytest.mark.asyncio
    async def test_shell_cwd_through_symlink(self, make_policy, workspace: Path, secret: Path) -> None:
        ctx = ActionContext(cwd=str(workspace), dry_run=True, policy=make_policy(blocked_roots=(str(secret),)))

        with pytest.raises(PolicyDenial):
            await _run(ShellRunAction(), ctx, command="cat key", cwd="link")

    def test_disabled_policy_skips_check(self, make_policy, workspace: Path, secret: Path) -> None:
        policy = make_policy(enabled=False, blocked_roots=(str(secret),))

        assert real_path_violation(str(workspace / "link" / "key"), policy) is None

    def test_plain_path_inside_workspace(self, make_policy, workspace: Path) -> None:
        assert real_path_violation(str(workspace / "notes.txt"), make_policy()) is None
