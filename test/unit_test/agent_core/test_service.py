from __future__ import annotations

from pathlib import Path
from typing import List

import pytest

from robit.agent_core.factory import build_service
from robit.agent_core.protocol import (
    AbandonBody,
    ActionBody,
    ActionListRequestBody,
    ActionListResultBody,
    ApprovalDecisionBody,
    Envelope,
    MessageBody,
    PingBody,
    PlanBody,
    PongBody,
    ResponseKind,
    wrap,
)
from robit.agent_core.schemas.domain import ActionSpec, DecisionKind
from robit.agent_core.service import HELP_TEXT, RobitService, parse_approval_command


def _msg(text: str, room: str = "r1", sender: str = "alice") -> Envelope:
    return wrap(MessageBody(workspace_id="ws", room_id=room, sender_id=sender, text=text))


def _kinds(out: List[Envelope]) -> List[ResponseKind]:
    return [e.body.kind for e in out]


@pytest.fixture
def service(make_policy) -> RobitService:
    return build_service(policy_config=make_policy())


class FakePlanner:
    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.calls: List[str] = []

    async def plan(self, text: str, *, actions: List[ActionSpec]) -> str:
        self.calls.append(text)
        assert actions
        return self.reply


class FailingPlanner:
    async def plan(self, text: str, *, actions: List[ActionSpec]) -> str:
        raise RuntimeError("model offline")


@pytest.mark.parametrize(
    "text,expected",
    [
        ("approve", (DecisionKind.approve, None)),
        ("yes appr-2", (DecisionKind.approve, "appr-2")),
        ("Approve All", (DecisionKind.approve_all, None)),
        ("approve all appr-4", (DecisionKind.approve_all, "appr-4")),
        ("deny appr-1", (DecisionKind.deny, "appr-1")),
        ("reject", (DecisionKind.deny, None)),
        ("approve this and that", None),
        ("read the file", None),
        ("", None),
    ],
)
def test_parse_approval_command(text, expected) -> None:
    assert parse_approval_command(text) == expected


class TestTextCommands:
    @pytest.mark.asyncio
    async def test_help(self, service: RobitService) -> None:
        env = _msg("help")
        out = await service.handle_envelope(env)

        assert out[0].body.text == HELP_TEXT
        assert out[0].body.in_reply_to == env.body.message_id

    @pytest.mark.asyncio
    async def test_actions(self, service: RobitService) -> None:
        out = await service.handle_envelope(_msg("actions"))

        lines = out[0].body.text.splitlines()
        assert lines[0].startswith("browser.open_url v1 [medium, approval]")
        assert any(line.startswith("fs.read_file v1 [low] - ") for line in lines)

    @pytest.mark.asyncio
    async def test_approve_without_pending(self, service: RobitService) -> None:
        out = await service.handle_envelope(_msg("approve"))

        assert out[0].body.kind == ResponseKind.chat
        assert out[0].body.text == "no pending approvals"

    @pytest.mark.asyncio
    async def test_abandon_with_nothing_running(self, service: RobitService) -> None:
        out = await service.handle_envelope(_msg("abandon"))

        assert out[0].body.text == "nothing to abandon"

    @pytest.mark.asyncio
    async def test_unparseable_text_asks_for_input(self, service: RobitService) -> None:
        out = await service.handle_envelope(_msg("please tidy my desktop"))

        assert out[0].body.kind == ResponseKind.chat
        assert out[0].body.metadata == {"need_input": True}


class TestDryRunCommands:
    @pytest.mark.asyncio
    async def test_status_follows_policy_default(self, service: RobitService) -> None:
        out = await service.handle_envelope(_msg("dry-run"))

        assert out[0].body.text == "dry-run is on"
        assert out[0].body.metadata == {"dry_run": True}

    @pytest.mark.asyncio
    async def test_switch_applies_to_pending_step(self, service: RobitService, workspace: Path) -> None:
        out = await service.handle_envelope(_msg("action:fs.write_file path=n.txt content=hi"))
        assert _kinds(out) == [ResponseKind.approval_request]

        out = await service.handle_envelope(_msg("dry-run off"))
        assert out[0].body.text == "dry-run disabled"

        out = await service.handle_envelope(_msg("approve"))

        assert out[0].body.text.startswith("ok: wrote 2 bytes")
        assert (workspace / "n.txt").read_text() == "hi"

    @pytest.mark.asyncio
    async def test_switch_is_per_room(self, service: RobitService, workspace: Path) -> None:
        await service.handle_envelope(_msg("dry-run off", room="r1"))

        out = await service.handle_envelope(_msg("dry-run", room="r2"))
        assert out[0].body.text == "dry-run is on"

        await service.handle_envelope(_msg("action:fs.write_file path=r2.txt content=x", room="r2"))
        out = await service.handle_envelope(_msg("approve", room="r2"))

        assert out[0].body.text.startswith("ok: dry run: would write")
        assert not (workspace / "r2.txt").exists()

    @pytest.mark.asyncio
    async def test_later_plans_keep_the_room_setting(self, service: RobitService, workspace: Path) -> None:
        await service.handle_envelope(_msg("dry-run off"))

        await service.handle_envelope(_msg("action:fs.write_file path=later.txt content=x"))
        await service.handle_envelope(_msg("approve"))

        assert (workspace / "later.txt").read_text() == "x"


class TestPlanFlow:
    @pytest.mark.asyncio
    async def test_shorthand_runs_low_risk_step(self, service: RobitService, workspace: Path) -> None:
        (workspace / "a.txt").write_text("x")

        out = await service.handle_envelope(_msg("action:fs.list_dir path=."))

        assert _kinds(out) == [ResponseKind.action_result, ResponseKind.plan_completed]
        assert out[0].body.text.startswith("ok: listed 1 entries")
        assert out[0].body.metadata["status"] == "success"
        assert out[1].body.metadata["status"] == "completed"
        assert out[1].body.room_id == "r1"

    @pytest.mark.asyncio
    async def test_approval_by_chat_command(self, service: RobitService) -> None:
        out = await service.handle_envelope(_msg("action:shell.run command=ls"))

        assert _kinds(out) == [ResponseKind.approval_request]
        meta = out[0].body.metadata
        assert meta["approval_id"] == "appr-1"
        assert meta["risk"] == "high"
        assert "approve appr-1" in out[0].body.text

        out = await service.handle_envelope(_msg("approve"))

        assert _kinds(out) == [ResponseKind.action_result, ResponseKind.plan_completed]
        assert out[0].body.text == "ok: dry run: would run `ls`"

    @pytest.mark.asyncio
    async def test_only_new_outcomes_are_reported_after_resume(self, service: RobitService) -> None:
        plan = PlanBody(
            workspace_id="ws",
            room_id="r1",
            steps=[
                {"action": "fs.list_dir", "params": {"path": "."}},
                {"action": "fs.write_file", "params": {"path": "n.txt", "content": "x"}},
            ],
        )
        out = await service.handle_envelope(wrap(plan))
        assert _kinds(out) == [ResponseKind.action_result, ResponseKind.approval_request]

        decision = ApprovalDecisionBody(approval_id="appr-1", decision=DecisionKind.deny, sender_id="bob")
        out = await service.handle_envelope(wrap(decision))

        assert _kinds(out) == [ResponseKind.action_result, ResponseKind.plan_completed]
        assert out[0].body.text == "denied: denied by bob"
        assert out[0].body.room_id == "r1"

    @pytest.mark.asyncio
    async def test_busy_room(self, service: RobitService) -> None:
        await service.handle_envelope(_msg("action:shell.run command=ls"))

        out = await service.handle_envelope(_msg("action:fs.list_dir path=."))

        assert out[0].body.kind == ResponseKind.chat
        assert out[0].body.text.startswith("a plan is already in progress")

    @pytest.mark.asyncio
    async def test_invalid_plan(self, service: RobitService) -> None:
        env = wrap(PlanBody(steps=[{"id": "a", "action": "fs.list_dir"}, {"id": "a", "action": "fs.read_file"}]))

        out = await service.handle_envelope(env)

        assert out[0].body.text == "invalid plan: duplicate step id: 'a'"
        assert out[0].body.in_reply_to == env.id

    @pytest.mark.asyncio
    async def test_unknown_and_repeated_decisions_become_chat(self, service: RobitService) -> None:
        out = await service.handle_envelope(_msg("deny appr-42"))
        assert out[0].body.metadata == {"error": "UnknownApprovalIdError"}

        await service.handle_envelope(wrap(ActionBody(workspace_id="ws", room_id="r1", action="shell.run", params={"command": "ls"})))
        await service.handle_envelope(_msg("deny appr-1"))
        out = await service.handle_envelope(_msg("approve appr-1"))

        assert out[0].body.kind == ResponseKind.chat
        assert out[0].body.metadata == {"error": "AlreadyResolvedError"}

    @pytest.mark.asyncio
    async def test_abandon_envelope(self, service: RobitService) -> None:
        await service.handle_envelope(_msg("action:shell.run command=ls"))

        out = await service.handle_envelope(wrap(AbandonBody(workspace_id="ws", room_id="r1")))

        assert _kinds(out) == [ResponseKind.plan_completed]
        assert out[0].body.metadata["status"] == "abandoned"
        assert service.engine.deps.approvals.pending_count() == 0

    @pytest.mark.asyncio
    async def test_session_locks_are_released(self, service: RobitService) -> None:
        await service.handle_envelope(_msg("action:shell.run command=ls"))
        await service.handle_envelope(_msg("action:fs.list_dir path=.", room="r2"))
        await service.handle_envelope(_msg("approve"))

        assert service._locks == {}


class TestPlanner:
    @pytest.mark.asyncio
    async def test_free_text_goes_to_planner(self, make_policy) -> None:
        planner = FakePlanner('{"steps": [{"action": "fs.list_dir", "params": {"path": "."}}]}')
        service = build_service(policy_config=make_policy(), planner=planner)

        out = await service.handle_envelope(_msg("what is in here?"))

        assert planner.calls == ["what is in here?"]
        assert _kinds(out) == [ResponseKind.action_result, ResponseKind.plan_completed]

    @pytest.mark.asyncio
    async def test_shorthand_bypasses_planner(self, make_policy) -> None:
        planner = FakePlanner("{}")
        service = build_service(policy_config=make_policy(), planner=planner)

        await service.handle_envelope(_msg("action:fs.list_dir path=."))

        assert planner.calls == []

    @pytest.mark.asyncio
    async def test_planner_failure_is_reported(self, make_policy) -> None:
        service = build_service(policy_config=make_policy(), planner=FailingPlanner())

        out = await service.handle_envelope(_msg("do something"))

        assert out[0].body.text == "planner error: model offline"


class TestControlEnvelopes:
    @pytest.mark.asyncio
    async def test_ping(self, service: RobitService) -> None:
        env = wrap(PingBody())
        out = await service.handle_envelope(env)

        assert isinstance(out[0].body, PongBody)
        assert out[0].body.in_reply_to == env.id

    @pytest.mark.asyncio
    async def test_action_list(self, service: RobitService) -> None:
        out = await service.handle_envelope(wrap(ActionListRequestBody()))

        assert isinstance(out[0].body, ActionListResultBody)
        assert len(out[0].body.actions) == 9

    @pytest.mark.asyncio
    async def test_outbound_bodies_are_ignored(self, service: RobitService) -> None:
        assert await service.handle_envelope(wrap(PongBody())) == []
