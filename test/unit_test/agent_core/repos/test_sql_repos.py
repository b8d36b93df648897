from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio

from robit.agent_core.repos.sql import build_sql_repos, create_all, create_engine, create_sessionmaker
from robit.agent_core.schemas.domain import (
    ApprovalRequest,
    ExecutionOutcome,
    OutcomeStatus,
    Plan,
    PlanStep,
    RiskLevel,
    Session,
    SessionEvent,
    SessionEventType,
    SessionStatus,
    StepStatus,
)


@pytest_asyncio.fixture
async def repos(tmp_path: Path):
    engine = create_engine(f"sqlite:///{tmp_path}/robit.db")
    await create_all(engine)
    yield build_sql_repos(session_factory=create_sessionmaker(engine))
    await engine.dispose()


def _session(status: SessionStatus = SessionStatus.awaiting_approval) -> Session:
    plan = Plan(
        id="p1",
        steps=(
            PlanStep(id="s1", action="fs.list_dir", params={"path": "."}),
            PlanStep(id="s2", action="shell.run", params={"command": "ls"}, requires_approval=True),
        ),
    )
    return Session(
        id="ws:room",
        workspace_id="ws",
        room_id="room",
        plan=plan,
        status=status,
        current_index=1,
        step_status={"s1": StepStatus.success, "s2": StepStatus.awaiting_approval},
        outcomes=[
            ExecutionOutcome(step_id="s1", action="fs.list_dir", status=OutcomeStatus.success, result={"entries": []})
        ],
        pending_approval=ApprovalRequest(
            id="appr-1",
            session_id="ws:room",
            plan_id="p1",
            step_id="s2",
            action="shell.run",
            risk=RiskLevel.high,
            summary="shell.run(command='ls') [risk=high]",
        ),
    )


@pytest.mark.asyncio
async def test_session_document_survives_round_trip(repos) -> None:
    original = _session()
    await repos.sessions.save(original)

    loaded = await repos.sessions.get("ws:room")

    assert loaded.plan == original.plan
    assert loaded.pending_approval.id == "appr-1"
    assert loaded.step_status == original.step_status
    assert loaded.outcomes[0].result == {"entries": []}
    assert [s.id for s in await repos.sessions.list_active()] == ["ws:room"]


@pytest.mark.asyncio
async def test_save_replaces_existing_row(repos) -> None:
    await repos.sessions.save(_session())
    finished = _session(SessionStatus.completed)
    finished.pending_approval = None
    await repos.sessions.save(finished)

    loaded = await repos.sessions.get("ws:room")

    assert loaded.status == SessionStatus.completed
    assert await repos.sessions.list_active() == []

    await repos.sessions.delete("ws:room")
    assert await repos.sessions.get("ws:room") is None


@pytest.mark.asyncio
async def test_events_are_listed_in_append_order(repos) -> None:
    types = [SessionEventType.plan_started, SessionEventType.step_preflight, SessionEventType.approval_requested]
    for i, t in enumerate(types):
        await repos.events.append(SessionEvent(session_id="ws:room", type=t, payload={"n": i}))
    await repos.events.append(SessionEvent(session_id="ws:other", type=SessionEventType.plan_started))

    events = await repos.events.list("ws:room")

    assert [e.type for e in events] == types
    assert [e.payload["n"] for e in events] == [0, 1, 2]
    assert len(await repos.events.list("ws:room", limit=1)) == 1
