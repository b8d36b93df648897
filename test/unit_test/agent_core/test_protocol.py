from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from robit.agent_core.protocol import (
    SCHEMA_VERSION,
    ActionBody,
    ApprovalDecisionBody,
    Envelope,
    MessageBody,
    PingBody,
    PlanBody,
    ResponseBody,
    ResponseKind,
    dump_envelope,
    parse_envelope,
    wrap,
)
from robit.agent_core.schemas.domain import DecisionKind


def test_wrap_assigns_version_and_id() -> None:
    env = wrap(PingBody())

    assert env.schema_version == SCHEMA_VERSION == "robit.v1"
    assert env.id.startswith("evt-")
    assert env.id != wrap(PingBody()).id


def test_body_type_discriminates() -> None:
    env = parse_envelope(
        {
            "schema_version": "robit.v1",
            "body": {
                "type": "plan",
                "workspace_id": "ws",
                "room_id": "r1",
                "steps": [{"action": "fs.list_dir", "params": {"path": "."}}],
            },
        }
    )

    assert isinstance(env.body, PlanBody)
    assert env.body.steps[0].action == "fs.list_dir"
    assert env.body.steps[0].id is None


def test_parse_from_json_text() -> None:
    raw = json.dumps(
        {
            "schema_version": "robit.v1",
            "id": "evt-1",
            "body": {"type": "approval_decision", "approval_id": "appr-3", "decision": "approve_all"},
        }
    )

    env = parse_envelope(raw)

    assert env.id == "evt-1"
    assert isinstance(env.body, ApprovalDecisionBody)
    assert env.body.decision == DecisionKind.approve_all


@pytest.mark.parametrize(
    "payload",
    [
        {"schema_version": "robit.v2", "body": {"type": "ping"}},
        {"schema_version": "robit.v1", "body": {"type": "teleport"}},
        {"schema_version": "robit.v1", "body": {"type": "message"}},
        {"schema_version": "robit.v1", "body": {"type": "ping", "extra": 1}},
        {"schema_version": "robit.v1", "body": {"type": "approval_decision", "approval_id": "a", "decision": "maybe"}},
    ],
)
def test_malformed_envelopes_rejected(payload) -> None:
    with pytest.raises(ValidationError):
        parse_envelope(payload)


def test_action_body_defaults() -> None:
    env = parse_envelope({"body": {"type": "action", "action": "shell.run", "params": {"command": "ls"}}})

    assert isinstance(env.body, ActionBody)
    assert env.body.requires_approval is None
    assert env.schema_version == "robit.v1"


def test_dump_then_parse_keeps_body() -> None:
    env = wrap(
        ResponseBody(
            kind=ResponseKind.approval_request,
            text="approval required",
            in_reply_to="m1",
            metadata={"approval_id": "appr-1"},
        )
    )

    text = dump_envelope(env)
    again = parse_envelope(text)

    assert "workspace_id" not in json.loads(text)["body"]
    assert again == env


def test_message_body_gets_message_id() -> None:
    body = MessageBody(text="hello")

    assert body.message_id
    assert isinstance(wrap(body), Envelope)
