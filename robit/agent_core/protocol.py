from __future__ import annotations

"""Versioned message envelope exchanged with adapters.

Every message on the wire is ``{"schema_version": "robit.v1", "id": ...,
"body": {...}}`` where ``body`` is discriminated on its ``type`` field.

Inbound bodies: ``message``, ``plan``, ``action``, ``approval_decision``,
``abandon``, ``action_list_request``, ``ping``.
Outbound bodies: ``response``, ``action_list_result``, ``pong``.

Adapters own the transport; this module only defines and validates shapes.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union
from uuid import uuid4

from pydantic import Field

from .planning.steps import PlanStepInput
from .schemas.base import BaseSchema
from .schemas.domain import ActionSpec, DecisionKind

SCHEMA_VERSION = "robit.v1"


def _event_id() -> str:
    return f"evt-{uuid4().hex}"


class ScopedBody(BaseSchema):
    """Bodies that may name the workspace/room they belong to."""

    workspace_id: Optional[str] = None
    room_id: Optional[str] = None


class MessageBody(ScopedBody):
    type: Literal["message"] = "message"
    message_id: str = Field(default_factory=lambda: uuid4().hex)
    sender_id: Optional[str] = None
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PlanBody(ScopedBody):
    type: Literal["plan"] = "plan"
    message_id: Optional[str] = None
    sender_id: Optional[str] = None
    steps: List[PlanStepInput]


class ActionBody(ScopedBody):
    """One-step shorthand, treated as a plan with a single step."""

    type: Literal["action"] = "action"
    message_id: Optional[str] = None
    sender_id: Optional[str] = None
    action: str
    params: Dict[str, Any] = Field(default_factory=dict)
    requires_approval: Optional[bool] = None


class ApprovalDecisionBody(ScopedBody):
    type: Literal["approval_decision"] = "approval_decision"
    approval_id: str
    decision: DecisionKind
    session_id: Optional[str] = None
    sender_id: Optional[str] = None
    in_reply_to: Optional[str] = None


class AbandonBody(ScopedBody):
    type: Literal["abandon"] = "abandon"
    message_id: Optional[str] = None


class ActionListRequestBody(BaseSchema):
    type: Literal["action_list_request"] = "action_list_request"


class ActionListResultBody(BaseSchema):
    type: Literal["action_list_result"] = "action_list_result"
    actions: List[ActionSpec] = Field(default_factory=list)
    in_reply_to: Optional[str] = None


class PingBody(BaseSchema):
    type: Literal["ping"] = "ping"


class PongBody(BaseSchema):
    type: Literal["pong"] = "pong"
    in_reply_to: Optional[str] = None


class ResponseKind(str, Enum):
    chat = "chat"
    approval_request = "approval_request"
    action_result = "action_result"
    plan_completed = "plan_completed"


class ResponseBody(ScopedBody):
    type: Literal["response"] = "response"
    kind: ResponseKind
    text: str
    in_reply_to: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


Body = Annotated[
    Union[
        MessageBody,
        PlanBody,
        ActionBody,
        ApprovalDecisionBody,
        AbandonBody,
        ActionListRequestBody,
        ActionListResultBody,
        PingBody,
        PongBody,
        ResponseBody,
    ],
    Field(discriminator="type"),
]


class Envelope(BaseSchema):
    schema_version: Literal["robit.v1"] = SCHEMA_VERSION
    id: str = Field(default_factory=_event_id)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    body: Body


def wrap(body: Any) -> Envelope:
    """Put a body into a fresh envelope."""
    return Envelope(body=body)


def parse_envelope(raw: Union[str, bytes, Mapping[str, Any]]) -> Envelope:
    """
    Validate an inbound envelope from JSON text or an already decoded mapping.

    Raises:
        pydantic.ValidationError: If the envelope or its body is malformed,
            or the schema version is not ``robit.v1``.
    """
    if isinstance(raw, (str, bytes)):
        return Envelope.model_validate_json(raw)
    return Envelope.model_validate(dict(raw))


def dump_envelope(env: Envelope) -> str:
    return env.model_dump_json(exclude_none=True)
