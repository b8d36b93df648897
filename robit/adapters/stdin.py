from __future__ import annotations

"""Line-oriented terminal adapter.

Each input line is either a full JSON envelope (a line starting with ``{``
that validates as one) or free text, which becomes a ``message`` body for the
local workspace/room. Responses are printed as plain text.
"""

import asyncio
import logging
import sys
from typing import Optional, TextIO

from pydantic import ValidationError

from ..agent_core.protocol import Envelope, MessageBody, ResponseBody, parse_envelope, wrap
from .base import Adapter

logger = logging.getLogger(__name__)

LOCAL_WORKSPACE = "local"
LOCAL_ROOM = "stdin"
LOCAL_SENDER = "local-user"


class StdinAdapter(Adapter):
    def __init__(
        self,
        *,
        prompt: str = "robit> ",
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
        workspace_id: str = LOCAL_WORKSPACE,
        room_id: str = LOCAL_ROOM,
        sender_id: str = LOCAL_SENDER,
    ) -> None:
        self._prompt = prompt
        self._in = stdin or sys.stdin
        self._out = stdout or sys.stdout
        self._workspace_id = workspace_id
        self._room_id = room_id
        self._sender_id = sender_id

    def _write(self, text: str) -> None:
        self._out.write(text)
        self._out.flush()

    async def receive(self) -> Optional[Envelope]:
        while True:
            if self._prompt:
                self._write(self._prompt)
            line = await asyncio.to_thread(self._in.readline)
            if not line:
                return None
            text = line.strip()
            if not text:
                continue
            if text in {"exit", "quit"}:
                return None
            if text.startswith("{"):
                try:
                    return parse_envelope(text)
                except ValidationError as e:
                    logger.debug(f"Input line is not an envelope, treating it as text: {e.error_count()} error(s)")
            return wrap(
                MessageBody(
                    workspace_id=self._workspace_id,
                    room_id=self._room_id,
                    sender_id=self._sender_id,
                    text=text,
                )
            )

    async def send(self, envelope: Envelope) -> None:
        body = envelope.body
        if isinstance(body, ResponseBody):
            self._write(f"{body.text}\n")
        else:
            self._write(f"{envelope.model_dump_json(exclude_none=True)}\n")
