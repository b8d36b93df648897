from __future__ import annotations

"""Planner output parsing and repair.

Planners (language models or humans typing into a chat) produce text. This
module turns that text into a ``Plan`` when it can, and into a
``need_input``/``unknown`` response when it cannot. Accepted shapes:

- ``{"type": "plan", "steps": [...]}`` or just ``{"steps": [...]}``
- ``{"type": "action", "name": "...", "params": {...}}`` (one step)
- ``{"type": "need_input", "prompt": "..."}``
- ``{"type": "unknown", "message": "..."}``
- any of the above wrapped in prose or a Markdown code fence
- the ``action:<name> key=value ...`` shorthand typed by a human
"""

import json
import logging
from typing import Any, Dict, Literal, Mapping, Optional

from ..errors import PlanValidationError
from ..schemas.base import BaseSchema
from ..schemas.domain import Plan
from .steps import build_plan

logger = logging.getLogger(__name__)

NEED_INPUT_FALLBACK = "I could not turn that into a plan. Try `action:<name> key=value` or send a JSON plan."


class PlannerResponse(BaseSchema):
    """Parsed planner output: exactly one of ``plan``, ``prompt`` or ``message`` is meaningful."""

    kind: Literal["plan", "need_input", "unknown"]
    plan: Optional[Plan] = None
    prompt: Optional[str] = None
    message: Optional[str] = None


def extract_json(content: str) -> Optional[str]:
    """Return the outermost ``{...}`` block of ``content``, if any."""
    trimmed = content.strip()
    if trimmed.startswith("{") and trimmed.endswith("}"):
        return trimmed
    start = trimmed.find("{")
    end = trimmed.rfind("}")
    if start < 0 or end <= start:
        return None
    return trimmed[start : end + 1]


def parse_value(raw: str) -> Any:
    """Coerce a shorthand value: booleans, integers, floats, else the string."""
    trimmed = raw.strip('"')
    lower = trimmed.lower()
    if lower == "true":
        return True
    if lower == "false":
        return False
    try:
        return int(trimmed)
    except ValueError:
        pass
    try:
        return float(trimmed)
    except ValueError:
        return trimmed


def parse_kv_params(text: str) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for token in text.split():
        key, sep, value = token.partition("=")
        if not sep or not key:
            continue
        out[key] = parse_value(value)
    return out


def parse_explicit_action(text: str) -> Optional[Dict[str, Any]]:
    """
    Parse ``action:<name> k=v ...`` (or ``action <name> {...json...}``).

    Returns:
        ``{"action": name, "params": {...}}`` or None when ``text`` is not
        the shorthand.
    """
    trimmed = text.strip()
    if trimmed.startswith("action:"):
        rest = trimmed[len("action:") :].strip()
    elif trimmed.startswith("action "):
        rest = trimmed[len("action ") :].strip()
    else:
        return None
    if not rest:
        return None

    name, _, params_raw = rest.partition(" ")
    params_raw = params_raw.strip()
    params: Dict[str, Any]
    if not params_raw:
        params = {}
    elif params_raw.startswith("{"):
        try:
            loaded = json.loads(params_raw)
        except json.JSONDecodeError:
            loaded = {}
        params = loaded if isinstance(loaded, dict) else {}
    else:
        params = parse_kv_params(params_raw)
    return {"action": name.strip(), "params": params}


def _from_payload(payload: Mapping[str, Any]) -> PlannerResponse:
    kind = str(payload.get("type") or "").lower()

    if "steps" in payload and kind in {"", "plan"}:
        steps = payload.get("steps")
        if not isinstance(steps, list):
            return PlannerResponse(kind="unknown", message="plan steps must be a list")
        return PlannerResponse(kind="plan", plan=build_plan(steps))

    name = payload.get("name") or payload.get("action")
    if kind == "action" or name:
        if not name:
            return PlannerResponse(kind="unknown", message="missing action name")
        params = payload.get("params") or {}
        if not isinstance(params, dict):
            return PlannerResponse(kind="unknown", message="action params must be an object")
        return PlannerResponse(kind="plan", plan=build_plan([{"action": str(name), "params": params}]))

    if kind == "need_input":
        prompt = payload.get("prompt") or payload.get("message") or "need more input"
        return PlannerResponse(kind="need_input", prompt=str(prompt))

    return PlannerResponse(kind="unknown", message=str(payload.get("message") or "no plan"))


def parse_planner_output(content: str) -> PlannerResponse:
    """
    Parse planner text into a ``PlannerResponse``.

    Unparseable text and plans that fail validation degrade to
    ``need_input`` so the caller can ask the user instead of failing.
    """
    explicit = parse_explicit_action(content)
    if explicit is not None:
        try:
            return PlannerResponse(kind="plan", plan=build_plan([explicit]))
        except PlanValidationError as e:
            return PlannerResponse(kind="need_input", prompt=f"invalid action: {e}")

    json_text = extract_json(content)
    if json_text is None:
        return PlannerResponse(kind="need_input", prompt=NEED_INPUT_FALLBACK)
    try:
        payload = json.loads(json_text)
    except json.JSONDecodeError as e:
        logger.debug(f"Planner output is not valid JSON: {e}")
        return PlannerResponse(kind="need_input", prompt=NEED_INPUT_FALLBACK)
    if not isinstance(payload, dict):
        return PlannerResponse(kind="need_input", prompt=NEED_INPUT_FALLBACK)

    try:
        return _from_payload(payload)
    except PlanValidationError as e:
        logger.info(f"Planner produced an invalid plan: {e}")
        return PlannerResponse(kind="need_input", prompt=f"the proposed plan is invalid: {e}")
