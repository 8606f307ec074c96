"""
Request validation shared by the streaming and non-streaming entry points.
"""
import json
import logging
from typing import Any

import pydantic

from chat_relay.errors import ValidationError
from chat_relay.models.chat import ChatRequest

log = logging.getLogger("validator")


def _field_path(loc: tuple) -> str:
    """Render a pydantic error location as ``messages[0].content``."""
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path


def validate_chat_request(raw: Any) -> ChatRequest:
    """Return a well-formed ChatRequest or raise ValidationError naming the field."""
    if isinstance(raw, ChatRequest):
        return raw
    if not isinstance(raw, dict):
        raise ValidationError("body", "expected a JSON object")
    try:
        return ChatRequest.model_validate(raw)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = _field_path(tuple(first.get("loc", ()))) or "body"
        log.warning("Rejected chat request: %s (%s)", field, first.get("type"))
        raise ValidationError(field, first.get("msg", "invalid value")) from None


def parse_chat_body(body: bytes) -> ChatRequest:
    """Decode a raw HTTP body and validate it."""
    try:
        raw = json.loads(body or b"null")
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("body", "malformed JSON") from None
    return validate_chat_request(raw)
