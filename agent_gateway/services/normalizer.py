"""Mapping of provider-native events to canonical envelope types.

Both functions are pure: they never raise and never touch a sink. Anything
they do not recognize maps to ``raw-output`` with the event as data.

CLI (stream-json) tags::

    system(init) -> system-info      user   -> user-echo
    assistant    -> assistant-delta  result -> result

SDK tags (after ``message_to_dict``)::

    system       -> system-info      user   -> user-echo
    assistant    -> assistant-delta  result -> result
    stream_event -> assistant-delta | assistant-stop
"""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from agent_gateway.models import EventType


@dataclass(frozen=True)
class NormalizedEvent:
    type: EventType
    data: Any = None
    # Engine session id carried by the event, if any
    session_id: Optional[str] = None
    # Assistant text chunk, for callers that buffer the running message
    text: Optional[str] = None
    success: Optional[bool] = None


def text_delta(text: str) -> Dict[str, Any]:
    return {"type": "content_block_delta", "delta": {"type": "text_delta", "text": text}}


BLOCK_STOP: Dict[str, Any] = {"type": "content_block_stop"}


def _str_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _first_text(message: Any) -> Optional[str]:
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if not isinstance(content, list) or not content:
        return None
    first = content[0]
    if isinstance(first, dict) and isinstance(first.get("text"), str):
        return first["text"]
    return None


def normalize_process_event(event: Any) -> NormalizedEvent:
    """Map one parsed stream-json line from the CLI."""
    if not isinstance(event, dict):
        return NormalizedEvent(EventType.RAW_OUTPUT, event)

    kind = event.get("type")
    if kind == "system":
        sid = _str_or_none(event.get("session_id")) if event.get("subtype") == "init" else None
        return NormalizedEvent(EventType.SYSTEM_INFO, event, session_id=sid)
    if kind == "user":
        return NormalizedEvent(EventType.USER_ECHO, event)
    if kind == "assistant":
        text = _first_text(event.get("message"))
        if text is None:
            return NormalizedEvent(EventType.RAW_OUTPUT, event)
        return NormalizedEvent(EventType.ASSISTANT_DELTA, text_delta(text), text=text)
    if kind == "result":
        return NormalizedEvent(EventType.RESULT, event, success=event.get("subtype") == "success")
    return NormalizedEvent(EventType.RAW_OUTPUT, event)


def normalize_sdk_message(message: Any) -> NormalizedEvent:
    """Map one SDK message, already converted with ``message_to_dict``."""
    if not isinstance(message, dict):
        return NormalizedEvent(EventType.RAW_OUTPUT, message)

    kind = message.get("type")
    sid = _str_or_none(message.get("session_id"))
    if kind == "system":
        if sid is None and isinstance(message.get("data"), dict):
            sid = _str_or_none(message["data"].get("session_id"))
        return NormalizedEvent(EventType.SYSTEM_INFO, message, session_id=sid)
    if kind == "user":
        return NormalizedEvent(EventType.USER_ECHO, message, session_id=sid)
    if kind == "assistant":
        return NormalizedEvent(EventType.ASSISTANT_DELTA, message, session_id=sid)
    if kind == "stream_event":
        inner = message.get("event")
        inner_type = inner.get("type") if isinstance(inner, dict) else None
        if inner_type == "content_block_delta":
            delta = inner.get("delta") or {}
            text = delta.get("text") if isinstance(delta, dict) else None
            return NormalizedEvent(
                EventType.ASSISTANT_DELTA,
                inner,
                session_id=sid,
                text=text if isinstance(text, str) else None,
            )
        if inner_type == "content_block_stop":
            return NormalizedEvent(EventType.ASSISTANT_STOP, inner, session_id=sid)
        return NormalizedEvent(EventType.RAW_OUTPUT, message, session_id=sid)
    if kind == "result":
        ok = message.get("subtype") == "success" and not message.get("is_error")
        return NormalizedEvent(EventType.RESULT, message, session_id=sid, success=ok)
    return NormalizedEvent(EventType.RAW_OUTPUT, message, session_id=sid)


_MESSAGE_TAGS = {
    "SystemMessage": "system",
    "UserMessage": "user",
    "AssistantMessage": "assistant",
    "ResultMessage": "result",
    "StreamEvent": "stream_event",
    "TextBlock": "text",
    "ThinkingBlock": "thinking",
    "ToolUseBlock": "tool_use",
    "ToolResultBlock": "tool_result",
}


def _tag_for(obj: Any) -> str:
    name = type(obj).__name__
    if name in _MESSAGE_TAGS:
        return _MESSAGE_TAGS[name]
    # FooBarMessage -> foo_bar
    base = re.sub(r"(Message|Block)$", "", name) or name
    return re.sub(r"(?<!^)(?=[A-Z])", "_", base).lower()


def _plain(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return message_to_dict(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def message_to_dict(message: Any) -> Dict[str, Any]:
    """Convert an SDK message object into a JSON-ready dict with a ``type`` tag."""
    if isinstance(message, dict):
        return message
    if dataclasses.is_dataclass(message) and not isinstance(message, type):
        out: Dict[str, Any] = {"type": _tag_for(message)}
        for f in dataclasses.fields(message):
            out[f.name] = _plain(getattr(message, f.name))
        return out
    return {"type": "unknown", "value": repr(message)}
