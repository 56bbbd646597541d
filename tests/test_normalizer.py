from dataclasses import dataclass, field
from typing import Any, List, Optional

from agent_gateway.models import EventType
from agent_gateway.services.normalizer import (
    message_to_dict,
    normalize_process_event,
    normalize_sdk_message,
)


def test_process_system_init_carries_session_id():
    event = {"type": "system", "subtype": "init", "session_id": "abc", "model": "gpt-5"}
    out = normalize_process_event(event)
    assert out.type == EventType.SYSTEM_INFO
    assert out.session_id == "abc"
    assert out.data is event


def test_process_system_without_init_has_no_session_id():
    out = normalize_process_event({"type": "system", "subtype": "status", "session_id": "abc"})
    assert out.type == EventType.SYSTEM_INFO
    assert out.session_id is None


def test_process_assistant_becomes_text_delta():
    out = normalize_process_event(
        {"type": "assistant", "message": {"content": [{"type": "text", "text": "Hello"}]}}
    )
    assert out.type == EventType.ASSISTANT_DELTA
    assert out.text == "Hello"
    assert out.data == {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hello"}}


def test_process_assistant_without_text_is_raw():
    event = {"type": "assistant", "message": {"content": []}}
    assert normalize_process_event(event).type == EventType.RAW_OUTPUT


def test_process_result_success_flag():
    assert normalize_process_event({"type": "result", "subtype": "success"}).success is True
    failed = normalize_process_event({"type": "result", "subtype": "error_max_turns"})
    assert failed.type == EventType.RESULT
    assert failed.success is False


def test_process_user_and_unknown():
    assert normalize_process_event({"type": "user"}).type == EventType.USER_ECHO
    assert normalize_process_event({"type": "thinking"}).type == EventType.RAW_OUTPUT
    assert normalize_process_event([1, 2]).type == EventType.RAW_OUTPUT
    assert normalize_process_event("text").data == "text"


def test_sdk_system_session_id_from_data():
    out = normalize_sdk_message({"type": "system", "subtype": "init", "data": {"session_id": "s-1"}})
    assert out.type == EventType.SYSTEM_INFO
    assert out.session_id == "s-1"


def test_sdk_stream_events():
    delta = normalize_sdk_message({
        "type": "stream_event",
        "session_id": "s-1",
        "event": {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hi"}},
    })
    assert delta.type == EventType.ASSISTANT_DELTA
    assert delta.text == "Hi"
    assert delta.data["type"] == "content_block_delta"

    stop = normalize_sdk_message({"type": "stream_event", "event": {"type": "content_block_stop"}})
    assert stop.type == EventType.ASSISTANT_STOP

    other = normalize_sdk_message({"type": "stream_event", "event": {"type": "message_start"}})
    assert other.type == EventType.RAW_OUTPUT


def test_sdk_result_and_assistant():
    result = normalize_sdk_message({"type": "result", "subtype": "success", "is_error": False, "session_id": "s"})
    assert result.type == EventType.RESULT
    assert result.success is True
    assert result.session_id == "s"

    errored = normalize_sdk_message({"type": "result", "subtype": "success", "is_error": True})
    assert errored.success is False

    msg = {"type": "assistant", "content": [{"text": "x"}]}
    assistant = normalize_sdk_message(msg)
    assert assistant.type == EventType.ASSISTANT_DELTA
    assert assistant.data is msg


def test_sdk_unknown_never_raises():
    assert normalize_sdk_message({"type": "mystery"}).type == EventType.RAW_OUTPUT
    assert normalize_sdk_message(None).type == EventType.RAW_OUTPUT


@dataclass
class TextBlock:
    text: str


@dataclass
class AssistantMessage:
    content: List[Any]
    model: str


@dataclass
class ResultMessage:
    subtype: str
    session_id: str
    usage: Optional[dict] = None


@dataclass
class TaskNotificationMessage:
    detail: dict = field(default_factory=dict)


def test_message_to_dict_tags_and_nested_blocks():
    out = message_to_dict(AssistantMessage(content=[TextBlock(text="hi")], model="sonnet"))
    assert out == {"type": "assistant", "content": [{"type": "text", "text": "hi"}], "model": "sonnet"}

    result = message_to_dict(ResultMessage(subtype="success", session_id="s", usage={"input_tokens": 1}))
    assert result["type"] == "result"
    assert result["usage"] == {"input_tokens": 1}

    assert message_to_dict(TaskNotificationMessage())["type"] == "task_notification"
    assert message_to_dict({"type": "user"}) == {"type": "user"}
    assert message_to_dict(object())["type"] == "unknown"
