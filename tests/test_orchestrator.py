import asyncio

import pytest

from agent_gateway.models import EventType, ProviderKind, RunResult
from agent_gateway.services.orchestrator import AgentOrchestrator
from agent_gateway.services.providers import (
    ClaudeSdkProvider,
    CursorCliProvider,
    ProviderConfigError,
    ProviderRegistry,
    RunState,
    UnknownProviderError,
    registry as default_registry,
)
from agent_gateway.services.session_registry import SessionRegistry

from conftest import FakeHandle


class EchoProvider:
    name = "echo"
    kind = ProviderKind.SDK
    calls = []

    async def run(self, prompt, options, sink):
        EchoProvider.calls.append((prompt, options))
        state = RunState(sink, self.kind, SessionRegistry(), run_id=options.get("runId"))
        state.capture_session_id("echo-1")
        state.emit(EventType.COMPLETE, {"exitCode": 0, "isNewSession": True, "aborted": False})
        return RunResult(session_id="echo-1", exit_code=0, is_new_session=True)


def _orchestrator(registry, table, default="echo") -> AgentOrchestrator:
    providers = ProviderRegistry()
    providers.register("echo", EchoProvider, aliases=("e",))
    return AgentOrchestrator(providers=providers, sessions=registry, approvals=table, default_provider=default)


def test_default_registry_aliases():
    assert default_registry.resolve_name("cursor") == "cursor_cli"
    assert default_registry.resolve_name("process") == "cursor_cli"
    assert default_registry.resolve_name("Claude") == "claude_sdk"
    assert default_registry.resolve_name("sdk") == "claude_sdk"
    assert isinstance(default_registry.get("cursor"), CursorCliProvider)
    assert isinstance(default_registry.get("claude"), ClaudeSdkProvider)
    assert default_registry.names() == ["claude_sdk", "cursor_cli"]
    with pytest.raises(UnknownProviderError):
        default_registry.resolve_name("gemini")


def test_run_uses_default_and_alias(registry, table, sink):
    orch = _orchestrator(registry, table)
    result = asyncio.run(orch.run("hi", {"runId": "r1"}, sink))
    assert result.session_id == "echo-1"
    assert sink.types() == ["session-created", "complete"]
    assert sink.first("complete")["runId"] == "r1"

    asyncio.run(orch.run("again", {}, sink, provider="e"))
    assert EchoProvider.calls[-1][0] == "again"


def test_unknown_provider_sends_error_and_raises(registry, table, sink):
    orch = _orchestrator(registry, table)
    with pytest.raises(ProviderConfigError):
        asyncio.run(orch.run("hi", {"runId": "r9", "sessionId": "s9"}, sink, provider="nope"))
    error = sink.first("error")
    assert error["data"] == {"error": "Unknown provider: nope"}
    assert error["runId"] == "r9"
    assert error["sessionId"] == "s9"


def test_session_queries_and_abort(registry, table):
    orch = _orchestrator(registry, table)
    handle = FakeHandle()
    registry.add("live", ProviderKind.PROCESS, handle)

    assert orch.is_active("live")
    assert [s["sessionId"] for s in orch.list_active()] == ["live"]
    assert asyncio.run(orch.abort("live")) is True
    assert handle.terminated
    assert not orch.is_active("live")
    assert asyncio.run(orch.abort("live")) is False


def test_resolve_unknown_approval(registry, table):
    assert _orchestrator(registry, table).resolve_tool_approval("missing", {"allow": True}) is False
