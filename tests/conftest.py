from typing import Any, Dict, List, Optional

import pytest

from agent_gateway.models import Envelope
from agent_gateway.services.approvals import PendingApprovals
from agent_gateway.services.mcp_config import McpConfigLoader
from agent_gateway.services.session_registry import SessionRegistry


class RecordingSink:
    """Sink that keeps every envelope in wire form."""

    def __init__(self) -> None:
        self.envelopes: List[Dict[str, Any]] = []
        self.session_ids: List[str] = []

    def send(self, envelope: Any) -> None:
        self.envelopes.append(envelope.to_wire() if isinstance(envelope, Envelope) else dict(envelope))

    def set_session_id(self, session_id: str) -> None:
        self.session_ids.append(session_id)

    def types(self) -> List[str]:
        return [e["type"] for e in self.envelopes]

    def of_type(self, kind: str) -> List[Dict[str, Any]]:
        return [e for e in self.envelopes if e["type"] == kind]

    def first(self, kind: str) -> Optional[Dict[str, Any]]:
        found = self.of_type(kind)
        return found[0] if found else None


class FakeHandle:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.terminated = False

    async def terminate(self) -> None:
        self.terminated = True
        if self.fail:
            raise OSError("kill failed")


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def table() -> PendingApprovals:
    return PendingApprovals()


@pytest.fixture
def no_mcp(tmp_path) -> McpConfigLoader:
    return McpConfigLoader(config_path=tmp_path / "no-claude.json")
