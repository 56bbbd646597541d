"""Entry point that runs a prompt on the configured agent engine."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

from agent_gateway.config import settings
from agent_gateway.models import ApprovalDecision, Envelope, EventType, RunResult
from agent_gateway.services.approvals import PendingApprovals, pending_approvals, resolve_tool_approval
from agent_gateway.services.providers import (
    ProviderConfigError,
    ProviderRegistry,
    Sink,
    UnknownProviderError,
    registry as provider_registry,
)
from agent_gateway.services.session_registry import SessionRegistry, session_registry

logger = logging.getLogger(__name__)


class AgentOrchestrator:
    def __init__(
        self,
        providers: Optional[ProviderRegistry] = None,
        sessions: Optional[SessionRegistry] = None,
        approvals: Optional[PendingApprovals] = None,
        default_provider: Optional[str] = None,
    ) -> None:
        self.providers = providers if providers is not None else provider_registry
        self.sessions = sessions if sessions is not None else session_registry
        self.approvals = approvals if approvals is not None else pending_approvals
        self.default_provider = default_provider or settings.providers.default

    async def run(
        self,
        prompt: str,
        options: Optional[Dict[str, Any]],
        sink: Sink,
        provider: Optional[str] = None,
    ) -> RunResult:
        """Run ``prompt`` and push envelopes into ``sink``.

        Raises ``ProviderConfigError`` for an unknown provider name, after
        sending an ``error`` envelope. Other failures propagate from the
        adapter as ``ProviderError`` subclasses.
        """
        options = options or {}
        name = provider or options.get("provider") or self.default_provider
        try:
            adapter = self.providers.get(name)
        except UnknownProviderError as e:
            logger.error("[Orchestrator] %s", e)
            sink.send(Envelope(
                type=EventType.ERROR,
                data={"error": f"Unknown provider: {name}"},
                session_id=options.get("sessionId") or options.get("session_id"),
                run_id=options.get("runId") or options.get("run_id"),
            ))
            raise ProviderConfigError(f"Unknown provider: {name}") from e

        logger.info("[Orchestrator] Running on %s", adapter.name)
        return await adapter.run(prompt, options, sink)

    async def abort(self, session_id: str) -> bool:
        return await self.sessions.abort(session_id)

    def list_active(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self.sessions.list_active()]

    def is_active(self, session_id: str) -> bool:
        return self.sessions.is_active(session_id)

    def resolve_tool_approval(
        self,
        request_id: str,
        decision: Union[None, Dict[str, Any], ApprovalDecision],
    ) -> bool:
        return resolve_tool_approval(request_id, decision, table=self.approvals)


orchestrator = AgentOrchestrator()
