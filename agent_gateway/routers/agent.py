"""Agent run endpoints.

Endpoints:
- POST /api/v1/agent/run                       (SSE stream, or JSON with stream=false)
- GET  /api/v1/agent/sessions
- GET  /api/v1/agent/sessions/{session_id}
- POST /api/v1/agent/sessions/{session_id}/abort
- POST /api/v1/agent/approvals/{request_id}
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from agent_gateway.models import ApprovalDecision, Envelope, EventType
from agent_gateway.services.orchestrator import orchestrator
from agent_gateway.services.providers import ProviderConfigError, ProviderError, ProviderExitError
from agent_gateway.services.sinks import ResponseCollector, SSEStreamWriter

router = APIRouter()
logger = logging.getLogger(__name__)

# Keeps streamed runs referenced until they finish
_background: Set[asyncio.Task] = set()


class RunRequest(BaseModel):
    """Run request; any extra field is passed through as a run option."""

    model_config = ConfigDict(extra="allow")

    message: str = Field(min_length=1, description="Prompt sent to the agent")
    provider: Optional[str] = Field(default=None, description="Provider name or alias; default from settings")
    stream: bool = Field(default=True, description="Stream envelopes as server-sent events")


def _options(payload: RunRequest) -> Dict[str, Any]:
    return dict(payload.model_extra or {})


async def _drive_stream(payload: RunRequest, writer: SSEStreamWriter) -> None:
    options = _options(payload)
    try:
        await orchestrator.run(payload.message, options, writer, provider=payload.provider)
    except ProviderExitError as e:
        writer.send(Envelope(
            type=EventType.ERROR,
            data={"error": str(e), "exitCode": e.exit_code},
            session_id=writer.session_id,
            run_id=options.get("runId"),
        ))
    except ProviderError as e:
        # Adapters already sent the error envelope
        logger.warning("[/agent/run] Run failed: %s", e)
    except Exception as e:
        logger.error("[/agent/run] Unexpected failure: %s", e)
        writer.send(Envelope(
            type=EventType.ERROR,
            data={"error": str(e), "message": f"Failed: {e}"},
            session_id=writer.session_id,
            run_id=options.get("runId"),
        ))
    finally:
        writer.end()


@router.post("/run", response_model=None)
async def run_agent(payload: RunRequest):
    """Run a prompt on an agent engine."""
    if payload.stream:
        writer = SSEStreamWriter()
        task = asyncio.create_task(_drive_stream(payload, writer), name="agent-run-sse")
        _background.add(task)
        task.add_done_callback(_background.discard)
        return StreamingResponse(
            writer.stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    collector = ResponseCollector()
    try:
        result = await orchestrator.run(payload.message, _options(payload), collector, provider=payload.provider)
    except ProviderConfigError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ProviderError as e:
        logger.error("[/agent/run] Failed: %s", e)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": str(e), "sessionId": collector.session_id},
        )
    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "sessionId": collector.session_id or result.session_id,
            "isNewSession": result.is_new_session,
            "aborted": result.aborted,
            "messages": collector.assistant_messages(),
            "tokens": collector.total_tokens(),
        },
    )


@router.get("/sessions")
async def list_sessions() -> JSONResponse:
    return JSONResponse(status_code=200, content={"sessions": orchestrator.list_active()})


@router.get("/sessions/{session_id}")
async def session_status(session_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=200,
        content={"sessionId": session_id, "active": orchestrator.is_active(session_id)},
    )


@router.post("/sessions/{session_id}/abort")
async def abort_session(session_id: str) -> JSONResponse:
    if not await orchestrator.abort(session_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Session '{session_id}' not found")
    return JSONResponse(status_code=200, content={"sessionId": session_id, "success": True})


@router.post("/approvals/{request_id}")
async def resolve_approval(request_id: str, decision: ApprovalDecision) -> JSONResponse:
    if not orchestrator.resolve_tool_approval(request_id, decision):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No pending approval '{request_id}'",
        )
    return JSONResponse(status_code=200, content={"requestId": request_id, "resolved": True})
