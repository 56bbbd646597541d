"""WebSocket channel: runs prompts and relays approvals over one connection."""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set, Union

from fastapi import WebSocket, WebSocketDisconnect

from agent_gateway.models import Envelope, EventType
from agent_gateway.security import websocket_authorized
from agent_gateway.services.orchestrator import orchestrator
from agent_gateway.services.providers import ProviderError, ProviderExitError

logger = logging.getLogger(__name__)

_END = object()


class WebSocketSink:
    """Sink that queues envelopes and writes them from a pump task.

    ``send`` only enqueues, so the providers never wait on the socket.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.session_id: Optional[str] = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._pump(), name="ws-sink-pump")

    def send(self, envelope: Union[Envelope, Dict[str, Any]]) -> None:
        if self._closed:
            return
        message = envelope.to_wire() if isinstance(envelope, Envelope) else envelope
        self._queue.put_nowait(message)

    def set_session_id(self, session_id: str) -> None:
        self.session_id = session_id

    async def _pump(self) -> None:
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            try:
                await self.websocket.send_text(json.dumps(item, default=str))
            except Exception as e:
                logger.error("Error sending to websocket: %s", e)
                self._closed = True

    async def close(self) -> None:
        self._closed = True
        if self._task is None:
            return
        self._queue.put_nowait(_END)
        await self._task
        self._task = None


async def _run(sink: WebSocketSink, message: Dict[str, Any]) -> None:
    prompt = message.get("prompt") or message.get("command") or ""
    options = message.get("options") or {}
    try:
        await orchestrator.run(prompt, options, sink, provider=message.get("provider"))
    except ProviderExitError as e:
        sink.send(Envelope(
            type=EventType.ERROR,
            data={"error": str(e), "exitCode": e.exit_code},
            session_id=sink.session_id,
            run_id=options.get("runId"),
        ))
    except ProviderError as e:
        logger.warning("[WS] Run failed: %s", e)
    except Exception as e:
        logger.error("[WS] Unexpected run failure: %s", e)
        sink.send(Envelope(
            type=EventType.ERROR,
            data={"error": str(e)},
            session_id=sink.session_id,
            run_id=options.get("runId"),
        ))


def _decision_from(message: Dict[str, Any]) -> Dict[str, Any]:
    decision = message.get("decision")
    if isinstance(decision, dict):
        return decision
    keys = ("allow", "updatedInput", "rememberEntry", "message", "cancelled")
    return {k: message[k] for k in keys if k in message}


async def _dispatch(sink: WebSocketSink, message: Dict[str, Any], runs: Set[asyncio.Task]) -> None:
    kind = message.get("type")
    if kind == "agent-run":
        task = asyncio.create_task(_run(sink, message), name="ws-agent-run")
        runs.add(task)
        task.add_done_callback(runs.discard)
    elif kind == "tool-approval-response":
        request_id = message.get("requestId")
        if not request_id:
            sink.send({"type": "error", "data": {"error": "requestId required"}})
            return
        orchestrator.resolve_tool_approval(request_id, _decision_from(message))
    elif kind == "abort-session":
        session_id = message.get("sessionId") or ""
        success = await orchestrator.abort(session_id)
        sink.send({"type": "session-aborted", "sessionId": session_id, "success": success})
    elif kind == "check-session-status":
        session_id = message.get("sessionId") or ""
        sink.send({"type": "session-status", "sessionId": session_id, "isProcessing": orchestrator.is_active(session_id)})
    elif kind == "get-active-sessions":
        sink.send({"type": "active-sessions", "sessions": orchestrator.list_active()})
    else:
        sink.send({"type": "error", "data": {"error": f"Unknown message type: {kind}"}})


async def websocket_endpoint(websocket: WebSocket) -> None:
    """Bidirectional agent channel.

    Client messages: ``agent-run``, ``tool-approval-response``,
    ``abort-session``, ``check-session-status``, ``get-active-sessions``.
    """
    if not websocket_authorized(websocket):
        await websocket.accept()
        await websocket.send_text(json.dumps({"type": "error", "message": "unauthorized"}))
        await websocket.close()
        return

    await websocket.accept()
    sink = WebSocketSink(websocket)
    sink.start()
    runs: Set[asyncio.Task] = set()
    logger.info("[WS] Agent channel connected")
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                sink.send({"type": "error", "data": {"error": "Invalid JSON"}})
                continue
            if not isinstance(message, dict):
                sink.send({"type": "error", "data": {"error": "Expected a JSON object"}})
                continue
            await _dispatch(sink, message, runs)
    except WebSocketDisconnect:
        logger.info("[WS] Agent channel disconnected (%d run(s) still active)", len(runs))
    except Exception as e:
        logger.error("WebSocket error: %s", e)
    finally:
        await sink.close()
