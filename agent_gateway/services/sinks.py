"""Sinks used by the HTTP transport: an SSE stream writer and a response collector."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from agent_gateway.models import Envelope, EventType

logger = logging.getLogger(__name__)

DONE_EVENT = 'data: {"type":"done"}\n\n'

_END = object()


def _wire(envelope: Union[Envelope, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(envelope, Envelope):
        return envelope.to_wire()
    return dict(envelope)


class SSEStreamWriter:
    """Queues envelopes and replays them as ``data: <json>`` server-sent events.

    ``send`` never blocks; ``stream`` is handed to ``StreamingResponse`` and
    finishes with a ``{"type":"done"}`` event after ``end``.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._ended = False
        self.session_id: Optional[str] = None

    @property
    def ended(self) -> bool:
        return self._ended

    def send(self, envelope: Union[Envelope, Dict[str, Any]]) -> None:
        if self._ended:
            return
        self._queue.put_nowait(_wire(envelope))

    def end(self) -> None:
        if self._ended:
            return
        self._ended = True
        self._queue.put_nowait(_END)

    def set_session_id(self, session_id: str) -> None:
        self.session_id = session_id

    async def stream(self) -> AsyncIterator[str]:
        while True:
            item = await self._queue.get()
            if item is _END:
                yield DONE_EVENT
                return
            yield f"data: {json.dumps(item, default=str)}\n\n"


class ResponseCollector:
    """Collects every envelope of a run for a single JSON response."""

    def __init__(self) -> None:
        self.messages: List[Dict[str, Any]] = []
        self.session_id: Optional[str] = None

    def send(self, envelope: Union[Envelope, Dict[str, Any]]) -> None:
        message = _wire(envelope)
        self.messages.append(message)
        if message.get("sessionId"):
            self.session_id = message["sessionId"]

    def end(self) -> None:
        pass

    def set_session_id(self, session_id: str) -> None:
        self.session_id = session_id

    def assistant_messages(self) -> List[Any]:
        """SDK assistant messages, or text deltas when the engine only streams text."""
        out: List[Any] = []
        for message in self.messages:
            if message.get("type") != EventType.ASSISTANT_DELTA.value:
                continue
            data = message.get("data")
            if isinstance(data, dict) and data.get("type") in ("assistant", "content_block_delta"):
                out.append(data)
        return out

    def total_tokens(self) -> Dict[str, int]:
        totals = {"inputTokens": 0, "outputTokens": 0, "cacheReadTokens": 0, "cacheCreationTokens": 0}
        for data in self.assistant_messages():
            usage = data.get("usage")
            if not isinstance(usage, dict) and isinstance(data.get("message"), dict):
                usage = data["message"].get("usage")
            if not isinstance(usage, dict):
                continue
            totals["inputTokens"] += usage.get("input_tokens") or 0
            totals["outputTokens"] += usage.get("output_tokens") or 0
            totals["cacheReadTokens"] += usage.get("cache_read_input_tokens") or 0
            totals["cacheCreationTokens"] += usage.get("cache_creation_input_tokens") or 0
        totals["totalTokens"] = sum(totals.values())
        return totals
