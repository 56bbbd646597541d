"""Tool approval gateway.

Each tool call the SDK engine wants to make goes through ``ApprovalGateway.check``:
bypass, then deny rules, then allow rules, then an interactive decision from
the UI. An interactive request is a ``PendingApproval``, a single-assignment
future raced by three triggers:

- an explicit decision routed in by request id (``resolve_tool_approval``);
- a local timeout, kept below the engine's own control timeout;
- upstream cancellation (an abort signal, or cancellation of the waiting task).

The first trigger settles the future; the timer and the signal watcher are
torn down on settlement and the entry leaves the table before ``check``
returns.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union
from uuid import uuid4

from agent_gateway.config import settings
from agent_gateway.models import ApprovalDecision, EventType

logger = logging.getLogger(__name__)

DISALLOWED_MESSAGE = "Tool disallowed by settings"
TIMEOUT_MESSAGE = "Permission request timed out"
CANCELLED_MESSAGE = "Permission request cancelled"
DENIED_MESSAGE = "User denied tool use"

_BASH_RULE = re.compile(r"^Bash\((.+):\*\)$")


def create_request_id() -> str:
    return str(uuid4())


def _command_of(tool_input: Any) -> str:
    if isinstance(tool_input, str):
        return tool_input.strip()
    if isinstance(tool_input, dict) and isinstance(tool_input.get("command"), str):
        return tool_input["command"].strip()
    return ""


def matches_tool_permission(entry: str, tool_name: str, tool_input: Any) -> bool:
    """Match an allow/deny rule against a tool call.

    A rule is either a tool name (exact) or ``Bash(<prefix>:*)``, which
    matches Bash commands starting with ``<prefix>``.
    """
    if not entry or not tool_name:
        return False
    if entry == tool_name:
        return True
    match = _BASH_RULE.match(entry)
    if match and tool_name == "Bash":
        command = _command_of(tool_input)
        return bool(command) and command.startswith(match.group(1))
    return False


@dataclass
class ApprovalOutcome:
    allow: bool
    updated_input: Any = None
    message: Optional[str] = None


class PendingApproval:
    def __init__(self, request_id: str, tool_name: str, tool_input: Any) -> None:
        self.request_id = request_id
        self.tool_name = tool_name
        self.tool_input = tool_input
        # "decision" | "timeout" | "cancelled"
        self.reason: Optional[str] = None
        self._loop = asyncio.get_running_loop()
        self._future: asyncio.Future = self._loop.create_future()
        self._future.add_done_callback(lambda _f: self._teardown())
        self._timer: Optional[asyncio.TimerHandle] = None
        self._watcher: Optional[asyncio.Task] = None

    @property
    def settled(self) -> bool:
        return self._future.done()

    def arm(self, timeout: Optional[float], signal: Any = None) -> None:
        """Start the timeout and, when given, the cancellation watcher."""
        if self.settled:
            return
        if timeout is not None and timeout > 0:
            self._timer = self._loop.call_later(timeout, self.resolve, None, "timeout")
        if signal is not None:
            self._watcher = self._loop.create_task(self._watch(signal))

    async def _watch(self, signal: Any) -> None:
        await signal.wait()
        self.resolve(ApprovalDecision(cancelled=True), "cancelled")

    def resolve(self, decision: Optional[ApprovalDecision], reason: str = "decision") -> bool:
        """Settle with ``decision``. Returns False if already settled."""
        if self._future.done():
            return False
        self.reason = reason
        self._future.set_result(decision)
        return True

    def _teardown(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        watcher, self._watcher = self._watcher, None
        if watcher is not None and not watcher.done() and watcher is not asyncio.current_task():
            watcher.cancel()

    async def wait(self) -> Optional[ApprovalDecision]:
        try:
            return await self._future
        except asyncio.CancelledError:
            if self.reason is None:
                self.reason = "cancelled"
            raise


class PendingApprovals:
    """Process-wide table of outstanding approval requests."""

    def __init__(self) -> None:
        self._pending: Dict[str, PendingApproval] = {}

    def create(self, request_id: str, tool_name: str, tool_input: Any) -> PendingApproval:
        if request_id in self._pending:
            raise ValueError(f"Approval request already pending: {request_id}")
        pending = PendingApproval(request_id, tool_name, tool_input)
        self._pending[request_id] = pending
        return pending

    def get(self, request_id: str) -> Optional[PendingApproval]:
        return self._pending.get(request_id)

    def resolve(self, request_id: str, decision: Optional[ApprovalDecision]) -> bool:
        pending = self._pending.get(request_id)
        if pending is None:
            logger.info("[Approvals] No pending request %s", request_id)
            return False
        return pending.resolve(decision)

    def discard(self, request_id: str, expected: Optional[PendingApproval] = None) -> None:
        pending = self._pending.get(request_id)
        if pending is None or (expected is not None and pending is not expected):
            return
        del self._pending[request_id]

    def ids(self) -> List[str]:
        return list(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def __len__(self) -> int:
        return len(self._pending)


pending_approvals = PendingApprovals()


def resolve_tool_approval(
    request_id: str,
    decision: Union[None, Dict[str, Any], ApprovalDecision],
    table: Optional[PendingApprovals] = None,
) -> bool:
    """Deliver a UI decision to the waiting tool call. False when unknown or settled."""
    table = table if table is not None else pending_approvals
    if isinstance(decision, dict):
        decision = ApprovalDecision.model_validate(decision)
    return table.resolve(request_id, decision)


class ApprovalGateway:
    """Per-run tool gate. The allow/deny lists are copies owned by the run."""

    def __init__(
        self,
        state: Any,
        allowed_tools: Optional[Sequence[str]] = None,
        disallowed_tools: Optional[Sequence[str]] = None,
        bypass: bool = False,
        timeout: Optional[float] = None,
        table: Optional[PendingApprovals] = None,
    ) -> None:
        self.state = state
        self.allowed_tools: List[str] = list(allowed_tools or [])
        self.disallowed_tools: List[str] = list(disallowed_tools or [])
        self.bypass = bypass
        self.timeout = settings.approvals.timeout_seconds if timeout is None else timeout
        if self.timeout <= 0:
            raise ValueError(f"Approval timeout must be positive, got {self.timeout}")
        self.table = table if table is not None else pending_approvals

    def _emit_cancelled(self, request_id: str, reason: str) -> None:
        self.state.emit(EventType.TOOL_APPROVAL_CANCELLED, request_id=request_id, reason=reason)

    def _remember(self, entry: str) -> None:
        if entry not in self.allowed_tools:
            self.allowed_tools.append(entry)
        self.disallowed_tools = [e for e in self.disallowed_tools if e != entry]

    async def check(self, tool_name: str, tool_input: Any, signal: Any = None) -> ApprovalOutcome:
        if self.bypass:
            return ApprovalOutcome(allow=True, updated_input=tool_input)
        if any(matches_tool_permission(e, tool_name, tool_input) for e in self.disallowed_tools):
            logger.info("[Approvals] %s denied by settings", tool_name)
            return ApprovalOutcome(allow=False, message=DISALLOWED_MESSAGE)
        if any(matches_tool_permission(e, tool_name, tool_input) for e in self.allowed_tools):
            return ApprovalOutcome(allow=True, updated_input=tool_input)

        request_id = create_request_id()
        pending = self.table.create(request_id, tool_name, tool_input)
        pending.arm(self.timeout, signal)
        logger.info("[Approvals] Waiting for decision on %s (%s)", tool_name, request_id)
        try:
            self.state.emit(
                EventType.TOOL_APPROVAL_REQUEST,
                request_id=request_id,
                tool_name=tool_name,
                input=tool_input,
            )
            try:
                decision = await pending.wait()
            except asyncio.CancelledError:
                self._emit_cancelled(request_id, "cancelled")
                raise
        finally:
            self.table.discard(request_id, expected=pending)

        if decision is None:
            if pending.reason == "timeout":
                logger.info("[Approvals] %s timed out", request_id)
                self._emit_cancelled(request_id, "timeout")
            return ApprovalOutcome(allow=False, message=TIMEOUT_MESSAGE)
        if decision.cancelled:
            if pending.reason == "cancelled":
                self._emit_cancelled(request_id, "cancelled")
            return ApprovalOutcome(allow=False, message=CANCELLED_MESSAGE)
        if decision.allow:
            if decision.remember_entry:
                self._remember(decision.remember_entry)
            updated = decision.updated_input if decision.updated_input is not None else tool_input
            return ApprovalOutcome(allow=True, updated_input=updated)
        return ApprovalOutcome(allow=False, message=decision.message or DENIED_MESSAGE)
