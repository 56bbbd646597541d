from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Callable, Dict, List, Optional

from claude_agent_sdk import ClaudeAgentOptions, ClaudeSDKClient
from claude_agent_sdk.types import PermissionResultAllow, PermissionResultDeny
from pydantic import ValidationError

from agent_gateway.config import settings
from agent_gateway.models import EventType, ProviderKind, RunResult, SdkRunOptions, parse_run_options
from agent_gateway.services.approvals import ApprovalGateway, PendingApprovals
from agent_gateway.services.images import stage_images
from agent_gateway.services.mcp_config import McpConfigLoader, mcp_config_loader
from agent_gateway.services.normalizer import message_to_dict, normalize_sdk_message
from agent_gateway.services.session_registry import SessionConflictError, SessionRegistry, session_registry
from agent_gateway.services.token_budget import extract_token_budget

from .base import ProviderConfigError, ProviderError, RunState, Sink

logger = logging.getLogger(__name__)

# Read-only tools granted by default in plan mode
PLAN_MODE_TOOLS = ["Read", "Task", "exit_plan_mode", "TodoRead", "TodoWrite", "WebFetch", "WebSearch"]

ClientFactory = Callable[[ClaudeAgentOptions], Any]


def _same_dir(a: str, b: str) -> bool:
    return os.path.normcase(os.path.abspath(a)) == os.path.normcase(os.path.abspath(b))


def map_options(
    options: SdkRunOptions,
    default_model: Optional[str] = None,
    home: Optional[str] = None,
    mcp_servers: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Translate run options into ``ClaudeAgentOptions`` keyword arguments."""
    cwd = options.working_dir()
    tools = options.tools_settings
    mode = options.permission_mode
    kwargs: Dict[str, Any] = {"cwd": cwd}

    if mode != "default":
        kwargs["permission_mode"] = mode
    if tools.skip_permissions and mode != "plan":
        kwargs["permission_mode"] = "bypassPermissions"

    allowed: List[str] = list(tools.allowed_tools)
    if mode == "plan":
        for tool in PLAN_MODE_TOOLS:
            if tool not in allowed:
                allowed.append(tool)
    # Both lists are always explicit; an unset list would mean "all tools"
    kwargs["allowed_tools"] = allowed
    kwargs["disallowed_tools"] = list(tools.disallowed_tools)

    kwargs["model"] = options.model or default_model or settings.providers.claude_default_model
    kwargs["system_prompt"] = {"type": "preset", "preset": "claude_code"}

    # Project discovery from the home directory would index the whole tree
    home_dir = home or os.path.expanduser("~")
    if _same_dir(cwd, home_dir):
        kwargs["setting_sources"] = ["user", "local"]
    else:
        kwargs["setting_sources"] = ["project", "user", "local"]

    if options.session_id:
        kwargs["resume"] = options.session_id
    if mcp_servers:
        kwargs["mcp_servers"] = mcp_servers
    return kwargs


def _cancel_signal(context: Any) -> Any:
    signal = getattr(context, "signal", None)
    if signal is not None and callable(getattr(signal, "wait", None)):
        return signal
    return None


def make_permission_callback(gateway: ApprovalGateway):
    async def can_use_tool(tool_name: str, tool_input: Dict[str, Any], context: Any):
        outcome = await gateway.check(tool_name, tool_input, signal=_cancel_signal(context))
        if outcome.allow:
            return PermissionResultAllow(updated_input=outcome.updated_input)
        return PermissionResultDeny(message=outcome.message or "")

    return can_use_tool


class SdkHandle:
    def __init__(self, client: Any) -> None:
        self.client = client

    async def terminate(self) -> None:
        await self.client.interrupt()


class ClaudeSdkProvider:
    """Drives the Claude agent through ``ClaudeSDKClient`` with gated tool use."""

    name = "claude_sdk"
    kind = ProviderKind.SDK

    def __init__(
        self,
        registry: Optional[SessionRegistry] = None,
        client_factory: Optional[ClientFactory] = None,
        approvals: Optional[PendingApprovals] = None,
        mcp_loader: Optional[McpConfigLoader] = None,
        default_model: Optional[str] = None,
        approval_timeout: Optional[float] = None,
        context_window: Optional[int] = None,
    ) -> None:
        self.registry = registry if registry is not None else session_registry
        self.client_factory: ClientFactory = client_factory or (lambda opts: ClaudeSDKClient(options=opts))
        self.approvals = approvals
        self.mcp_loader = mcp_loader if mcp_loader is not None else mcp_config_loader
        self.default_model = default_model or settings.providers.claude_default_model
        self.approval_timeout = approval_timeout
        self.context_window = context_window

    async def run(self, prompt: str, options: Any, sink: Sink) -> RunResult:
        try:
            opts = parse_run_options(ProviderKind.SDK, options)
        except (ValidationError, ValueError) as e:
            raise ProviderConfigError(str(e)) from e

        state = RunState(sink, self.kind, self.registry, run_id=opts.run_id, session_id=opts.session_id)
        cwd = opts.working_dir()
        staged = stage_images(prompt or "", opts.images, cwd)
        state.aux_resources.extend(staged.aux_resources)

        kwargs = map_options(opts, self.default_model, mcp_servers=self.mcp_loader.load(cwd))
        gateway = ApprovalGateway(
            state,
            allowed_tools=kwargs["allowed_tools"],
            disallowed_tools=kwargs["disallowed_tools"],
            bypass=kwargs.get("permission_mode") == "bypassPermissions",
            timeout=self.approval_timeout,
            table=self.approvals,
        )
        kwargs["can_use_tool"] = make_permission_callback(gateway)
        logger.info(
            "[ClaudeSdkProvider] Starting query model=%s mode=%s cwd=%s resume=%s",
            kwargs["model"], kwargs.get("permission_mode", "default"), cwd, opts.session_id or "-",
        )

        try:
            client = self.client_factory(ClaudeAgentOptions(**kwargs))
        except Exception as e:
            logger.error("[ClaudeSdkProvider] Invalid SDK options: %s", e)
            state.emit(EventType.ERROR, {"error": str(e)})
            state.finish()
            raise ProviderConfigError(f"Invalid SDK options: {e}") from e

        try:
            state.register(SdkHandle(client))
        except SessionConflictError as e:
            state.emit(EventType.ERROR, {"error": str(e)})
            state.finish()
            raise ProviderConfigError(str(e)) from e

        try:
            await client.connect()
            await client.query(staged.prompt)
            async for message in client.receive_response():
                self._handle_message(message_to_dict(message), state)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not state.aborted:
                logger.error("[ClaudeSdkProvider] Query failed: %s", e)
                state.emit(EventType.ERROR, {"error": str(e)})
                raise ProviderError(str(e)) from e
            logger.info("[ClaudeSdkProvider] Query ended after abort: %s", e)
        finally:
            state.finish()
            try:
                await client.disconnect()
            except Exception as e:
                logger.warning("[ClaudeSdkProvider] Disconnect failed: %s", e)

        is_new = state.is_new_session and bool(prompt and prompt.strip())
        aborted = state.aborted
        state.emit(EventType.COMPLETE, {"exitCode": 0, "isNewSession": is_new, "aborted": aborted})
        return RunResult(session_id=state.session_id, exit_code=0, is_new_session=is_new, aborted=aborted)

    def _handle_message(self, message: Dict[str, Any], state: RunState) -> None:
        normalized = normalize_sdk_message(message)
        if normalized.session_id:
            state.capture_session_id(normalized.session_id)
        state.emit(normalized.type, normalized.data, success=normalized.success)
        if normalized.type == EventType.RESULT:
            budget = extract_token_budget(message, self.context_window)
            if budget:
                state.emit(EventType.TOKEN_BUDGET, budget)
