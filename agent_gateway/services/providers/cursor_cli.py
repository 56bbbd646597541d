from __future__ import annotations

import asyncio
import json
import logging
import shlex
from typing import Any, List, Optional, Sequence

from pydantic import ValidationError

from agent_gateway.config import settings
from agent_gateway.models import EventType, ProcessRunOptions, ProviderKind, RunResult, parse_run_options
from agent_gateway.services.images import stage_images
from agent_gateway.services.normalizer import BLOCK_STOP, normalize_process_event
from agent_gateway.services.session_registry import SessionConflictError, SessionRegistry, session_registry

from .base import (
    ProviderConfigError,
    ProviderExitError,
    ProviderStartError,
    RunState,
    Sink,
)

logger = logging.getLogger(__name__)


def build_command(command: Sequence[str], prompt: Optional[str], options: ProcessRunOptions) -> List[str]:
    """Build the CLI argv for one run."""
    args = list(command)
    if options.session_id:
        args.append(f"--resume={options.session_id}")
    if prompt and prompt.strip():
        args.extend(["-p", prompt])
        # A resumed session keeps its model
        if not options.session_id and options.model:
            args.extend(["--model", options.model])
        args.extend(["--output-format", "stream-json"])
    if options.skip_permissions or options.tools_settings.skip_permissions:
        args.append("-f")
    return args


class ProcessHandle:
    def __init__(self, proc: asyncio.subprocess.Process) -> None:
        self.proc = proc

    @property
    def pid(self) -> Optional[int]:
        return self.proc.pid

    async def terminate(self) -> None:
        # SIGTERM only; partial output is not drained
        if self.proc.returncode is not None:
            return
        try:
            self.proc.terminate()
        except ProcessLookupError:
            pass


class CursorCliProvider:
    """Runs the agent CLI once per prompt and streams its stream-json output."""

    name = "cursor_cli"
    kind = ProviderKind.PROCESS

    def __init__(
        self,
        registry: Optional[SessionRegistry] = None,
        command: Optional[Sequence[str]] = None,
        line_limit: Optional[int] = None,
    ) -> None:
        self.registry = registry if registry is not None else session_registry
        self.command = list(command) if command else list(settings.providers.cursor_command)
        self.line_limit = line_limit or settings.providers.stdout_line_limit

    async def run(self, prompt: str, options: Any, sink: Sink) -> RunResult:
        try:
            opts = parse_run_options(ProviderKind.PROCESS, options)
        except (ValidationError, ValueError) as e:
            raise ProviderConfigError(str(e)) from e

        state = RunState(sink, self.kind, self.registry, run_id=opts.run_id, session_id=opts.session_id)
        cwd = opts.working_dir()
        staged = stage_images(prompt or "", opts.images, cwd)
        state.aux_resources.extend(staged.aux_resources)
        argv = build_command(self.command, staged.prompt, opts)
        logger.info("[CursorCliProvider] Starting: %s (cwd=%s)", " ".join(shlex.quote(a) for a in argv), cwd)

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=self.line_limit,
            )
        except OSError as e:
            logger.error("[CursorCliProvider] Failed to start: %s", e)
            state.emit(EventType.ERROR, {"error": f"Failed to start agent CLI: {e}"})
            state.finish()
            raise ProviderStartError(f"Failed to start agent CLI '{argv[0]}': {e}") from e

        handle = ProcessHandle(proc)
        try:
            state.register(handle)
        except SessionConflictError as e:
            await handle.terminate()
            await proc.wait()
            state.emit(EventType.ERROR, {"error": str(e)})
            state.finish()
            raise ProviderConfigError(str(e)) from e

        err_task = asyncio.create_task(self._stderr_reader(proc, state), name="cursor-cli-stderr")
        try:
            await self._stdout_reader(proc, state)
            await err_task
            exit_code = await proc.wait()
        except asyncio.CancelledError:
            await handle.terminate()
            try:
                await asyncio.wait_for(proc.wait(), timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("[CursorCliProvider] Process %s did not exit after SIGTERM; killing", proc.pid)
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
            raise
        finally:
            if not err_task.done():
                err_task.cancel()
            state.finish()

        is_new = state.is_new_session and bool(prompt and prompt.strip())
        aborted = state.aborted
        logger.info("[CursorCliProvider] Exited with code %s (session=%s)", exit_code, state.session_id)
        state.emit(EventType.COMPLETE, {"exitCode": exit_code, "isNewSession": is_new, "aborted": aborted})
        if exit_code != 0 and not aborted:
            raise ProviderExitError(exit_code)
        return RunResult(
            session_id=state.session_id,
            exit_code=exit_code,
            is_new_session=is_new,
            aborted=aborted,
        )

    async def _stdout_reader(self, proc: asyncio.subprocess.Process, state: RunState) -> None:
        assert proc.stdout is not None
        buffer: List[str] = []  # text of the current assistant block
        while True:
            try:
                raw = await proc.stdout.readline()
            except ValueError as e:
                # Line above the reader limit; the reader drops it and moves on
                logger.warning("[CursorCliProvider] Dropped oversized line: %s", e)
                state.emit(EventType.ERROR, {"error": "Output line exceeded the size limit"})
                continue
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace").strip()
            if line:
                self._handle_line(line, state, buffer)

    def _handle_line(self, line: str, state: RunState, buffer: List[str]) -> None:
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            state.emit(EventType.RAW_OUTPUT, line)
            return

        normalized = normalize_process_event(event)
        if normalized.session_id:
            state.capture_session_id(
                normalized.session_id,
                model=event.get("model"),
                cwd=event.get("cwd"),
            )

        if normalized.type == EventType.ASSISTANT_DELTA:
            if normalized.text:
                buffer.append(normalized.text)
            state.emit(EventType.ASSISTANT_DELTA, normalized.data)
        elif normalized.type == EventType.RESULT:
            if buffer:
                state.emit(EventType.ASSISTANT_STOP, BLOCK_STOP)
                buffer.clear()
            state.emit(EventType.RESULT, normalized.data, success=normalized.success)
        else:
            state.emit(normalized.type, normalized.data)

    async def _stderr_reader(self, proc: asyncio.subprocess.Process, state: RunState) -> None:
        assert proc.stderr is not None
        while True:
            try:
                raw = await proc.stderr.readline()
            except ValueError:
                continue
            if not raw:
                break
            text = raw.decode("utf-8", errors="replace").rstrip()
            if text:
                logger.debug("[CursorCliProvider] stderr: %s", text)
                state.emit(EventType.ERROR, {"error": text})
