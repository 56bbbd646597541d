from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Optional, Protocol, Sequence

from agent_gateway.models import Envelope, EventType, ProviderKind, SessionStatus
from agent_gateway.services.images import release_aux_resources
from agent_gateway.services.session_registry import (
    SessionConflictError,
    SessionEntry,
    SessionHandle,
    SessionRegistry,
)

logger = logging.getLogger(__name__)


class ProviderError(RuntimeError):
    """A run could not be completed by its engine."""


class ProviderConfigError(ProviderError):
    """Options or configuration are invalid for the selected engine."""


class ProviderStartError(ProviderError):
    """The engine could not be started."""


class ProviderExitError(ProviderError):
    def __init__(self, exit_code: Optional[int], message: Optional[str] = None) -> None:
        super().__init__(message or f"Agent process exited with code {exit_code}")
        self.exit_code = exit_code


class UnknownProviderError(KeyError):
    pass


class Sink(Protocol):
    """Transport-facing receiver of envelopes.

    ``send`` must not block. Sinks may also define ``set_session_id(id)``,
    called once when the engine session id becomes known.
    """

    def send(self, envelope: Envelope) -> None: ...


class IAgentProvider(Protocol):
    name: str
    kind: ProviderKind

    async def run(self, prompt: str, options: Any, sink: Sink) -> Any: ...


class RunState:
    """Per-run bookkeeping shared by the provider adapters.

    Holds the sink, the correlation ids and the registry entry of one run,
    and enforces the session-id rules: the engine id is captured once, the
    entry is rekeyed to it, and ``session-created`` is sent only for runs
    that did not resume an existing session.
    """

    def __init__(
        self,
        sink: Sink,
        provider: ProviderKind,
        registry: SessionRegistry,
        run_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.sink = sink
        self.provider = provider
        self.registry = registry
        self.run_id = run_id
        self.resume_id = session_id
        self.session_id = session_id
        self.aux_resources: List[Path] = []
        self.key: Optional[str] = None
        self.entry: Optional[SessionEntry] = None
        self._finished = False

    @property
    def is_new_session(self) -> bool:
        return self.resume_id is None

    @property
    def aborted(self) -> bool:
        return self.entry is not None and self.entry.status == SessionStatus.ABORTED

    def emit(self, type: EventType, data: Any = None, **extra: Any) -> None:
        envelope = Envelope(type=type, data=data, session_id=self.session_id, run_id=self.run_id, **extra)
        try:
            self.sink.send(envelope)
        except Exception as e:
            logger.error("[RunState] Sink rejected %s envelope: %s", type.value, e)

    def _notify_sink(self, session_id: str) -> None:
        setter = getattr(self.sink, "set_session_id", None)
        if setter is None:
            return
        try:
            setter(session_id)
        except Exception as e:
            logger.warning("[RunState] set_session_id failed: %s", e)

    def register(self, handle: SessionHandle, aux_resources: Optional[Sequence[Path]] = None) -> SessionEntry:
        """Add the run to the registry under the resume id or a provisional id."""
        if aux_resources:
            self.aux_resources.extend(aux_resources)
        key = self.resume_id or self.registry.provisional_id()
        self.entry = self.registry.add(key, self.provider, handle, self.aux_resources)
        self.key = key
        if self.resume_id:
            self._notify_sink(self.resume_id)
        return self.entry

    def capture_session_id(self, session_id: Optional[str], **created: Any) -> bool:
        """Record the engine session id the first time one is seen.

        Returns True only for the capturing call. Later ids, and any id seen
        on a resumed run, are ignored.
        """
        if not session_id or self.session_id is not None:
            return False
        self.session_id = session_id
        if self.entry is not None and self.key is not None:
            try:
                self.registry.rekey(self.key, session_id)
                self.key = session_id
            except (KeyError, SessionConflictError) as e:
                logger.warning("[RunState] Keeping key %s: %s", self.key, e)
        self._notify_sink(session_id)
        self.emit(EventType.SESSION_CREATED, {"sessionId": session_id, **created})
        return True

    def finish(self) -> None:
        """Release aux resources, then drop the registry entry. Idempotent."""
        if self._finished:
            return
        self._finished = True
        release_aux_resources(self.aux_resources)
        if self.entry is not None and self.key is not None:
            self.registry.remove(self.key, expected=self.entry)
            if self.entry.status == SessionStatus.ACTIVE:
                self.entry.status = SessionStatus.COMPLETED
