"""Registry of active agent sessions and their abort handles.

A run registers itself under a provisional id (derived from the submission
time) or the caller's resume id, and is rekeyed once the engine reports its
own session id. All access happens on the event loop thread, so there is no
locking; ``rekey`` has no suspension point between inserting the new key and
dropping the old one.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence

from agent_gateway.models import ProviderKind, SessionStatus
from agent_gateway.services.images import release_aux_resources

logger = logging.getLogger(__name__)


class SessionHandle(Protocol):
    """Owned reference to a running engine, used only to stop it."""

    async def terminate(self) -> None: ...


class SessionConflictError(ValueError):
    """Raised when a session id is already held by another active run."""


@dataclass
class SessionEntry:
    id: str
    provider: ProviderKind
    handle: SessionHandle
    aux_resources: List[Path] = field(default_factory=list)
    status: SessionStatus = SessionStatus.ACTIVE
    started_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "sessionId": self.id,
            "provider": self.provider.value,
            "status": self.status.value,
            "startedAt": self.started_at,
        }


class SessionRegistry:
    def __init__(self) -> None:
        self._sessions: Dict[str, SessionEntry] = {}

    def provisional_id(self) -> str:
        """Mint a submission-time id not used by any active session."""
        base = str(int(time.time() * 1000))
        candidate = base
        n = 0
        while candidate in self._sessions:
            n += 1
            candidate = f"{base}-{n}"
        return candidate

    def add(
        self,
        session_id: str,
        provider: ProviderKind,
        handle: SessionHandle,
        aux_resources: Optional[Sequence[Path]] = None,
    ) -> SessionEntry:
        if session_id in self._sessions:
            raise SessionConflictError(f"Session already active: {session_id}")
        entry = SessionEntry(
            id=session_id,
            provider=provider,
            handle=handle,
            aux_resources=list(aux_resources or []),
        )
        self._sessions[session_id] = entry
        logger.debug("[Sessions] added %s (%s)", session_id, provider.value)
        return entry

    def get(self, session_id: str) -> Optional[SessionEntry]:
        return self._sessions.get(session_id)

    def remove(self, session_id: str, expected: Optional[SessionEntry] = None) -> Optional[SessionEntry]:
        """Drop ``session_id``; unknown ids are ignored.

        With ``expected`` the key is only dropped while it still points at that
        entry, so a finished run never evicts a newer run reusing the id.
        """
        entry = self._sessions.get(session_id)
        if entry is None:
            return None
        if expected is not None and entry is not expected:
            return None
        del self._sessions[session_id]
        logger.debug("[Sessions] removed %s", session_id)
        return entry

    def rekey(self, old_id: str, new_id: str) -> SessionEntry:
        entry = self._sessions.get(old_id)
        if entry is None:
            raise KeyError(f"Session not found: {old_id}")
        if old_id == new_id:
            return entry
        existing = self._sessions.get(new_id)
        if existing is not None and existing is not entry:
            raise SessionConflictError(f"Session already active: {new_id}")
        self._sessions[new_id] = entry
        entry.id = new_id
        del self._sessions[old_id]
        logger.info("[Sessions] rekeyed %s -> %s", old_id, new_id)
        return entry

    def list_active(self) -> List[SessionEntry]:
        return [e for e in self._sessions.values() if e.status == SessionStatus.ACTIVE]

    def is_active(self, session_id: str) -> bool:
        entry = self._sessions.get(session_id)
        return bool(entry and entry.status == SessionStatus.ACTIVE)

    async def abort(self, session_id: str) -> bool:
        """Stop a session by id. Returns False when no such session exists.

        The entry is removed even if the termination call fails.
        """
        entry = self._sessions.get(session_id)
        if entry is None:
            logger.info("[Sessions] abort: %s not found", session_id)
            return False
        logger.info("[Sessions] aborting %s (%s)", session_id, entry.provider.value)
        entry.status = SessionStatus.ABORTED
        try:
            await entry.handle.terminate()
        except Exception as e:
            logger.error("[Sessions] termination of %s failed: %s", session_id, e)
        finally:
            release_aux_resources(entry.aux_resources)
            self.remove(session_id, expected=entry)
        return True

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions


# Process-wide registry shared by all providers
session_registry = SessionRegistry()
