from __future__ import annotations

from typing import Callable, Dict, Iterable, List

from .base import IAgentProvider, UnknownProviderError
from .claude_sdk import ClaudeSdkProvider
from .cursor_cli import CursorCliProvider


class ProviderRegistry:
    def __init__(self) -> None:
        self._fns: Dict[str, Callable[[], IAgentProvider]] = {}
        self._aliases: Dict[str, str] = {}

    def register(self, name: str, factory: Callable[[], IAgentProvider], aliases: Iterable[str] = ()) -> None:
        self._fns[name] = factory
        for alias in aliases:
            self._aliases[alias] = name

    def resolve_name(self, name: str) -> str:
        key = (name or "").strip().lower()
        key = self._aliases.get(key, key)
        if key not in self._fns:
            raise UnknownProviderError(f"Provider not registered: {name}")
        return key

    def get(self, name: str) -> IAgentProvider:
        return self._fns[self.resolve_name(name)]()

    def names(self) -> List[str]:
        return sorted(self._fns)


registry = ProviderRegistry()
registry.register("cursor_cli", CursorCliProvider, aliases=("cursor", "process"))
registry.register("claude_sdk", ClaudeSdkProvider, aliases=("claude", "sdk"))
