from .base import (
    IAgentProvider,
    ProviderConfigError,
    ProviderError,
    ProviderExitError,
    ProviderStartError,
    RunState,
    Sink,
    UnknownProviderError,
)
from .claude_sdk import ClaudeSdkProvider
from .cursor_cli import CursorCliProvider
from .registry import ProviderRegistry, registry

__all__ = [
    "IAgentProvider",
    "ProviderConfigError",
    "ProviderError",
    "ProviderExitError",
    "ProviderStartError",
    "RunState",
    "Sink",
    "UnknownProviderError",
    "ClaudeSdkProvider",
    "CursorCliProvider",
    "ProviderRegistry",
    "registry",
]
