"""Models package for the agent gateway."""

from .core import (
    ApprovalDecision,
    BaseRunOptions,
    Envelope,
    EventType,
    ImageAttachment,
    ProcessRunOptions,
    ProviderKind,
    RunOptions,
    RunResult,
    SdkRunOptions,
    SessionStatus,
    ToolsSettings,
    parse_run_options,
)

__all__ = [
    "ApprovalDecision",
    "BaseRunOptions",
    "Envelope",
    "EventType",
    "ImageAttachment",
    "ProcessRunOptions",
    "ProviderKind",
    "RunOptions",
    "RunResult",
    "SdkRunOptions",
    "SessionStatus",
    "ToolsSettings",
    "parse_run_options",
]
