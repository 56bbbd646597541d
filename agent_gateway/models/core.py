"""Core models for the agent gateway contracts."""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ConfigDict, TypeAdapter, field_validator


class EventType(str, Enum):
    """Canonical envelope types pushed to a sink."""
    SESSION_CREATED = "session-created"
    SYSTEM_INFO = "system-info"
    USER_ECHO = "user-echo"
    ASSISTANT_DELTA = "assistant-delta"
    ASSISTANT_STOP = "assistant-stop"
    RESULT = "result"
    TOKEN_BUDGET = "token-budget"
    TOOL_APPROVAL_REQUEST = "tool-approval-request"
    TOOL_APPROVAL_CANCELLED = "tool-approval-cancelled"
    RAW_OUTPUT = "raw-output"
    ERROR = "error"
    COMPLETE = "complete"


class ProviderKind(str, Enum):
    PROCESS = "process"
    SDK = "sdk"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    ABORTED = "aborted"
    COMPLETED = "completed"


class Envelope(BaseModel):
    """Normalized message unit pushed to a sink.

    Every envelope carries ``type``, ``data``, ``sessionId`` and ``runId``.
    Approval envelopes additionally carry ``requestId``, ``toolName`` and
    ``input``; cancellation envelopes carry ``requestId`` and ``reason``.

    Examples:
        Text delta:
        ```json
        {
            "type": "assistant-delta",
            "data": {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hi"}},
            "sessionId": "3f1c9a1e-...",
            "runId": "run-42"
        }
        ```

        Approval request:
        ```json
        {
            "type": "tool-approval-request",
            "data": null,
            "requestId": "9b2e...",
            "toolName": "Write",
            "input": {"file_path": "README.md", "content": "..."},
            "sessionId": "3f1c9a1e-...",
            "runId": "run-42"
        }
        ```
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    type: EventType = Field(description="Canonical envelope type")
    data: Any = Field(default=None, description="Type-specific payload (opaque to the core)")
    session_id: Optional[str] = Field(default=None, alias="sessionId", description="Engine session id, null until known")
    run_id: Optional[str] = Field(default=None, alias="runId", description="Caller correlation token, passed through")
    request_id: Optional[str] = Field(default=None, alias="requestId")
    tool_name: Optional[str] = Field(default=None, alias="toolName")
    input: Any = None
    reason: Optional[str] = None
    success: Optional[bool] = None

    def to_wire(self) -> Dict[str, Any]:
        """Return the JSON-ready dict handed to transports."""
        out: Dict[str, Any] = {
            "type": self.type.value,
            "data": self.data,
            "sessionId": self.session_id,
            "runId": self.run_id,
        }
        if self.request_id is not None:
            out["requestId"] = self.request_id
        if self.tool_name is not None:
            out["toolName"] = self.tool_name
            out["input"] = self.input
        if self.reason is not None:
            out["reason"] = self.reason
        if self.success is not None:
            out["success"] = self.success
        return out


class ApprovalDecision(BaseModel):
    """Decision delivered by the UI for a pending tool approval."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    allow: bool = False
    updated_input: Any = Field(default=None, alias="updatedInput")
    remember_entry: Optional[str] = Field(default=None, alias="rememberEntry")
    message: Optional[str] = None
    cancelled: bool = False


class ToolsSettings(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    allowed_tools: List[str] = Field(default_factory=list, alias="allowedTools")
    disallowed_tools: List[str] = Field(default_factory=list, alias="disallowedTools")
    skip_permissions: bool = Field(default=False, alias="skipPermissions")


class ImageAttachment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: str = Field(description="data:<mime>;base64,<payload> URL")


class BaseRunOptions(BaseModel):
    """Options shared by every provider."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId", description="Resume this engine session")
    cwd: Optional[str] = None
    project_path: Optional[str] = Field(default=None, alias="projectPath")
    model: Optional[str] = None
    run_id: Optional[str] = Field(default=None, alias="runId")
    images: List[ImageAttachment] = Field(default_factory=list)
    tools_settings: ToolsSettings = Field(default_factory=ToolsSettings, alias="toolsSettings")

    @field_validator("session_id", "cwd", "project_path", "model", "run_id", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def working_dir(self) -> str:
        return self.cwd or self.project_path or os.getcwd()


class ProcessRunOptions(BaseRunOptions):
    provider: Literal["process"] = "process"
    skip_permissions: bool = Field(default=False, alias="skipPermissions")


PERMISSION_MODES = ("default", "acceptEdits", "plan", "bypassPermissions")


class SdkRunOptions(BaseRunOptions):
    provider: Literal["sdk"] = "sdk"
    permission_mode: str = Field(default="default", alias="permissionMode")

    @field_validator("permission_mode", mode="before")
    @classmethod
    def _check_mode(cls, v: Any) -> Any:
        if v is None or v == "":
            return "default"
        if v not in PERMISSION_MODES:
            raise ValueError(f"permissionMode must be one of {', '.join(PERMISSION_MODES)}")
        return v


RunOptions = Annotated[Union[ProcessRunOptions, SdkRunOptions], Field(discriminator="provider")]

_run_options_adapter: TypeAdapter = TypeAdapter(RunOptions)


def parse_run_options(kind: ProviderKind, raw: Union[None, Dict[str, Any], BaseRunOptions]) -> BaseRunOptions:
    """Validate caller options into the variant for ``kind``.

    Raises ``ValueError`` (pydantic ``ValidationError``) on invalid input or
    when an already-built options object belongs to the other provider.
    """
    if isinstance(raw, BaseRunOptions):
        if raw.provider != kind.value:  # type: ignore[attr-defined]
            raise ValueError(f"Options built for provider '{raw.provider}' cannot drive '{kind.value}'")  # type: ignore[attr-defined]
        return raw
    data = dict(raw or {})
    data["provider"] = kind.value
    return _run_options_adapter.validate_python(data)


@dataclass
class RunResult:
    session_id: Optional[str]
    exit_code: Optional[int]
    is_new_session: bool
    aborted: bool = False
