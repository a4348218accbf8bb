"""
Schema definitions for agent <-> backend <-> tool messages.

These data models serve as the contract between the orchestration engine, the language-model
backends, and individual tools.  We keep them separate from runtime logic so they can be imported
anywhere without side-effects.
"""

from enum import Enum
from typing import (
    Any,
    Dict,
    List,
    Literal,
    Optional,
    Union,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    JsonValue,
)

from agentrun.config import settings


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------
class Role(str, Enum):
    """Role of a conversation message sender."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCallRequest(BaseModel):
    """A call that the backend wants the agent to execute."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Backend-assigned call id")
    name: str = Field(..., description="Name of the requested tool")
    parameters: Dict[str, JsonValue] = Field(
        default_factory=dict, description="Keyword arguments for the tool"
    )


class ToolResult(BaseModel):
    """The rendered result of one tool call."""

    model_config = ConfigDict(frozen=True)

    tool_call_id: str
    result: str


class Message(BaseModel):
    """A single conversation message."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: Union[str, ToolResult]
    tool_calls: List[ToolCallRequest] = Field(
        default_factory=list, description="Calls requested by an assistant turn"
    )

    @classmethod
    def system(cls, text: str) -> "Message":
        return cls(role=Role.SYSTEM, content=text)

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(role=Role.USER, content=text)

    @classmethod
    def assistant(cls, text: str, tool_calls: Optional[List[ToolCallRequest]] = None) -> "Message":
        return cls(role=Role.ASSISTANT, content=text, tool_calls=tool_calls or [])

    @classmethod
    def tool(cls, result: ToolResult) -> "Message":
        return cls(role=Role.TOOL, content=result)

    @property
    def text(self) -> str:
        """Plain-text view of the content (the result text for tool messages)."""
        if isinstance(self.content, ToolResult):
            return self.content.result
        return self.content


# ---------------------------------------------------------------------------
# Model settings
# ---------------------------------------------------------------------------
class ResponseFormat(str, Enum):
    """Response format requested from the backend."""

    TEXT = "text"
    JSON = "json"


class ModelSettings(BaseModel):
    """Settings forwarded to the backend with every request."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_name: str = Field(default_factory=lambda: settings.DEFAULT_MODEL)
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    response_format: Optional[ResponseFormat] = None
    seed: Optional[int] = None
    extra: Dict[str, JsonValue] = Field(
        default_factory=dict, description="Backend-specific parameters passed through verbatim"
    )

    def with_overrides(self, **changes: Any) -> "ModelSettings":
        """Return a copy with the given fields replaced; ``None`` values are ignored."""
        update = {key: value for key, value in changes.items() if value is not None}
        return self.model_copy(update=update)


# ---------------------------------------------------------------------------
# Backend responses
# ---------------------------------------------------------------------------
class Usage(BaseModel):
    """Token accounting reported by a backend."""

    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class ModelResponse(BaseModel):
    """A complete (buffered or aggregated) backend response."""

    text: str = ""
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)
    usage: Optional[Usage] = None


class ContentDelta(BaseModel):
    """A fragment of streamed response text."""

    kind: Literal["content"] = "content"
    text: str


class ToolCallDelta(BaseModel):
    """A fragment of a streamed tool call, keyed by call id."""

    kind: Literal["tool_call"] = "tool_call"
    id: Optional[str] = None
    name: Optional[str] = None
    parameters: Dict[str, JsonValue] = Field(default_factory=dict)


class StreamEnd(BaseModel):
    """Marks the end of a streamed response."""

    kind: Literal["end"] = "end"
    usage: Optional[Usage] = None


StreamEvent = Union[ContentDelta, ToolCallDelta, StreamEnd]


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------
class RunState(str, Enum):
    """Lifecycle of a run.  Transitions only move forward."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RunResult(BaseModel):
    """The outcome of a successful run."""

    final_output: str
    messages: List[Message]
    agent_name: str = Field(..., description="Agent that produced the answer")
    usage: Optional[Usage] = None
