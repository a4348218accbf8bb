"""
Error taxonomy for agent runs.

Every failure that aborts a run surfaces as a subclass of :class:`AgentRunError`.  Each error keeps
the identifying details (guardrail position, tool name, status code, ...) as attributes so callers
can render or inspect them without digging into the run's internals.
"""

from typing import (
    Any,
    Sequence,
)


class AgentRunError(RuntimeError):
    """Base class for all errors raised while executing a run."""


class InvalidStateError(AgentRunError):
    """Raised when a run is executed more than once."""


class BackendUnavailableError(AgentRunError):
    """Raised when no backend is registered under the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Backend '{name}' is not registered.")
        self.name = name


class GuardrailViolation(AgentRunError):
    """Raised when a guardrail rejects the run's input or output."""

    def __init__(self, position: int, guardrail: str, stage: str, reason: str) -> None:
        super().__init__(f"Guardrail #{position} ({guardrail}) rejected {stage}: {reason}")
        self.position = position
        self.guardrail = guardrail
        self.stage = stage
        self.reason = reason


class ToolNotFoundError(AgentRunError):
    """Raised when the backend requests a tool the agent does not have."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Tool '{tool_name}' is not registered on the agent.")
        self.tool_name = tool_name


class ToolExecutionError(AgentRunError):
    """Raised when a tool handler fails.  The original exception is chained as ``__cause__``."""

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(message)
        self.tool_name = tool_name


class BackendRequestError(AgentRunError):
    """Raised when a backend request fails (transport error, bad status, unusable payload)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        prefix = f"Backend request failed with status {status_code}" if status_code else "Backend request failed"
        super().__init__(f"{prefix}: {message}")
        self.status_code = status_code
        self.message = message


class MalformedToolArgumentsError(AgentRunError):
    """Raised when tool-call arguments (or a streamed fragment of them) cannot be decoded."""

    def __init__(self, detail: str, raw: Any = None) -> None:
        super().__init__(f"Malformed tool arguments: {detail}")
        self.detail = detail
        self.raw = raw


class HandoffLoopError(AgentRunError):
    """Raised when a handoff chain revisits an agent or grows past the configured depth."""

    def __init__(self, chain: Sequence[str], message: str) -> None:
        super().__init__(f"{message} (chain: {' -> '.join(chain)})")
        self.chain = list(chain)


class ContentCallbackError(AgentRunError):
    """Raised when the caller's streaming content callback fails.  The original is the ``__cause__``."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Content callback failed: {message}")


class RunCancelledError(AgentRunError):
    """Raised when a run's cancel signal is set at a suspension point."""
