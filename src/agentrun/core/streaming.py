"""
Aggregation of streamed backend events into a complete response.

A streaming backend emits text in arbitrary fragments and tool calls as partial updates keyed by
call id.  :class:`StreamAggregator` forwards every text fragment to a delivery callback as it arrives
and folds the whole stream into the same :class:`ModelResponse` a buffered call returns, so the run
engine never needs to know which kind of call produced it.
"""

import inspect
import logging
from typing import (
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Union,
)

from pydantic import JsonValue

from agentrun.core.errors import (
    AgentRunError,
    ContentCallbackError,
    MalformedToolArgumentsError,
)
from agentrun.core.schema import (
    ContentDelta,
    ModelResponse,
    StreamEnd,
    StreamEvent,
    ToolCallDelta,
    ToolCallRequest,
    Usage,
)

logger = logging.getLogger(__name__)

ContentCallback = Callable[[str], Union[None, Awaitable[None]]]


class _PendingCall:
    """Accumulator for one streamed tool call."""

    __slots__ = ("id", "name", "parameters")

    def __init__(self, call_id: str, name: str) -> None:
        self.id = call_id
        self.name = name
        self.parameters: Dict[str, JsonValue] = {}

    def to_request(self) -> ToolCallRequest:
        return ToolCallRequest(id=self.id, name=self.name, parameters=self.parameters)


class StreamAggregator:
    """
    Folds stream events into a :class:`ModelResponse`.

    Parameters
    ----------
    on_content:
        Called with each text fragment, in order.  May be a coroutine function; it is awaited
        before the next event is pulled from the stream.
    """

    def __init__(self, on_content: Optional[ContentCallback] = None) -> None:
        self.on_content = on_content
        self._text: List[str] = []
        self._calls: Dict[str, _PendingCall] = {}
        self._last_call: Optional[_PendingCall] = None
        self._usage: Optional[Usage] = None
        self.finished = False

    async def consume(self, events: AsyncIterator[StreamEvent]) -> ModelResponse:
        """Read *events* until :class:`StreamEnd` (or exhaustion) and return the aggregate."""
        try:
            async for event in events:
                await self.feed(event)
                if self.finished:
                    break
            else:
                logger.debug("Stream exhausted without an end event")
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()
        return self.result()

    async def feed(self, event: StreamEvent) -> None:
        if self.finished:
            logger.warning("Ignoring %s event received after end of stream", event.kind)
            return
        if isinstance(event, ContentDelta):
            await self._on_content(event.text)
        elif isinstance(event, ToolCallDelta):
            self._merge_call(event)
        elif isinstance(event, StreamEnd):
            self._usage = event.usage
            self.finished = True
        else:
            raise TypeError(f"Unknown stream event: {event!r}")

    def result(self) -> ModelResponse:
        return ModelResponse(
            text="".join(self._text),
            tool_calls=[call.to_request() for call in self._calls.values()],
            usage=self._usage,
        )

    async def _on_content(self, fragment: str) -> None:
        if not fragment:
            return
        self._text.append(fragment)
        if self.on_content is None:
            return
        try:
            delivered = self.on_content(fragment)
            if inspect.isawaitable(delivered):
                await delivered
        except AgentRunError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            raise ContentCallbackError(str(exc) or type(exc).__name__) from exc

    def _merge_call(self, delta: ToolCallDelta) -> None:
        if delta.id is None:
            # Continuation of the call currently being streamed
            if self._last_call is None:
                raise MalformedToolArgumentsError(
                    "tool-call fragment without an id before any call started", delta.parameters
                )
            pending = self._last_call
        elif delta.id in self._calls:
            pending = self._calls[delta.id]
        else:
            pending = _PendingCall(delta.id, delta.name or "")
            self._calls[delta.id] = pending
            logger.debug("Streaming tool call '%s' (%s) started", pending.name, pending.id)

        if delta.name:
            pending.name = delta.name
        pending.parameters.update(delta.parameters)
        self._last_call = pending
