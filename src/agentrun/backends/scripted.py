"""
A deterministic backend that replays scripted responses.

Useful for tests and offline development: each call (buffered or streamed) returns the next
response from the script and records the request it was given.  Streaming splits the response into
``chunk_size``-character text fragments and one tool-call fragment per parameter, so streamed and
buffered calls aggregate to the same result.
"""

import logging
from typing import (
    AsyncIterator,
    Iterable,
    List,
    NamedTuple,
    Sequence,
)

from agentrun.core.errors import BackendRequestError
from agentrun.core.schema import (
    ContentDelta,
    Message,
    ModelResponse,
    ModelSettings,
    StreamEnd,
    StreamEvent,
    ToolCallDelta,
)
from agentrun.tools import ToolSchema

logger = logging.getLogger(__name__)


class RecordedRequest(NamedTuple):
    """What the backend was asked for."""

    messages: List[Message]
    settings: ModelSettings
    tools: List[ToolSchema]
    streamed: bool


class ScriptedBackend:
    """Replays *responses* in order, one per call."""

    def __init__(self, responses: Iterable[ModelResponse], chunk_size: int = 4) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self.responses = list(responses)
        self.chunk_size = chunk_size
        self.requests: List[RecordedRequest] = []

    def _next(
        self,
        messages: Sequence[Message],
        settings: ModelSettings,
        tools: Sequence[ToolSchema],
        streamed: bool,
    ) -> ModelResponse:
        index = len(self.requests)
        self.requests.append(RecordedRequest(list(messages), settings, list(tools), streamed))
        if index >= len(self.responses):
            raise BackendRequestError(f"script exhausted after {len(self.responses)} responses")
        logger.debug("Scripted backend replaying response #%d", index)
        return self.responses[index]

    async def complete(
        self,
        messages: Sequence[Message],
        settings: ModelSettings,
        tools: Sequence[ToolSchema],
    ) -> ModelResponse:
        return self._next(messages, settings, tools, streamed=False)

    async def stream(
        self,
        messages: Sequence[Message],
        settings: ModelSettings,
        tools: Sequence[ToolSchema],
    ) -> AsyncIterator[StreamEvent]:
        response = self._next(messages, settings, tools, streamed=True)
        text = response.text
        for start in range(0, len(text), self.chunk_size):
            yield ContentDelta(text=text[start : start + self.chunk_size])
        for call in response.tool_calls:
            yield ToolCallDelta(id=call.id, name=call.name)
            for key, value in call.parameters.items():
                # Later fragments omit the name, as streaming APIs do
                yield ToolCallDelta(id=call.id, parameters={key: value})
        yield StreamEnd(usage=response.usage)
