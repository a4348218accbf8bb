"""
Delivery strategies: how a run obtains one backend response.

The run engine asks its delivery strategy for a response at each point the model produces text.
:class:`BufferedDelivery` issues a plain ``complete`` call; :class:`StreamingDelivery` consumes the
backend's event stream, pushing text fragments to a callback as they arrive.  Both return the same
:class:`ModelResponse` shape, so the engine's logic is shared verbatim.
"""

import logging
from typing import (
    Optional,
    Protocol,
    Sequence,
)

from agentrun.backends import Backend
from agentrun.core.schema import (
    Message,
    ModelResponse,
    ModelSettings,
)
from agentrun.core.streaming import (
    ContentCallback,
    StreamAggregator,
)
from agentrun.tools import ToolSchema

logger = logging.getLogger(__name__)


class Delivery(Protocol):
    """Obtains a complete response from a backend."""

    async def request(
        self,
        backend: Backend,
        messages: Sequence[Message],
        settings: ModelSettings,
        tools: Sequence[ToolSchema],
    ) -> ModelResponse: ...


class BufferedDelivery:
    """Waits for the whole response."""

    async def request(
        self,
        backend: Backend,
        messages: Sequence[Message],
        settings: ModelSettings,
        tools: Sequence[ToolSchema],
    ) -> ModelResponse:
        return await backend.complete(messages, settings, tools)


class StreamingDelivery:
    """Streams the response, forwarding text fragments to *on_content* in order."""

    def __init__(self, on_content: Optional[ContentCallback] = None) -> None:
        self.on_content = on_content

    async def request(
        self,
        backend: Backend,
        messages: Sequence[Message],
        settings: ModelSettings,
        tools: Sequence[ToolSchema],
    ) -> ModelResponse:
        aggregator = StreamAggregator(self.on_content)
        response = await aggregator.consume(backend.stream(messages, settings, tools))
        logger.debug(
            "Aggregated streamed response: %d chars, %d tool calls",
            len(response.text),
            len(response.tool_calls),
        )
        return response
