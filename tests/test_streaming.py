"""Tests for stream aggregation and streamed runs."""

from typing import AsyncIterator, Iterable, List

import pytest

from agentrun.agent import AgentDefinition
from agentrun.backends.scripted import ScriptedBackend
from agentrun.core.delivery import StreamingDelivery
from agentrun.core.errors import (
    ContentCallbackError,
    MalformedToolArgumentsError,
)
from agentrun.core.run import Run
from agentrun.core.schema import (
    ContentDelta,
    ModelResponse,
    RunState,
    StreamEnd,
    StreamEvent,
    ToolCallDelta,
    ToolCallRequest,
    Usage,
)
from agentrun.core.streaming import StreamAggregator
from agentrun.tools import function_tool


async def _events(items: Iterable[StreamEvent]) -> AsyncIterator[StreamEvent]:
    for item in items:
        yield item


@function_tool(name="add")
def add(a: float, b: float) -> float:
    """Add two numbers."""
    return a + b


@pytest.mark.asyncio
async def test_content_is_forwarded_in_order_and_concatenated() -> None:
    received: List[str] = []
    aggregator = StreamAggregator(received.append)

    response = await aggregator.consume(
        _events([ContentDelta(text="Hel"), ContentDelta(text="lo, "), ContentDelta(text="world"), StreamEnd()])
    )

    assert received == ["Hel", "lo, ", "world"]
    assert response.text == "Hello, world"
    assert response.tool_calls == []


@pytest.mark.asyncio
async def test_async_callback_is_awaited_before_next_event() -> None:
    log: List[str] = []

    async def producer() -> AsyncIterator[StreamEvent]:
        for text in ("a", "b"):
            log.append(f"produce {text}")
            yield ContentDelta(text=text)
        yield StreamEnd()

    async def deliver(fragment: str) -> None:
        log.append(f"deliver {fragment}")

    await StreamAggregator(deliver).consume(producer())

    assert log == ["produce a", "deliver a", "produce b", "deliver b"]


@pytest.mark.asyncio
async def test_tool_call_fragments_merge_by_id() -> None:
    events = [
        ToolCallDelta(id="c1", name="search", parameters={"query": "cats"}),
        ToolCallDelta(id="c2", name="add", parameters={"a": 1}),
        ToolCallDelta(id="c1", parameters={"limit": 3}),
        ToolCallDelta(id="c1", name="", parameters={"query": "dogs"}),
        ToolCallDelta(id="c2", name="sum", parameters={"b": 2}),
        StreamEnd(usage=Usage(prompt_tokens=3, completion_tokens=4, total_tokens=7)),
    ]

    response = await StreamAggregator().consume(_events(events))

    assert response.tool_calls == [
        ToolCallRequest(id="c1", name="search", parameters={"query": "dogs", "limit": 3}),
        ToolCallRequest(id="c2", name="sum", parameters={"a": 1, "b": 2}),
    ]
    assert response.usage == Usage(prompt_tokens=3, completion_tokens=4, total_tokens=7)


@pytest.mark.asyncio
async def test_fragment_without_id_continues_latest_call() -> None:
    events = [ToolCallDelta(id="c1", name="add"), ToolCallDelta(parameters={"a": 1}), StreamEnd()]

    response = await StreamAggregator().consume(_events(events))

    assert response.tool_calls == [ToolCallRequest(id="c1", name="add", parameters={"a": 1})]


@pytest.mark.asyncio
async def test_fragment_without_id_before_any_call_is_rejected() -> None:
    with pytest.raises(MalformedToolArgumentsError):
        await StreamAggregator().consume(_events([ToolCallDelta(parameters={"a": 1})]))


@pytest.mark.asyncio
async def test_events_after_end_are_not_consumed() -> None:
    received: List[str] = []

    response = await StreamAggregator(received.append).consume(
        _events([ContentDelta(text="done"), StreamEnd(), ContentDelta(text="late")])
    )

    assert response.text == "done"
    assert received == ["done"]


@pytest.mark.asyncio
async def test_streamed_and_buffered_backends_agree() -> None:
    response = ModelResponse(
        text="Let me add those numbers for you.",
        tool_calls=[ToolCallRequest(id="call_9", name="add", parameters={"a": 2, "b": 3})],
    )
    buffered = await ScriptedBackend([response]).complete([], None, [])  # type: ignore[arg-type]

    fragments: List[str] = []
    streamed = await StreamAggregator(fragments.append).consume(
        ScriptedBackend([response], chunk_size=5).stream([], None, [])  # type: ignore[arg-type]
    )

    assert "".join(fragments) == buffered.text
    assert len(fragments) > 1
    assert streamed.tool_calls == buffered.tool_calls


@pytest.mark.asyncio
async def test_streamed_run_matches_buffered_run() -> None:
    agent = AgentDefinition(name="calc", instructions="Use tools.", tools=[add])
    script = [
        ModelResponse(
            text="Adding.",
            tool_calls=[ToolCallRequest(id="call_1", name="add", parameters={"a": 2, "b": 3})],
        ),
        ModelResponse(text="The answer is 5."),
    ]

    buffered = await Run(agent, "2+3?", None, backend=ScriptedBackend(script)).execute()

    fragments: List[str] = []
    streaming_backend = ScriptedBackend(script, chunk_size=3)
    streamed = await Run(
        agent,
        "2+3?",
        None,
        backend=streaming_backend,
        delivery=StreamingDelivery(fragments.append),
    ).execute()

    assert streamed == buffered
    assert "".join(fragments) == "Adding.The answer is 5."
    assert all(request.streamed for request in streaming_backend.requests)


@pytest.mark.asyncio
async def test_exhausted_stream_without_end_still_aggregates() -> None:
    aggregator = StreamAggregator()

    response = await aggregator.consume(
        _events(
            [
                ContentDelta(text="partial "),
                ToolCallDelta(id="c1", name="add", parameters={"a": 1}),
                ContentDelta(text="answer"),
            ]
        )
    )

    assert response.text == "partial answer"
    assert response.tool_calls == [ToolCallRequest(id="c1", name="add", parameters={"a": 1})]
    assert response.usage is None
    assert not aggregator.finished


@pytest.mark.asyncio
async def test_failing_content_callback_is_reported_as_callback_error() -> None:
    """A failure in the caller's sink is not blamed on the backend."""

    def closed_sink(fragment: str) -> None:
        raise ValueError("sink closed")

    backend = ScriptedBackend([ModelResponse(text="Hello there")])
    run = Run(
        AgentDefinition(name="a", instructions="i"),
        "hi",
        None,
        backend=backend,
        delivery=StreamingDelivery(closed_sink),
    )

    with pytest.raises(ContentCallbackError) as excinfo:
        await run.execute()

    assert "sink closed" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, ValueError)
    assert run.state is RunState.FAILED
