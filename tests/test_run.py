"""Tests for the run engine against the scripted backend."""

import asyncio
from typing import Any, List

import pytest

from agentrun.agent import AgentDefinition
from agentrun.backends import BackendRegistry
from agentrun.backends.scripted import ScriptedBackend
from agentrun.core.errors import (
    BackendRequestError,
    BackendUnavailableError,
    GuardrailViolation,
    HandoffLoopError,
    InvalidStateError,
    RunCancelledError,
    ToolNotFoundError,
)
from agentrun.core.run import Run
from agentrun.core.schema import (
    Message,
    ModelResponse,
    Role,
    RunState,
    ToolCallRequest,
    ToolResult,
    Usage,
)
from agentrun.guardrails import (
    BaseGuardrail,
    GuardrailError,
    InputLengthGuardrail,
)
from agentrun.handoffs import Handoff
from agentrun.tools import function_tool


@function_tool(name="add")
def add(a: float, b: float) -> float:
    """Add two numbers."""
    return a + b


class SpyGuardrail(BaseGuardrail):
    """Records every check it is asked to perform."""

    def __init__(self) -> None:
        self.calls: List[str] = []

    def validate_input(self, text: str) -> str:
        self.calls.append(f"input:{text}")
        return text

    def validate_output(self, text: str) -> str:
        self.calls.append(f"output:{text}")
        return text


class UpperCaseOutput(BaseGuardrail):
    def validate_output(self, text: str) -> str:
        return text.upper()


def _agent(**kwargs: Any) -> AgentDefinition:
    kwargs.setdefault("name", "assistant")
    kwargs.setdefault("instructions", "You are helpful.")
    return AgentDefinition(**kwargs)


def _tool_request(**parameters: Any) -> ModelResponse:
    return ModelResponse(
        tool_calls=[ToolCallRequest(id="call_1", name="add", parameters=parameters)]
    )


@pytest.mark.asyncio
async def test_no_tool_calls_issues_one_request() -> None:
    backend = ScriptedBackend([ModelResponse(text="Hello there")])
    run = Run(_agent(), "hi", context=None, backend=backend)

    result = await run.execute()

    assert result.final_output == "Hello there"
    assert len(backend.requests) == 1
    assert run.backend_calls == 1
    assert run.state is RunState.COMPLETED
    assert [m.role for m in result.messages] == [Role.SYSTEM, Role.USER, Role.ASSISTANT]


@pytest.mark.asyncio
async def test_messages_open_with_system_and_validated_user_input() -> None:
    class Strip(BaseGuardrail):
        def validate_input(self, text: str) -> str:
            return text.strip()

    backend = ScriptedBackend([ModelResponse(text="ok")])
    agent = _agent(instructions="Be brief.", guardrails=[Strip()])

    result = await Run(agent, "  padded  ", context=None, backend=backend).execute()

    assert result.messages[0] == Message.system("Be brief.")
    assert result.messages[1] == Message.user("padded")
    assert backend.requests[0].messages == [Message.system("Be brief."), Message.user("padded")]


@pytest.mark.asyncio
async def test_tool_round_trip() -> None:
    backend = ScriptedBackend([_tool_request(a=2, b=3), ModelResponse(text="5")])
    agent = _agent(tools=[add])

    result = await Run(agent, "What is 2 + 3?", context=None, backend=backend).execute()

    assert result.final_output == "5"
    assert len(backend.requests) == 2
    tool_messages = [m for m in result.messages if m.role is Role.TOOL]
    assert tool_messages == [Message.tool(ToolResult(tool_call_id="call_1", result="5"))]
    # The assistant turn that requested the call precedes its result
    assistant_turn = result.messages[2]
    assert assistant_turn.role is Role.ASSISTANT
    assert [c.id for c in assistant_turn.tool_calls] == ["call_1"]
    assert result.messages[-1] == Message.assistant("5")
    # The second request carries the tool result
    assert backend.requests[1].messages[-1] == tool_messages[0]
    assert backend.requests[0].tools == [add.to_schema()]


@pytest.mark.asyncio
async def test_second_round_tool_calls_are_not_executed() -> None:
    calls: List[Any] = []

    @function_tool(name="add")
    def counting_add(a: float, b: float) -> float:
        calls.append((a, b))
        return a + b

    backend = ScriptedBackend(
        [
            _tool_request(a=1, b=1),
            ModelResponse(text="again?", tool_calls=[ToolCallRequest(id="c2", name="add")]),
        ]
    )
    result = await Run(_agent(tools=[counting_add]), "x", None, backend=backend).execute()

    assert calls == [(1, 1)]
    assert result.final_output == "again?"
    assert len(backend.requests) == 2


@pytest.mark.asyncio
async def test_repeated_runs_are_deterministic() -> None:
    responses = [ModelResponse(text="same answer")]
    first = await Run(_agent(), "q", None, backend=ScriptedBackend(responses)).execute()
    second = await Run(_agent(), "q", None, backend=ScriptedBackend(responses)).execute()

    assert first == second


@pytest.mark.asyncio
async def test_reuse_is_rejected() -> None:
    run = Run(_agent(), "hi", None, backend=ScriptedBackend([ModelResponse(text="a")] * 2))
    await run.execute()

    with pytest.raises(InvalidStateError):
        await run.execute()
    assert run.state is RunState.COMPLETED


@pytest.mark.asyncio
async def test_input_guardrail_short_circuits() -> None:
    spy = SpyGuardrail()
    backend = ScriptedBackend([ModelResponse(text="unused")])
    agent = _agent(guardrails=[InputLengthGuardrail(5), spy])
    run = Run(agent, "0123456789", None, backend=backend)

    with pytest.raises(GuardrailViolation) as excinfo:
        await run.execute()

    assert excinfo.value.position == 0
    assert excinfo.value.guardrail == "InputLengthGuardrail"
    assert excinfo.value.stage == "input"
    assert spy.calls == []
    assert backend.requests == []
    assert run.state is RunState.FAILED
    assert run.messages == []


@pytest.mark.asyncio
async def test_output_guardrails_run_in_order_and_transform() -> None:
    spy = SpyGuardrail()
    backend = ScriptedBackend([ModelResponse(text="quiet")])
    agent = _agent(guardrails=[UpperCaseOutput(), spy])

    result = await Run(agent, "hi", None, backend=backend).execute()

    assert result.final_output == "QUIET"
    assert spy.calls == ["input:hi", "output:QUIET"]
    assert result.messages[-1] == Message.assistant("QUIET")


@pytest.mark.asyncio
async def test_output_guardrail_failure_discards_history() -> None:
    class RejectOutput(BaseGuardrail):
        def validate_output(self, text: str) -> str:
            raise GuardrailError("no secrets")

    run = Run(
        _agent(guardrails=[BaseGuardrail(), RejectOutput()]),
        "hi",
        None,
        backend=ScriptedBackend([ModelResponse(text="secret")]),
    )

    with pytest.raises(GuardrailViolation) as excinfo:
        await run.execute()

    assert excinfo.value.position == 1
    assert excinfo.value.stage == "output"
    assert excinfo.value.reason == "no secrets"
    assert run.state is RunState.FAILED
    assert run.messages == []


@pytest.mark.asyncio
async def test_handoff_precedence() -> None:
    evaluated: List[str] = []

    def keyword(word: str):
        def predicate(text: str, context: Any) -> bool:
            evaluated.append(word)
            return word in text

        return predicate

    weather = _agent(name="weather", instructions="Weather expert.")
    travel = _agent(name="travel", instructions="Travel expert.")
    triage = _agent(
        name="triage",
        handoffs=[Handoff.with_filter(weather, keyword("weather")), Handoff.with_filter(travel, keyword("travel"))],
    )
    backend = ScriptedBackend([ModelResponse(text="Sunny")])

    result = await Run(triage, "weather and travel plans", None, backend=backend).execute()

    assert evaluated == ["weather"]
    assert result.agent_name == "weather"
    assert result.messages[0] == Message.system("Weather expert.")
    assert result.final_output == "Sunny"


@pytest.mark.asyncio
async def test_handoff_receives_validated_input_and_context() -> None:
    seen: List[Any] = []

    class Redact(BaseGuardrail):
        def validate_input(self, text: str) -> str:
            return text.replace("secret", "***")

    target = _agent(name="billing")
    triage = _agent(
        name="triage",
        guardrails=[Redact()],
        handoffs=[Handoff.with_filter(target, lambda text, ctx: seen.append((text, ctx)) or True)],
    )
    backend = ScriptedBackend([ModelResponse(text="paid")])

    result = await Run(triage, "my secret invoice", {"user": 7}, backend=backend).execute()

    assert seen == [("my *** invoice", {"user": 7})]
    assert result.messages[1] == Message.user("my *** invoice")


@pytest.mark.asyncio
async def test_handoff_cycle_is_detected() -> None:
    back = Handoff.with_keywords(_agent(name="placeholder"), ["ball"])
    ping = _agent(name="ping", handoffs=[back])
    pong = _agent(name="pong", handoffs=[Handoff.with_keywords(ping, ["ball"])])
    back.agent = pong

    with pytest.raises(HandoffLoopError) as excinfo:
        await Run(ping, "ball", None, backend=ScriptedBackend([])).execute()

    assert excinfo.value.chain == ["ping", "pong", "ping"]


@pytest.mark.asyncio
async def test_handoff_to_distinct_agent_with_same_name() -> None:
    """Agents are told apart by definition, not by name."""

    specialist = _agent(name="assistant", instructions="You know the weather.")
    triage = _agent(name="assistant", handoffs=[Handoff.with_keywords(specialist, ["weather"])])
    backend = ScriptedBackend([ModelResponse(text="sunny")])

    result = await Run(triage, "weather today?", None, backend=backend).execute()

    assert result.final_output == "sunny"
    assert backend.requests[0].messages[0].text == "You know the weather."



@pytest.mark.asyncio
async def test_handoff_depth_limit() -> None:
    leaf = _agent(name="leaf")
    middle = _agent(name="middle", handoffs=[Handoff.with_keywords(leaf, ["go"])])
    root = _agent(name="root", handoffs=[Handoff.with_keywords(middle, ["go"])])
    backend = ScriptedBackend([ModelResponse(text="done")])

    with pytest.raises(HandoffLoopError):
        await Run(root, "go", None, backend=backend, max_handoff_depth=1).execute()

    result = await Run(root, "go", None, backend=backend, max_handoff_depth=2).execute()
    assert result.agent_name == "leaf"


@pytest.mark.asyncio
async def test_missing_tool_fails_the_run() -> None:
    run = Run(_agent(), "x", None, backend=ScriptedBackend([_tool_request(a=1, b=2)]))

    with pytest.raises(ToolNotFoundError):
        await run.execute()
    assert run.state is RunState.FAILED


@pytest.mark.asyncio
async def test_unexpected_backend_error_is_wrapped() -> None:
    class Broken:
        async def complete(self, messages, settings, tools):
            raise ConnectionResetError("peer went away")

        def stream(self, messages, settings, tools):
            raise NotImplementedError

    run = Run(_agent(), "x", None, backend=Broken())

    with pytest.raises(BackendRequestError) as excinfo:
        await run.execute()
    assert "peer went away" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, ConnectionResetError)
    assert run.state is RunState.FAILED


@pytest.mark.asyncio
async def test_cancel_before_backend_call() -> None:
    cancel = asyncio.Event()
    cancel.set()
    backend = ScriptedBackend([ModelResponse(text="never")])
    run = Run(_agent(), "x", None, backend=backend, cancel_event=cancel)

    with pytest.raises(RunCancelledError):
        await run.execute()
    assert backend.requests == []
    assert run.state is RunState.FAILED


@pytest.mark.asyncio
async def test_usage_is_summed_across_calls() -> None:
    backend = ScriptedBackend(
        [
            _tool_request(a=1, b=2).model_copy(update={"usage": Usage(prompt_tokens=10, completion_tokens=2, total_tokens=12)}),
            ModelResponse(text="3", usage=Usage(prompt_tokens=20, completion_tokens=1, total_tokens=21)),
        ]
    )

    result = await Run(_agent(tools=[add]), "1+2", None, backend=backend).execute()

    assert result.usage == Usage(prompt_tokens=30, completion_tokens=3, total_tokens=33)


@pytest.mark.asyncio
async def test_registry_resolution() -> None:
    registry = BackendRegistry()
    agent = _agent()
    registry.register(agent.model_settings.model_name, lambda: ScriptedBackend([ModelResponse(text="via registry")]))

    result = await Run(agent, "x", None, registry=registry).execute()
    assert result.final_output == "via registry"

    other = agent.clone(model_settings=agent.model_settings.with_overrides(model_name="unknown-model"))
    run = Run(other, "x", None, registry=registry)
    with pytest.raises(BackendUnavailableError):
        await run.execute()
    assert run.state is RunState.FAILED


def test_run_requires_a_backend() -> None:
    with pytest.raises(ValueError):
        Run(_agent(), "x", None)


@pytest.mark.asyncio
async def test_cancel_after_tools_skips_second_call() -> None:
    cancel = asyncio.Event()

    @function_tool(name="add")
    def add_then_cancel(a: float, b: float) -> float:
        cancel.set()
        return a + b

    backend = ScriptedBackend([_tool_request(a=1, b=2), ModelResponse(text="never")])
    run = Run(_agent(tools=[add_then_cancel]), "1+2", None, backend=backend, cancel_event=cancel)

    with pytest.raises(RunCancelledError):
        await run.execute()
    assert len(backend.requests) == 1
    assert run.backend_calls == 1
    assert run.state is RunState.FAILED


@pytest.mark.asyncio
async def test_echoed_answer_is_still_recorded_as_assistant_turn() -> None:
    backend = ScriptedBackend([ModelResponse(text="hello")])

    result = await Run(_agent(), "hello", None, backend=backend).execute()

    assert result.messages[1:] == [Message.user("hello"), Message.assistant("hello")]
