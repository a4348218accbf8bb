"""
The run engine.

A :class:`Run` executes one agent definition against one input, exactly once:

1. the input passes through the agent's guardrails, in order;
2. the first matching handoff, if any, delegates the whole run to its target agent;
3. the backend is asked for a response to ``[system(instructions), user(input)]``;
4. requested tool calls are executed in order and their results sent back in a second request;
5. the final text passes through the guardrails' output checks and is returned.

Whether responses are buffered or streamed is decided by the run's delivery strategy; the steps
above are identical for both.
"""

import asyncio
import logging
from typing import (
    Generic,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from agentrun.agent import AgentDefinition
from agentrun.backends import (
    Backend,
    BackendRegistry,
)
from agentrun.config import settings
from agentrun.core.delivery import (
    BufferedDelivery,
    Delivery,
)
from agentrun.core.errors import (
    AgentRunError,
    BackendRequestError,
    HandoffLoopError,
    InvalidStateError,
    RunCancelledError,
)
from agentrun.core.schema import (
    Message,
    ModelResponse,
    RunResult,
    RunState,
    Usage,
)
from agentrun.core.tool_executor import ToolDispatcher
from agentrun.guardrails import GuardrailPipeline
from agentrun.handoffs import select_handoff

logger = logging.getLogger(__name__)

ContextT = TypeVar("ContextT")


class Run(Generic[ContextT]):
    """
    One execution of an agent.

    Parameters
    ----------
    agent:
        The agent definition to execute.  It is read, never modified.
    input:
        Raw user text.
    context:
        Caller-supplied value handed to tools and handoff filters.
    backend:
        Backend used for every request of this run (and of handoff targets).
    registry:
        Alternatively, a registry from which each agent's backend is resolved by model name.
    delivery:
        Buffered (default) or streaming delivery of backend responses.
    cancel_event:
        When set, the run stops with :class:`RunCancelledError` at its next suspension point.
    max_handoff_depth:
        Longest handoff chain allowed; defaults to ``settings.MAX_HANDOFF_DEPTH``.
    """

    def __init__(
        self,
        agent: AgentDefinition[ContextT],
        input: str,  # pylint: disable=redefined-builtin
        context: ContextT,
        backend: Optional[Backend] = None,
        registry: Optional[BackendRegistry] = None,
        delivery: Optional[Delivery] = None,
        cancel_event: Optional[asyncio.Event] = None,
        max_handoff_depth: Optional[int] = None,
        handoff_chain: Sequence[AgentDefinition] = (),
    ) -> None:
        if backend is None and registry is None:
            raise ValueError("Run needs either a backend or a backend registry.")
        self.agent = agent
        self.input = input
        self.context = context
        self._backend = backend
        self._registry = registry
        self._delivery: Delivery = delivery or BufferedDelivery()
        self._cancel_event = cancel_event
        self._max_handoff_depth = (
            settings.MAX_HANDOFF_DEPTH if max_handoff_depth is None else max_handoff_depth
        )
        self._chain: Tuple[AgentDefinition, ...] = (*handoff_chain, agent)
        self._messages: List[Message] = []
        self._usage: Optional[Usage] = None
        self.state = RunState.NOT_STARTED
        self.backend_calls = 0

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    # -----------------------------------------------------------------------
    # Entry point
    # -----------------------------------------------------------------------
    async def execute(self) -> RunResult:
        """
        Execute the run.

        Returns
        -------
        RunResult
            The final output and the full message history.

        Raises
        ------
        InvalidStateError
            If the run has already been executed.
        AgentRunError
            Any other failure; the run ends in :attr:`RunState.FAILED`.
        """
        if self.state is not RunState.NOT_STARTED:
            raise InvalidStateError(f"Run has already been started (state: {self.state.value}).")
        self.state = RunState.RUNNING
        logger.info("Starting run for agent '%s'", self.agent.name)

        try:
            result = await self._execute()
        except BaseException as exc:  # pylint: disable=broad-except
            self.state = RunState.FAILED
            self._messages = []
            if isinstance(exc, AgentRunError):
                logger.error("Run for agent '%s' failed: %s", self.agent.name, exc)
            elif isinstance(exc, asyncio.CancelledError):
                logger.warning("Run for agent '%s' was cancelled", self.agent.name)
            else:
                logger.exception("Unexpected error in run for agent '%s'", self.agent.name)
            raise

        self.state = RunState.COMPLETED
        logger.info("Run for agent '%s' completed", self.agent.name)
        return result

    # -----------------------------------------------------------------------
    # Steps
    # -----------------------------------------------------------------------
    async def _execute(self) -> RunResult:
        guardrails = GuardrailPipeline(self.agent.guardrails)
        validated_input = guardrails.validate_input(self.input)

        handoff = select_handoff(self.agent.handoffs, validated_input, self.context)
        if handoff is not None:
            return await self._hand_off(handoff.agent, validated_input)

        backend = self._resolve_backend()
        self._messages = [Message.system(self.agent.instructions), Message.user(validated_input)]

        response = await self._request(backend)
        if response.tool_calls:
            logger.info(
                "Backend requested %d tool calls: %s",
                len(response.tool_calls),
                [call.name for call in response.tool_calls],
            )
            self._messages.append(Message.assistant(response.text, response.tool_calls))
            dispatcher: ToolDispatcher[ContextT] = ToolDispatcher(self.agent.tools)
            results = await dispatcher.dispatch(
                response.tool_calls, self.context, self._cancel_event
            )
            self._messages.extend(Message.tool(result) for result in results)

            response = await self._request(backend)
            if response.tool_calls:
                logger.warning(
                    "Ignoring %d tool calls requested after tool results were sent",
                    len(response.tool_calls),
                )

        final_output = guardrails.validate_output(response.text)
        self._messages.append(Message.assistant(final_output))

        return RunResult(
            final_output=final_output,
            messages=list(self._messages),
            agent_name=self.agent.name,
            usage=self._usage,
        )

    async def _hand_off(self, target: AgentDefinition[ContextT], validated_input: str) -> RunResult:
        chain_names = [agent.name for agent in (*self._chain, target)]
        if any(agent is target for agent in self._chain):
            raise HandoffLoopError(chain_names, f"Agent '{target.name}' is already in the handoff chain")
        if len(self._chain) > self._max_handoff_depth:
            raise HandoffLoopError(
                chain_names, f"Handoff depth limit of {self._max_handoff_depth} exceeded"
            )

        logger.info("Handing off from agent '%s' to agent '%s'", self.agent.name, target.name)
        delegate: Run[ContextT] = Run(
            agent=target,
            input=validated_input,
            context=self.context,
            backend=self._backend if self._registry is None else None,
            registry=self._registry,
            delivery=self._delivery,
            cancel_event=self._cancel_event,
            max_handoff_depth=self._max_handoff_depth,
            handoff_chain=self._chain,
        )
        return await delegate.execute()

    def _resolve_backend(self) -> Backend:
        if self._registry is not None:
            return self._registry.get(self.agent.model_settings.model_name)
        assert self._backend is not None
        return self._backend

    async def _request(self, backend: Backend) -> ModelResponse:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise RunCancelledError("Run cancelled before backend call")

        self.backend_calls += 1
        logger.debug(
            "Backend call #%d for agent '%s' with %d messages",
            self.backend_calls,
            self.agent.name,
            len(self._messages),
        )
        try:
            response = await self._delivery.request(
                backend,
                list(self._messages),
                self.agent.model_settings,
                self.agent.tool_schemas(),
            )
        except AgentRunError:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise BackendRequestError(str(exc) or type(exc).__name__) from exc

        if response.usage is not None:
            self._usage = response.usage if self._usage is None else self._usage + response.usage
        return response
