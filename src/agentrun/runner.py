"""
High-level entry points for running agents.

:class:`AgentRunner` resolves the backend for an agent from a :class:`BackendRegistry` and executes a
fresh :class:`~agentrun.core.run.Run`, buffered or streamed.
"""

import asyncio
import logging
from typing import (
    Optional,
    TypeVar,
)

from agentrun.agent import AgentDefinition
from agentrun.backends import (
    BackendRegistry,
    registry as default_registry,
)
from agentrun.core.delivery import (
    BufferedDelivery,
    Delivery,
    StreamingDelivery,
)
from agentrun.core.run import Run
from agentrun.core.schema import RunResult
from agentrun.core.streaming import ContentCallback

logger = logging.getLogger(__name__)

ContextT = TypeVar("ContextT")


class AgentRunner:
    """Runs agents against backends looked up in *registry*."""

    def __init__(self, registry: Optional[BackendRegistry] = None) -> None:
        self.registry = registry or default_registry

    async def run(
        self,
        agent: AgentDefinition[ContextT],
        input: str,  # pylint: disable=redefined-builtin
        context: ContextT,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunResult:
        """Run *agent* on *input* and return the buffered result."""
        logger.info("Starting non-streaming run for agent '%s'", agent.name)
        return await self._run(agent, input, context, BufferedDelivery(), cancel_event)

    async def run_streamed(
        self,
        agent: AgentDefinition[ContextT],
        input: str,  # pylint: disable=redefined-builtin
        context: ContextT,
        on_content: ContentCallback,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunResult:
        """Run *agent* on *input*, passing response text to *on_content* as it streams in."""
        logger.info("Starting streaming run for agent '%s'", agent.name)
        return await self._run(agent, input, context, StreamingDelivery(on_content), cancel_event)

    async def _run(
        self,
        agent: AgentDefinition[ContextT],
        input: str,  # pylint: disable=redefined-builtin
        context: ContextT,
        delivery: Delivery,
        cancel_event: Optional[asyncio.Event],
    ) -> RunResult:
        run: Run[ContextT] = Run(
            agent=agent,
            input=input,
            context=context,
            registry=self.registry,
            delivery=delivery,
            cancel_event=cancel_event,
        )
        result = await run.execute()
        logger.info(
            "Run for agent '%s' finished (answered by '%s')", agent.name, result.agent_name
        )
        return result
