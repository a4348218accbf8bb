"""Dispatches tool calls requested by the backend to the agent's tools and wraps errors."""

import asyncio
import logging
from typing import (
    Any,
    Dict,
    Generic,
    List,
    Optional,
    Sequence,
    TypeVar,
)

from agentrun.core.errors import (
    RunCancelledError,
    ToolExecutionError,
    ToolNotFoundError,
)
from agentrun.core.schema import (
    ToolCallRequest,
    ToolResult,
)
from agentrun.core.values import render_result
from agentrun.tools import Tool

logger = logging.getLogger(__name__)

ContextT = TypeVar("ContextT")


async def execute_tool(tool: Tool, call: ToolCallRequest, context: Any) -> ToolResult:
    """
    Invoke *tool* for *call* and render its result.

    Parameters
    ----------
    tool:
        The resolved tool.
    call:
        The backend's request; its parameters are passed to the handler verbatim.
    context:
        The run context, handed to the handler as its second argument.

    Returns
    -------
    ToolResult
        The rendered result, tagged with the call id.

    Raises
    ------
    ToolExecutionError
        If the handler raises.  The original exception is chained.
    """
    try:
        logger.debug("Executing tool '%s' (%s) with args=%s", tool.name, call.id, call.parameters)
        value = await tool.invoke(dict(call.parameters), context)
    except asyncio.CancelledError:
        raise
    except TypeError as exc:
        # Argument mismatch, give the caller a clean exception.
        logger.exception("Argument error while executing tool '%s'", tool.name)
        raise ToolExecutionError(tool.name, f"Invalid arguments for tool '{tool.name}': {exc}") from exc
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unhandled error in tool '%s'", tool.name)
        raise ToolExecutionError(tool.name, f"Tool '{tool.name}' raised an error: {exc}") from exc
    return ToolResult(tool_call_id=call.id, result=render_result(value))


class ToolDispatcher(Generic[ContextT]):
    """Resolves tool calls against an agent's tools and runs them one after another."""

    def __init__(self, tools: Sequence[Tool]) -> None:
        self._tools: Dict[str, Tool] = {tool.name: tool for tool in tools}

    def resolve(self, name: str) -> Tool:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    async def dispatch(
        self,
        calls: Sequence[ToolCallRequest],
        context: ContextT,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[ToolResult]:
        """Run *calls* in request order; the first failure aborts the batch."""
        results: List[ToolResult] = []
        for call in calls:
            if cancel_event is not None and cancel_event.is_set():
                raise RunCancelledError(f"Run cancelled before executing tool '{call.name}'")
            tool = self.resolve(call.name)
            result = await execute_tool(tool, call, context)
            logger.info("Tool '%s' returned: %s", call.name, result.result)
            results.append(result)
        return results
