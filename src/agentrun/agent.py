"""
Agent definitions.

An :class:`AgentDefinition` is the immutable configuration a run executes: instructions, tools,
guardrails, handoffs and model settings.  Definitions are shared between runs and never modified;
the ``add_*`` helpers and :meth:`AgentDefinition.clone` return new definitions instead.
"""

from typing import (
    Any,
    Generic,
    Iterable,
    Tuple,
    TypeVar,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

from agentrun.core.schema import ModelSettings
from agentrun.guardrails import Guardrail
from agentrun.handoffs import Handoff
from agentrun.tools import (
    Tool,
    ToolSchema,
)

ContextT = TypeVar("ContextT")


class AgentDefinition(BaseModel, Generic[ContextT]):
    """Named configuration of instructions, tools, guardrails, handoffs and model settings."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, protected_namespaces=())

    name: str
    instructions: str
    tools: Tuple[Tool, ...] = ()
    guardrails: Tuple[Guardrail, ...] = ()
    handoffs: Tuple[Handoff, ...] = ()
    model_settings: ModelSettings = Field(default_factory=ModelSettings)

    @field_validator("tools")
    @classmethod
    def _unique_tool_names(cls, tools: Tuple[Tool, ...]) -> Tuple[Tool, ...]:
        seen: set[str] = set()
        for tool in tools:
            if tool.name in seen:
                raise ValueError(f"Tool '{tool.name}' is defined more than once.")
            seen.add(tool.name)
        return tools

    def tool_schemas(self) -> list[ToolSchema]:
        return [tool.to_schema() for tool in self.tools]

    def clone(self, **overrides: Any) -> "AgentDefinition[ContextT]":
        """Return an independent copy, with *overrides* replacing fields (re-validated)."""
        fields = {name: getattr(self, name) for name in type(self).model_fields}
        fields.update(overrides)
        return type(self)(**fields)

    def add_tool(self, tool: Tool) -> "AgentDefinition[ContextT]":
        return self.clone(tools=(*self.tools, tool))

    def add_tools(self, tools: Iterable[Tool]) -> "AgentDefinition[ContextT]":
        return self.clone(tools=(*self.tools, *tools))

    def add_guardrail(self, guardrail: Guardrail) -> "AgentDefinition[ContextT]":
        return self.clone(guardrails=(*self.guardrails, guardrail))

    def add_handoff(self, handoff: Handoff) -> "AgentDefinition[ContextT]":
        return self.clone(handoffs=(*self.handoffs, handoff))
