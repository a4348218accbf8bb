"""
Tools for agentrun.

A :class:`Tool` is a named, schema-described unit of work that the model can ask the agent to run.
Tools are attached to an agent definition; their names must be unique within that agent.

The :func:`function_tool` decorator builds a tool from a plain (or ``async``) function, deriving the
parameter schema from its signature:

    @function_tool()
    def add(a: int, b: int) -> int:
        return a + b

A parameter named ``context`` is excluded from the schema and receives the run context instead.
"""

import inspect
import logging
import types
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    List,
    Mapping,
    Optional,
    TypeVar,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    JsonValue,
)

logger = logging.getLogger(__name__)

ContextT = TypeVar("ContextT")

ToolParameters = Dict[str, JsonValue]

CONTEXT_PARAMETER = "context"


class ParameterType(str, Enum):
    """JSON Schema types supported for tool parameters."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


class ToolParameter(BaseModel):
    """
    Information about a tool parameter.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    type: ParameterType = ParameterType.STRING
    required: bool = True


class ToolSchema(BaseModel):
    """
    Schema for a tool, as advertised to the backend.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    parameters: List[ToolParameter] = Field(default_factory=list)

    def to_json_schema(self) -> Dict[str, Any]:
        """Render the parameter list as a JSON Schema ``object``."""
        properties = {
            p.name: {"type": p.type.value, "description": p.description} for p in self.parameters
        }
        required = [p.name for p in self.parameters if p.required]
        return {"type": "object", "properties": properties, "required": required}


class Tool(BaseModel, Generic[ContextT]):
    """A named capability the model can invoke with structured parameters."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    description: str = ""
    parameters: List[ToolParameter] = Field(default_factory=list)
    handler: Callable[..., Any] = Field(..., exclude=True, repr=False)

    def to_schema(self) -> ToolSchema:
        return ToolSchema(name=self.name, description=self.description, parameters=self.parameters)

    async def invoke(self, parameters: ToolParameters, context: ContextT) -> Any:
        """Run the handler, awaiting it when it returns an awaitable."""
        result = self.handler(parameters, context)
        if inspect.isawaitable(result):
            result = await result
        return result


# ---------------------------------------------------------------------------
# function_tool
# ---------------------------------------------------------------------------
def _parameter_type(annotation: Any) -> ParameterType:
    """Map a Python annotation to the closest JSON Schema type."""
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = [arg for arg in get_args(annotation) if arg is not type(None)]
        return _parameter_type(args[0]) if len(args) == 1 else ParameterType.STRING
    target = origin or annotation
    if target is bool:
        return ParameterType.BOOLEAN
    if target in (int, float):
        return ParameterType.NUMBER
    if target in (list, tuple, set):
        return ParameterType.ARRAY
    if target is dict:
        return ParameterType.OBJECT
    return ParameterType.STRING


def function_tool(
    name: Optional[str] = None,
    description: Optional[str] = None,
    descriptions: Optional[Mapping[str, str]] = None,
) -> Callable[[Callable[..., Any]], Tool]:
    """
    Build a :class:`Tool` from a function.

    Parameters
    ----------
    name: str, optional
        Tool name; defaults to the function's ``__name__``.
    description: str, optional
        Tool description; defaults to the function's docstring.
    descriptions: Mapping[str, str], optional
        Per-parameter descriptions keyed by parameter name.

    Returns
    -------
    Callable
        A decorator that replaces the function with the resulting :class:`Tool`.
    """
    descriptions = descriptions or {}

    def wrapper(fn: Callable[..., Any]) -> Tool:
        sig = inspect.signature(fn)
        type_hints = get_type_hints(fn)
        wants_context = CONTEXT_PARAMETER in sig.parameters
        params: List[ToolParameter] = []
        for param_name, param in sig.parameters.items():
            if param_name == CONTEXT_PARAMETER:
                continue
            if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                continue
            params.append(
                ToolParameter(
                    name=param_name,
                    description=descriptions.get(param_name, ""),
                    type=_parameter_type(type_hints.get(param_name, str)),
                    required=param.default == inspect.Parameter.empty,
                )
            )

        def handler(parameters: ToolParameters, context: Any) -> Any:
            kwargs: Dict[str, Any] = dict(parameters)
            if wants_context:
                kwargs[CONTEXT_PARAMETER] = context
            return fn(**kwargs)

        tool_name = name or fn.__name__
        logger.debug("Building function tool '%s' with %d parameters", tool_name, len(params))
        return Tool(
            name=tool_name,
            description=description if description is not None else inspect.getdoc(fn) or "",
            parameters=params,
            handler=handler,
        )

    return wrapper
