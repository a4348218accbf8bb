"""
Backend interface for agentrun.

A backend is the only thing that talks to a language model.  Everything else (the run engine,
tools, guardrails) stays model-agnostic and depends on the :class:`Backend` protocol alone:

* ``await backend.complete(messages, settings, tools)`` returns a buffered :class:`ModelResponse`.
* ``backend.stream(messages, settings, tools)`` returns an async iterator of stream events that
  aggregates to the same response shape.

Backends are looked up by model name through a :class:`BackendRegistry`.  Registries are populated
during setup and can then be frozen so concurrent runs only ever read them.
"""

import logging
import threading
from typing import (
    AsyncIterator,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

from agentrun.core.errors import BackendUnavailableError
from agentrun.core.schema import (
    Message,
    ModelResponse,
    ModelSettings,
    StreamEvent,
)
from agentrun.tools import ToolSchema

logger = logging.getLogger(__name__)


@runtime_checkable
class Backend(Protocol):
    """Request/response interface to a language-model service."""

    async def complete(
        self,
        messages: Sequence[Message],
        settings: ModelSettings,
        tools: Sequence[ToolSchema],
    ) -> ModelResponse: ...

    def stream(
        self,
        messages: Sequence[Message],
        settings: ModelSettings,
        tools: Sequence[ToolSchema],
    ) -> AsyncIterator[StreamEvent]: ...


BackendFactory = Callable[[], Backend]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
class BackendRegistry:
    """Maps model names to backend factories."""

    def __init__(self) -> None:
        self._factories: Dict[str, BackendFactory] = {}
        self._lock = threading.Lock()
        self._frozen = False

    def register(self, name: str, factory: Optional[BackendFactory] = None) -> Callable:
        """
        Register *factory* under *name*.

        Can be called directly, ``registry.register("gpt-4o", make_backend)``, or used as a class
        decorator, ``@registry.register("scripted")``, in which case the class itself is the
        factory.  Re-registering a name replaces the previous factory.

        Raises
        ------
        RuntimeError
            If the registry has been frozen.
        """

        def wrapper(fn: BackendFactory) -> BackendFactory:
            with self._lock:
                if self._frozen:
                    raise RuntimeError(f"Cannot register backend '{name}': registry is frozen.")
                if name in self._factories:
                    logger.warning("Replacing backend registered as '%s'", name)
                self._factories[name] = fn
            logger.debug("Registered backend '%s'", name)
            return fn

        if factory is not None:
            return wrapper(factory)
        return wrapper

    def freeze(self) -> None:
        """End the setup phase; further registration raises."""
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._factories)

    def get(self, name: str) -> Backend:
        """Instantiate the backend registered as *name*."""
        with self._lock:
            factory = self._factories.get(name)
        if factory is None:
            raise BackendUnavailableError(name)
        return factory()

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._factories


registry = BackendRegistry()
"""Default process-wide registry."""
