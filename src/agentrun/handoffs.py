"""
Handoffs redirect a run to another agent definition.

A :class:`Handoff` pairs a target agent with a predicate over the validated input and the run
context.  An agent's handoffs are evaluated in declared order and the first match wins.
"""

import logging
from typing import (
    TYPE_CHECKING,
    Generic,
    Optional,
    Protocol,
    Sequence,
    TypeVar,
)

if TYPE_CHECKING:
    from agentrun.agent import AgentDefinition

logger = logging.getLogger(__name__)

ContextT = TypeVar("ContextT")
ContextT_contra = TypeVar("ContextT_contra", contravariant=True)


class HandoffFilter(Protocol[ContextT_contra]):
    """Decides whether a run should be handed off."""

    def __call__(self, text: str, context: ContextT_contra) -> bool: ...


class KeywordFilter:
    """Matches when the input contains any of *keywords* (substring match)."""

    def __init__(self, keywords: Sequence[str], case_sensitive: bool = False) -> None:
        self.case_sensitive = case_sensitive
        self.keywords = [k if case_sensitive else k.lower() for k in keywords]

    def __call__(self, text: str, context: object) -> bool:
        haystack = text if self.case_sensitive else text.lower()
        return any(keyword in haystack for keyword in self.keywords)

    def __repr__(self) -> str:
        return f"KeywordFilter({self.keywords!r}, case_sensitive={self.case_sensitive})"


class Handoff(Generic[ContextT]):
    """A (target agent, predicate) pair."""

    __slots__ = ("agent", "filter")

    def __init__(
        self, agent: "AgentDefinition[ContextT]", filter: HandoffFilter[ContextT]
    ) -> None:  # pylint: disable=redefined-builtin
        self.agent = agent
        self.filter = filter

    def __repr__(self) -> str:
        return f"Handoff(agent={self.agent.name!r}, filter={self.filter!r})"

    def should_handoff(self, text: str, context: ContextT) -> bool:
        return bool(self.filter(text, context))

    @classmethod
    def with_keywords(
        cls,
        agent: "AgentDefinition[ContextT]",
        keywords: Sequence[str],
        case_sensitive: bool = False,
    ) -> "Handoff[ContextT]":
        return cls(agent=agent, filter=KeywordFilter(keywords, case_sensitive=case_sensitive))

    @classmethod
    def with_filter(
        cls,
        agent: "AgentDefinition[ContextT]",
        filter_fn: HandoffFilter[ContextT],
    ) -> "Handoff[ContextT]":
        return cls(agent=agent, filter=filter_fn)


def select_handoff(
    handoffs: Sequence[Handoff[ContextT]], text: str, context: ContextT
) -> Optional[Handoff[ContextT]]:
    """Return the first handoff whose predicate matches, evaluating no further predicates."""
    for position, handoff in enumerate(handoffs):
        if handoff.should_handoff(text, context):
            logger.info("Handoff #%d to agent '%s' selected", position, handoff.agent.name)
            return handoff
    return None
