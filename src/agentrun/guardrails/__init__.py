"""
Guardrails validate (and may rewrite) a run's input before it is sent and its output before it is
returned.

A guardrail is any object with ``validate_input(text) -> text`` and ``validate_output(text) -> text``
methods that raise :class:`GuardrailError` to reject the text.  :class:`GuardrailPipeline` applies an
agent's guardrails in declared order and reports the first rejection, with its position, as a
:class:`~agentrun.core.errors.GuardrailViolation`.
"""

import logging
import re
from typing import (
    Literal,
    Protocol,
    Sequence,
    runtime_checkable,
)

from agentrun.core.errors import GuardrailViolation

logger = logging.getLogger(__name__)

Stage = Literal["input", "output"]


class GuardrailError(Exception):
    """Raised by a guardrail to reject text.  *reason* is reported to the caller."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


@runtime_checkable
class Guardrail(Protocol):
    """Validates input before it is sent and output before it is returned."""

    def validate_input(self, text: str) -> str: ...

    def validate_output(self, text: str) -> str: ...


class BaseGuardrail:
    """Pass-through guardrail; subclasses override the stage(s) they check."""

    def validate_input(self, text: str) -> str:
        return text

    def validate_output(self, text: str) -> str:
        return text


def guardrail_name(guardrail: Guardrail) -> str:
    return getattr(guardrail, "name", None) or type(guardrail).__name__


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------
class GuardrailPipeline:
    """Runs guardrails in declared order; the first failure short-circuits the rest."""

    def __init__(self, guardrails: Sequence[Guardrail]) -> None:
        self.guardrails = list(guardrails)

    def validate_input(self, text: str) -> str:
        return self._apply("input", text)

    def validate_output(self, text: str) -> str:
        return self._apply("output", text)

    def _apply(self, stage: Stage, text: str) -> str:
        for position, guardrail in enumerate(self.guardrails):
            name = guardrail_name(guardrail)
            check = guardrail.validate_input if stage == "input" else guardrail.validate_output
            try:
                text = check(text)
            except GuardrailError as exc:
                logger.warning("Guardrail #%d (%s) rejected %s: %s", position, name, stage, exc.reason)
                raise GuardrailViolation(position, name, stage, exc.reason) from exc
            except Exception as exc:  # noqa: BLE001
                logger.exception("Guardrail #%d (%s) crashed while checking %s", position, name, stage)
                raise GuardrailViolation(position, name, stage, f"guardrail error: {exc}") from exc
            logger.debug("%s passed guardrail #%d (%s)", stage.capitalize(), position, name)
        return text


# ---------------------------------------------------------------------------
# Reference guardrails
# ---------------------------------------------------------------------------
class InputLengthGuardrail(BaseGuardrail):
    """Rejects input longer than *max_length* characters.  Output passes through."""

    def __init__(self, max_length: int) -> None:
        if max_length < 0:
            raise ValueError("max_length must be non-negative")
        self.max_length = max_length

    def validate_input(self, text: str) -> str:
        if len(text) > self.max_length:
            raise GuardrailError(
                f"Input is too long. Maximum length is {self.max_length} characters."
            )
        return text


class RegexContentGuardrail(BaseGuardrail):
    """
    Blocks (``block_matches=True``) or requires (``block_matches=False``) a regex match.

    *stage* selects what is checked: ``"input"``, ``"output"`` (the default) or ``"both"``.
    """

    def __init__(
        self,
        pattern: str,
        block_matches: bool = True,
        stage: Literal["input", "output", "both"] = "output",
    ) -> None:
        self.regex = re.compile(pattern)
        self.block_matches = block_matches
        self.stage = stage

    def validate_input(self, text: str) -> str:
        if self.stage in ("input", "both"):
            self._check(text, "Input")
        return text

    def validate_output(self, text: str) -> str:
        if self.stage in ("output", "both"):
            self._check(text, "Output")
        return text

    def _check(self, text: str, label: str) -> None:
        matched = self.regex.search(text) is not None
        if self.block_matches and matched:
            raise GuardrailError(f"{label} contains blocked content.")
        if not self.block_matches and not matched:
            raise GuardrailError(f"{label} does not contain required content.")
