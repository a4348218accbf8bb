"""
Conversions between Python values and the JSON values exchanged with backends.

Tool parameters arrive as JSON values and tool results leave as text.  The helpers here define the
rules in one place:

* :func:`to_json_value` converts an arbitrary Python value to a :data:`pydantic.JsonValue`, or raises
  :class:`TypeError` when the value has no JSON form.
* :func:`render_result` turns a tool's return value into the text sent back to the model.
* :func:`decode_arguments` parses the JSON-encoded argument string backends send for a tool call.
"""

import json
import logging
import math
from collections.abc import (
    Mapping,
    Sequence,
)
from typing import (
    Any,
    Dict,
)

from pydantic import (
    BaseModel,
    JsonValue,
)

from agentrun.core.errors import MalformedToolArgumentsError

logger = logging.getLogger(__name__)


def to_json_value(value: Any) -> JsonValue:
    """
    Convert *value* to a JSON value.

    Strings, booleans, ``None`` and finite numbers pass through; mappings with string keys become
    objects; lists, tuples and other non-text sequences become arrays; pydantic models are dumped in
    JSON mode.  Anything else raises :class:`TypeError`.
    """
    if value is None or isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise TypeError(f"non-finite number {value!r} has no JSON form")
        return value
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Mapping):
        out: Dict[str, JsonValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"object key {key!r} is not a string")
            out[key] = to_json_value(item)
        return out
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return [to_json_value(item) for item in value]
    raise TypeError(f"value of type {type(value).__name__} has no JSON form")


def render_result(value: Any) -> str:
    """
    Render a tool result as text for the conversation.

    Text is returned unchanged.  Other values are serialized to indented JSON with sorted keys; when
    that is impossible the value's ``str()`` is used instead so the call still succeeds.
    """
    if isinstance(value, str):
        return value
    try:
        return json.dumps(to_json_value(value), indent=2, sort_keys=True, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        logger.warning("Tool result is not JSON-representable (%s); using str()", exc)
        return str(value)


def decode_arguments(raw: str | None) -> Dict[str, JsonValue]:
    """Decode a JSON-encoded argument object.  Empty input yields an empty mapping."""
    if raw is None or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedToolArgumentsError(f"invalid JSON ({exc.msg} at pos {exc.pos})", raw) from exc
    if not isinstance(parsed, dict):
        raise MalformedToolArgumentsError(
            f"expected a JSON object, got {type(parsed).__name__}", raw
        )
    return parsed
