"""
Backend for OpenAI-compatible chat-completions endpoints.

Works with api.openai.com and with self-hosted servers exposing the same ``/chat/completions``
route (vLLM, TGI's Messages API, llama.cpp server, ...).  Requests go through the ``openai`` SDK's
``AsyncOpenAI`` client.

Register it for the model names your agents use:

    register_models(["gpt-4o-mini"], api_key="sk-...")
"""

import json
import logging
from typing import (
    Any,
    AsyncIterator,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
)

import httpx
import openai
from openai import AsyncOpenAI

from agentrun.backends import (
    BackendRegistry,
    registry as default_registry,
)
from agentrun.config import settings as app_settings
from agentrun.core.errors import BackendRequestError
from agentrun.core.schema import (
    ContentDelta,
    Message,
    ModelResponse,
    ModelSettings,
    ResponseFormat,
    Role,
    StreamEnd,
    StreamEvent,
    ToolCallDelta,
    ToolCallRequest,
    ToolResult,
    Usage,
)
from agentrun.core.values import decode_arguments
from agentrun.tools import ToolSchema

logger = logging.getLogger(__name__)

_RESPONSE_FORMATS = {ResponseFormat.JSON: "json_object", ResponseFormat.TEXT: "text"}


# ---------------------------------------------------------------------------
# Request mapping
# ---------------------------------------------------------------------------
def encode_message(message: Message) -> Dict[str, Any]:
    """Map a conversation message to its chat-completions form."""
    if isinstance(message.content, ToolResult):
        return {
            "role": message.role.value,
            "tool_call_id": message.content.tool_call_id,
            "content": message.content.result,
        }
    payload: Dict[str, Any] = {"role": message.role.value, "content": message.content}
    if message.role is Role.ASSISTANT and message.tool_calls:
        payload["content"] = message.content or None
        payload["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": json.dumps(call.parameters)},
            }
            for call in message.tool_calls
        ]
    return payload


def encode_tool(schema: ToolSchema) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": schema.name,
            "description": schema.description,
            "parameters": schema.to_json_schema(),
        },
    }


def build_request(
    messages: Sequence[Message],
    settings: ModelSettings,
    tools: Sequence[ToolSchema],
) -> Dict[str, Any]:
    """
    Build keyword arguments for ``chat.completions.create``.

    Unset settings are left out.  ``settings.extra`` is sent through ``extra_body`` and never
    overrides a standard field.
    """
    request: Dict[str, Any] = {
        "model": settings.model_name,
        "messages": [encode_message(m) for m in messages],
    }
    if tools:
        request["tools"] = [encode_tool(t) for t in tools]
    if settings.temperature is not None:
        request["temperature"] = settings.temperature
    if settings.top_p is not None:
        request["top_p"] = settings.top_p
    if settings.max_tokens is not None:
        request["max_tokens"] = settings.max_tokens
    if settings.response_format is not None:
        request["response_format"] = {"type": _RESPONSE_FORMATS[settings.response_format]}
    if settings.seed is not None:
        request["seed"] = settings.seed

    extra = {k: v for k, v in settings.extra.items() if k not in request and k != "stream"}
    if extra:
        request["extra_body"] = extra
    return request


def parse_usage(usage: Any) -> Optional[Usage]:
    if usage is None:
        return None
    return Usage(
        prompt_tokens=usage.prompt_tokens or 0,
        completion_tokens=usage.completion_tokens or 0,
        total_tokens=usage.total_tokens or 0,
    )


def parse_completion(completion: Any) -> ModelResponse:
    """Convert a ``ChatCompletion`` into a :class:`ModelResponse`."""
    if not completion.choices:
        raise BackendRequestError("response contained no choices")
    message = completion.choices[0].message
    calls = [
        ToolCallRequest(
            id=call.id,
            name=call.function.name,
            parameters=decode_arguments(call.function.arguments),
        )
        for call in message.tool_calls or []
    ]
    return ModelResponse(
        text=message.content or "",
        tool_calls=calls,
        usage=parse_usage(completion.usage),
    )


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------
class OpenAICompatibleBackend:
    """
    Chat-completions backend built on ``openai.AsyncOpenAI``.

    Parameters
    ----------
    api_key:
        API key; defaults to ``settings.OPENAI_API_KEY``.
    base_url:
        API root (``.../v1``); defaults to ``settings.OPENAI_BASE_URL``.
    timeout:
        Request timeout in seconds; defaults to ``settings.REQUEST_TIMEOUT``.
    max_retries:
        Retries the SDK performs for connection errors and retryable statuses; defaults to
        ``settings.OPENAI_MAX_RETRIES``.
    http_client:
        Optional ``httpx.AsyncClient`` handed to the SDK (proxies, custom transports).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.client = AsyncOpenAI(
            api_key=api_key or app_settings.OPENAI_API_KEY,
            base_url=base_url or app_settings.OPENAI_BASE_URL,
            timeout=timeout or app_settings.REQUEST_TIMEOUT,
            max_retries=app_settings.OPENAI_MAX_RETRIES if max_retries is None else max_retries,
            http_client=http_client,
        )

    async def complete(
        self,
        messages: Sequence[Message],
        settings: ModelSettings,
        tools: Sequence[ToolSchema],
    ) -> ModelResponse:
        request = build_request(messages, settings, tools)
        try:
            completion = await self.client.chat.completions.create(**request)
        except openai.APIError as exc:
            raise _request_error(exc) from exc

        logger.debug("Chat-completions response: %s", completion)
        return parse_completion(completion)

    async def stream(
        self,
        messages: Sequence[Message],
        settings: ModelSettings,
        tools: Sequence[ToolSchema],
    ) -> AsyncIterator[StreamEvent]:
        """
        Stream a response as events.

        Text is yielded as it arrives.  Tool-call argument text only decodes once complete, so each
        call is announced on its first chunk and its parameters follow when the stream ends.
        """
        request = build_request(messages, settings, tools)
        calls: Dict[int, ToolCallDelta] = {}
        arguments: Dict[int, List[str]] = {}
        usage: Optional[Usage] = None
        try:
            chunks = await self.client.chat.completions.create(
                **request, stream=True, stream_options={"include_usage": True}
            )
            try:
                async for chunk in chunks:
                    usage = parse_usage(chunk.usage) or usage
                    for choice in chunk.choices:
                        delta = choice.delta
                        if delta.content:
                            yield ContentDelta(text=delta.content)
                        for fragment in delta.tool_calls or []:
                            function = fragment.function
                            name = (function.name if function else None) or ""
                            if fragment.index not in calls:
                                call = ToolCallDelta(id=fragment.id or f"call_{fragment.index}", name=name)
                                calls[fragment.index] = call
                                arguments[fragment.index] = []
                                yield call
                            elif name:
                                calls[fragment.index] = calls[fragment.index].model_copy(update={"name": name})
                            if function and function.arguments:
                                arguments[fragment.index].append(function.arguments)
            finally:
                await chunks.close()
        except openai.APIError as exc:
            raise _request_error(exc) from exc

        for index, call in calls.items():
            yield ToolCallDelta(
                id=call.id,
                name=call.name,
                parameters=decode_arguments("".join(arguments[index])),
            )
        yield StreamEnd(usage=usage)


def _request_error(exc: openai.APIError) -> BackendRequestError:
    if isinstance(exc, openai.APIStatusError):
        logger.error("Chat-completions request failed with status %s: %s", exc.status_code, exc.message)
        return BackendRequestError(exc.message, exc.status_code)
    logger.error("Chat-completions request error: %s", exc)
    return BackendRequestError(str(exc) or type(exc).__name__)


def register_models(
    model_names: Iterable[str],
    registry: BackendRegistry = default_registry,
    **backend_kwargs: Any,
) -> None:
    """Register an :class:`OpenAICompatibleBackend` factory for each of *model_names*."""
    for name in model_names:
        registry.register(name, lambda: OpenAICompatibleBackend(**backend_kwargs))
