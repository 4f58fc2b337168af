"""Anthropic-backed ModelClient.

Provides:
- create_anthropic_client: AsyncAnthropic factory with Braintrust wrapping
- AnthropicModelClient: ModelClient implementation translating ChatMessage
  conversations to the Messages API and mapping SDK errors onto the
  workloop error taxonomy

Usage:
    from workloop.infra.clients.anthropic_client import AnthropicModelClient
    from workloop.infra.io.config import WorkloopConfig

    config = WorkloopConfig.from_env()
    client = AnthropicModelClient(
        create_anthropic_client(
            api_key=config.llm_api_key,
            base_url=config.llm_base_url,
            timeout=config.request_timeout,
        )
    )
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import anthropic
from anthropic import AsyncAnthropic
from braintrust import wrap_anthropic

from workloop.core.errors import (
    NetworkError,
    RateLimitedError,
    UnknownExecutionError,
)
from workloop.core.models import TextDelta, ToolInvocation
from workloop.infra.braintrust_integration import is_braintrust_enabled

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from workloop.core.models import ChatMessage, ModelParams, StreamEvent, ToolSpec

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"

_EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


def create_anthropic_client(
    *,
    api_key: str | None = None,
    base_url: str | None = None,
    timeout: float | None = None,
) -> Any:  # noqa: ANN401 - AsyncAnthropic or its Braintrust wrapper
    """Create an AsyncAnthropic client with consistent configuration.

    Args:
        api_key: Anthropic API key. If not provided, the client uses the
            ANTHROPIC_API_KEY environment variable.
        base_url: Optional base URL for routing requests through a proxy.
        timeout: Optional timeout in seconds for API requests.

    Returns:
        An AsyncAnthropic client, wrapped with Braintrust tracing when
        BRAINTRUST_API_KEY is set.
    """
    client_kwargs: dict[str, object] = {}
    if api_key is not None:
        client_kwargs["api_key"] = api_key
    if base_url is not None:
        client_kwargs["base_url"] = base_url
    if timeout is not None:
        client_kwargs["timeout"] = timeout

    client = AsyncAnthropic(**client_kwargs)
    if is_braintrust_enabled():
        client = wrap_anthropic(client)
    return client


# =============================================================================
# Message translation
# =============================================================================


def _tool_input(arguments: str) -> dict[str, Any]:
    try:
        data = json.loads(arguments) if arguments else {}
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def _content_blocks(message: ChatMessage) -> list[dict[str, Any]]:
    if message.role == "tool":
        return [
            {
                "type": "tool_result",
                "tool_use_id": message.tool_call_id,
                "content": message.content or "",
            }
        ]
    blocks: list[dict[str, Any]] = []
    if message.content and message.content.strip():
        blocks.append({"type": "text", "text": message.content})
    for call in message.tool_calls:
        blocks.append(
            {
                "type": "tool_use",
                "id": call.id,
                "name": call.name,
                "input": _tool_input(call.arguments),
            }
        )
    return blocks


def to_anthropic_messages(
    messages: Sequence[ChatMessage],
) -> tuple[str | None, list[dict[str, Any]]]:
    """Split a conversation into a system prompt and Messages API turns.

    Tool results are sent as user turns. Consecutive turns with the same
    role are merged, as the API requires strict alternation.
    """
    system_parts: list[str] = []
    converted: list[dict[str, Any]] = []
    for message in messages:
        if message.role == "system":
            if message.content:
                system_parts.append(message.content)
            continue
        role = "assistant" if message.role == "assistant" else "user"
        blocks = _content_blocks(message)
        if not blocks:
            continue
        if converted and converted[-1]["role"] == role:
            converted[-1]["content"].extend(blocks)
        else:
            converted.append({"role": role, "content": blocks})
    system = "\n\n".join(system_parts) if system_parts else None
    return system, converted


def to_anthropic_tools(tools: Sequence[ToolSpec]) -> list[dict[str, Any]]:
    return [
        {
            "name": tool.name,
            "description": tool.description,
            "input_schema": tool.parameters or _EMPTY_SCHEMA,
        }
        for tool in tools
    ]


def _retry_after(error: anthropic.RateLimitError) -> float | None:
    response = getattr(error, "response", None)
    if response is None:
        return None
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def map_api_error(error: anthropic.APIError) -> Exception:
    """Translate an Anthropic SDK error into a workloop ExecutionError."""
    if isinstance(error, anthropic.RateLimitError):
        return RateLimitedError(_retry_after(error))
    if isinstance(error, anthropic.APIConnectionError):
        # APITimeoutError is a subclass
        return NetworkError(str(error))
    return UnknownExecutionError(str(error))


# =============================================================================
# Client
# =============================================================================


class AnthropicModelClient:
    """ModelClient implementation over the Anthropic Messages API."""

    def __init__(
        self,
        client: Any,  # noqa: ANN401
        *,
        default_model: str = DEFAULT_MODEL,
    ) -> None:
        self._client = client
        self._default_model = default_model

    def _request(
        self, messages: Sequence[ChatMessage], params: ModelParams
    ) -> dict[str, Any]:
        system, converted = to_anthropic_messages(messages)
        request: dict[str, Any] = {
            "model": params.model or self._default_model,
            "max_tokens": params.max_tokens,
            "temperature": params.temperature,
            "messages": converted,
        }
        if system:
            request["system"] = system
        if params.top_p is not None:
            request["top_p"] = params.top_p
        if params.tools:
            request["tools"] = to_anthropic_tools(params.tools)
        return request

    async def complete_once(
        self, messages: Sequence[ChatMessage], params: ModelParams
    ) -> str:
        request = self._request(messages, params)
        try:
            response = await self._client.messages.create(**request)
        except anthropic.APIError as e:
            logger.warning("Model request failed: %s", e)
            raise map_api_error(e) from e
        return "".join(
            block.text for block in response.content if block.type == "text"
        )

    async def stream_deltas(
        self, messages: Sequence[ChatMessage], params: ModelParams
    ) -> AsyncIterator[StreamEvent]:
        """Stream text deltas, then one ToolInvocation per tool_use block."""
        request = self._request(messages, params)
        try:
            async with self._client.messages.stream(**request) as stream:
                async for event in stream:
                    if event.type == "text" and event.text:
                        yield TextDelta(event.text)
                final = await stream.get_final_message()
        except anthropic.APIError as e:
            logger.warning("Model stream failed: %s", e)
            raise map_api_error(e) from e

        for block in final.content:
            if block.type == "tool_use":
                yield ToolInvocation(
                    tool_name=block.name,
                    json_arguments=json.dumps(block.input),
                    call_id=block.id,
                )
