"""
Streaming driver for OpenAI-compatible ``/chat/completions`` endpoints.

The agent core talks to models only through the ``ChatDriver`` protocol, so
tests can swap in a scripted driver without touching HTTP.
"""

from __future__ import annotations

import inspect
import json
import time

from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol

import httpx

from core.constants import DEFAULT_TOOL_CHOICE, SSE_CONTENT_TYPE, SSE_DATA_PREFIX, SSE_DONE_SENTINEL
from core.providers import build_provider_headers, resolve_base_url
from models.agent_models import AgentDecision
from models.chat_models import (
    ChatCompletionMessage,
    ChatCompletionResult,
    EndpointConfig,
    FunctionCall,
    ToolCall,
    Usage,
)
from models.error_models import LLMRequestError, LLMTransportError
from models.mcp_models import OpenAIFunction
from utils.client_factory import create_http_client
from utils.logger import logger

ChunkCallback = Callable[[str], Awaitable[None] | None]


class ChatDriver(Protocol):
    """Anything able to run one completion call for the agent loop."""

    async def stream_chat(
        self,
        endpoint: EndpointConfig,
        messages: Sequence[ChatCompletionMessage],
        tools: Sequence[OpenAIFunction],
        on_chunk: ChunkCallback,
        decision: AgentDecision | None = None,
    ) -> ChatCompletionResult: ...


class _StreamAccumulator:
    """Folds SSE chunks into text, tool calls and usage."""

    def __init__(self, on_chunk: ChunkCallback) -> None:
        self._on_chunk = on_chunk
        self._buffer = ""
        self.content = ""
        self.tool_calls: dict[int, ToolCall] = {}
        self.usage: Usage | None = None

    async def feed(self, text: str) -> None:
        """Consume raw text; an incomplete trailing line waits for the next chunk."""
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            await self._handle_line(line)

    async def finish(self) -> None:
        if self._buffer:
            line, self._buffer = self._buffer, ""
            await self._handle_line(line)

    async def _handle_line(self, raw_line: str) -> None:
        line = raw_line.strip()
        if not line.startswith(SSE_DATA_PREFIX.strip()):
            return
        data = line[len(SSE_DATA_PREFIX.strip()) :].strip()
        if not data or data == SSE_DONE_SENTINEL:
            return
        try:
            chunk = json.loads(data)
        except json.JSONDecodeError:
            logger.debug(f"Skipping malformed stream line: {data[:100]}")
            return
        if isinstance(chunk, dict):
            await self._apply(chunk)

    async def _apply(self, chunk: dict[str, Any]) -> None:
        if isinstance(chunk.get("usage"), dict):
            self.usage = Usage.from_payload(chunk["usage"])

        choices = chunk.get("choices") or []
        delta = (choices[0] or {}).get("delta") if choices else None
        if not isinstance(delta, dict):
            return

        if delta.get("content"):
            self.content += delta["content"]
            await emit_chunk(self._on_chunk, self.content)

        for call_delta in delta.get("tool_calls") or []:
            self._merge_tool_call(call_delta)

    def _merge_tool_call(self, call_delta: dict[str, Any]) -> None:
        index = call_delta.get("index")
        if index is None:
            index = 0
        function = call_delta.get("function") or {}

        existing = self.tool_calls.get(index)
        if existing is None:
            self.tool_calls[index] = ToolCall(
                id=call_delta.get("id") or f"call_{int(time.time() * 1000)}_{index}",
                function=FunctionCall(
                    name=function.get("name") or "",
                    arguments=function.get("arguments") or "",
                ),
            )
            return

        if function.get("name"):
            existing.function.name += function["name"]
        if function.get("arguments"):
            existing.function.arguments += function["arguments"]

    def result(self) -> ChatCompletionResult:
        return ChatCompletionResult(
            full_content=self.content,
            tool_calls=list(self.tool_calls.values()),
            usage=self.usage,
        )


async def emit_chunk(on_chunk: ChunkCallback, content: str) -> None:
    outcome = on_chunk(content)
    if inspect.isawaitable(outcome):
        await outcome


def _extract_error_message(status_code: int, text: str) -> str:
    """``error.message`` from a JSON body, else the raw body, else a status line."""
    fallback = f"API Error: {status_code}"
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return text or fallback
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return fallback


async def _parse_complete_body(text: str, on_chunk: ChunkCallback) -> ChatCompletionResult:
    """Handle endpoints that ignore ``stream: true`` and answer with one JSON body."""
    if SSE_DATA_PREFIX in text:
        accumulator = _StreamAccumulator(on_chunk)
        await accumulator.feed(text)
        await accumulator.finish()
        return accumulator.result()

    if not text.strip():
        return ChatCompletionResult()

    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Completion endpoint returned a non-JSON body")
        return ChatCompletionResult()
    if not isinstance(payload, dict):
        return ChatCompletionResult()

    choices = payload.get("choices") or []
    message = (choices[0] or {}).get("message") or {} if choices else {}
    result = ChatCompletionResult()

    if message.get("content"):
        result.full_content = message["content"]
        await emit_chunk(on_chunk, result.full_content)

    for call in message.get("tool_calls") or []:
        function = call.get("function") or {}
        result.tool_calls.append(
            ToolCall(
                id=call.get("id") or "",
                function=FunctionCall(
                    name=function.get("name") or "",
                    arguments=function.get("arguments") or "",
                ),
            )
        )

    if isinstance(payload.get("usage"), dict):
        result.usage = Usage.from_payload(payload["usage"])
    return result


class OpenAICompatibleDriver:
    """ChatDriver for any endpoint speaking the OpenAI chat completions API."""

    def __init__(self, http_client: httpx.AsyncClient | None = None):
        """
        Args:
            http_client: Shared httpx client; a logging client is created per call otherwise
        """
        self._http_client = http_client

    @staticmethod
    def build_request_body(
        endpoint: EndpointConfig,
        messages: Sequence[ChatCompletionMessage],
        tools: Sequence[OpenAIFunction],
        decision: AgentDecision | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": (decision.model if decision else "") or endpoint.model,
            "messages": [message.to_payload() for message in messages],
            "stream": True,
        }
        if tools:
            body["tools"] = [tool.model_dump() for tool in tools]
            body["tool_choice"] = (decision.tool_choice if decision else None) or DEFAULT_TOOL_CHOICE
        return body

    async def stream_chat(
        self,
        endpoint: EndpointConfig,
        messages: Sequence[ChatCompletionMessage],
        tools: Sequence[OpenAIFunction],
        on_chunk: ChunkCallback,
        decision: AgentDecision | None = None,
    ) -> ChatCompletionResult:
        """Run one completion call, streaming cumulative text to ``on_chunk``.

        Raises:
            LLMRequestError: Endpoint answered with a non-2xx status
            LLMTransportError: Network failure before or during the stream
        """
        url = f"{resolve_base_url(endpoint.provider_id, endpoint.base_url)}/chat/completions"
        headers = {
            "Content-Type": "application/json",
            **build_provider_headers(endpoint.provider_id, endpoint.api_key, endpoint.folder_id),
        }
        body = self.build_request_body(endpoint, messages, tools, decision)

        logger.info(
            f"Chat completion request: model={body['model']} messages={len(body['messages'])} tools={len(tools)}",
            provider_id=endpoint.provider_id,
        )

        client = self._http_client or create_http_client()
        try:
            async with client.stream("POST", url, headers=headers, json=body) as response:
                if not response.is_success:
                    text = (await response.aread()).decode("utf-8", errors="replace")
                    message = _extract_error_message(response.status_code, text)
                    logger.error(f"Chat completion failed with status {response.status_code}: {message}")
                    raise LLMRequestError(message, status_code=response.status_code)

                content_type = response.headers.get("content-type", "")
                if SSE_CONTENT_TYPE not in content_type:
                    text = (await response.aread()).decode("utf-8", errors="replace")
                    return await _parse_complete_body(text, on_chunk)

                accumulator = _StreamAccumulator(on_chunk)
                async for text in response.aiter_text():
                    await accumulator.feed(text)
                await accumulator.finish()
                result = accumulator.result()
        except httpx.HTTPError as e:
            logger.error(f"Chat completion transport error: {e}")
            raise LLMTransportError(f"Network error contacting model endpoint: {e}", cause=e) from e
        finally:
            if self._http_client is None:
                await client.aclose()

        logger.info(
            f"Chat completion finished: {len(result.full_content)} chars, {len(result.tool_calls)} tool calls",
            provider_id=endpoint.provider_id,
        )
        return result


__all__ = ["ChatDriver", "ChunkCallback", "OpenAICompatibleDriver", "emit_chunk"]
