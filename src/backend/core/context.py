"""
Builds the message list sent to the model for one agent iteration.

Order: system prompt (+ chat prompt), relevant long-term memory, then the
conversation with system-role and empty turns dropped.
"""

from __future__ import annotations

import base64

from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

import aiofiles

from core.constants import DEFAULT_IMAGE_MIME_TYPE, MEMORY_DEFAULT_LIMIT, MEMORY_DEFAULT_MIN_IMPORTANCE
from models.chat_models import (
    Attachment,
    ChatCompletionMessage,
    ChatMessage,
    ContentPart,
    EndpointConfig,
    ImageURL,
    ImageURLPart,
    TextPart,
)
from models.memory_models import MemoryEntry

if TYPE_CHECKING:
    from core.memory import MemoryStore

ImageResolver = Callable[[Attachment], Awaitable[str]]

_PASSTHROUGH_PREFIXES = ("data:", "http://", "https://")


async def resolve_image_data_url(attachment: Attachment) -> str:
    """Turn an image attachment into a URL the model can fetch.

    ``data:`` and ``http(s)://`` URIs are passed through; anything else is
    read from the local filesystem and inlined as a base64 data URI.

    Raises:
        OSError: If a local file cannot be read
    """
    uri = attachment.uri
    if uri.startswith(_PASSTHROUGH_PREFIXES):
        return uri

    path = Path(uri.removeprefix("file://"))
    async with aiofiles.open(path, "rb") as f:
        raw = await f.read()
    encoded = base64.b64encode(raw).decode("ascii")
    return f"data:{attachment.mime_type or DEFAULT_IMAGE_MIME_TYPE};base64,{encoded}"


async def _build_multimodal_content(
    text: str, attachments: Sequence[Attachment], image_resolver: ImageResolver
) -> list[ContentPart]:
    parts: list[ContentPart] = []
    if text:
        parts.append(TextPart(text=text))
    for attachment in attachments:
        if attachment.type != "image":
            continue
        url = await image_resolver(attachment)
        parts.append(ImageURLPart(image_url=ImageURL(url=url)))
    return parts


def format_memory(entries: Sequence[MemoryEntry]) -> str:
    lines = "\n".join(f"- ({entry.type}) {entry.content}" for entry in entries)
    return f"Relevant memory:\n{lines}"


async def build_conversation_messages(
    messages: Sequence[ChatMessage],
    image_resolver: ImageResolver = resolve_image_data_url,
) -> list[ChatCompletionMessage]:
    """Convert stored messages to wire messages (system and empty turns dropped)."""
    result: list[ChatCompletionMessage] = []
    for message in messages:
        if message.role == "system":
            continue
        has_content = bool(message.content and message.content.strip())
        has_attachments = bool(message.attachments)
        if not has_content and not has_attachments:
            continue

        if message.role == "user" and has_attachments:
            content = await _build_multimodal_content(message.content, message.attachments, image_resolver)
            result.append(ChatCompletionMessage(role="user", content=content))
        else:
            result.append(ChatCompletionMessage(role=message.role, content=message.content))
    return result


async def build_agent_context(
    messages: Sequence[ChatMessage],
    endpoint: EndpointConfig,
    system_prompt: str | None = None,
    chat_prompt: str | None = None,
    memory_store: MemoryStore | None = None,
    memory_limit: int | None = None,
    memory_min_importance: float | None = None,
    image_resolver: ImageResolver = resolve_image_data_url,
) -> list[ChatCompletionMessage]:
    """Assemble the full prompt for one model call.

    Args:
        messages: Conversation history
        endpoint: Selected endpoint (its system_prompt is the fallback)
        system_prompt: Explicit system prompt, overrides endpoint.system_prompt
        chat_prompt: Per-chat instructions appended to the system prompt
        memory_store: Long-term memory to inject, if enabled
        memory_limit: Max memories injected (default 8)
        memory_min_importance: Importance cutoff (default 0.5)
        image_resolver: Async callable producing image URLs for attachments
    """
    context: list[ChatCompletionMessage] = []

    effective_system_prompt = system_prompt if system_prompt is not None else endpoint.system_prompt
    prompt_parts = [part.strip() for part in (effective_system_prompt, chat_prompt) if part and part.strip()]
    if prompt_parts:
        context.append(ChatCompletionMessage(role="system", content="\n\n".join(prompt_parts)))

    if memory_store is not None:
        memories = await memory_store.get_relevant_memories(
            limit=memory_limit if memory_limit is not None else MEMORY_DEFAULT_LIMIT,
            min_importance=memory_min_importance if memory_min_importance is not None else MEMORY_DEFAULT_MIN_IMPORTANCE,
        )
        if memories:
            context.append(ChatCompletionMessage(role="system", content=format_memory(memories)))

    context.extend(await build_conversation_messages(messages, image_resolver))
    return context
