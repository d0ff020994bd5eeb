"""
System-prompt library backed by the prompts.chat MCP server, plus a local
JSON cache so the library is available offline.
"""

from __future__ import annotations

import json
import time

from collections.abc import Sequence
from pathlib import Path
from typing import Literal

from pydantic import ValidationError

from core.constants import (
    PROMPT_CACHE_TTL_MS,
    PROMPT_CACHE_VERSION,
    PROMPTS_CHAT_MAX_LIMIT,
    PROMPTS_CHAT_SERVER_ID,
    PROMPTS_CHAT_URL,
    get_settings,
)
from integrations.mcp_manager import MCPClientCache
from models.mcp_models import MCPContentItem, MCPServerDescriptor
from models.prompt_models import MCPPromptData, PromptCacheData, SystemPrompt
from utils.json_store import JSONStoreError, read_json, remove_json, write_json
from utils.logger import logger

SEARCH_PROMPTS_TOOL = "search_prompts"


def _now_ms() -> int:
    return int(time.time() * 1000)


def find_prompts_chat_server(servers: Sequence[MCPServerDescriptor]) -> MCPServerDescriptor | None:
    """The configured prompts.chat server, matched by url or well-known id."""
    return next(
        (server for server in servers if server.url == PROMPTS_CHAT_URL or server.id == PROMPTS_CHAT_SERVER_ID),
        None,
    )


async def load_prompts_from_mcp(
    servers: Sequence[MCPServerDescriptor],
    limit: int = 1000,
    client_cache: MCPClientCache | None = None,
) -> list[SystemPrompt]:
    """Fetch prompts through the ``search_prompts`` tool.

    Returns an empty list when the server is missing or disabled, the tool
    reports an error, or the result carries no text. Transport and protocol
    errors propagate.
    """
    server = find_prompts_chat_server(servers)
    if server is None or not server.enabled:
        return []

    cache = client_cache or MCPClientCache()
    try:
        result = await cache.execute_tool_call(
            server,
            SEARCH_PROMPTS_TOOL,
            {"query": "", "limit": min(limit, PROMPTS_CHAT_MAX_LIMIT)},
        )
    except Exception as e:
        logger.error(f"Failed to load prompts from MCP: {e}")
        raise
    finally:
        if client_cache is None:
            await cache.aclose()

    if result.isError:
        logger.error(f"MCP {SEARCH_PROMPTS_TOOL} returned error", server_name=server.name)
        return []

    text_item = next(
        (item for item in result.content if isinstance(item, MCPContentItem) and item.type == "text"), None
    )
    if text_item is None or not text_item.text:
        logger.warning(f"MCP {SEARCH_PROMPTS_TOOL} returned no text content")
        return []

    payload = json.loads(text_item.text)
    raw_prompts = payload.get("prompts") or [] if isinstance(payload, dict) else []
    return [SystemPrompt.from_mcp(MCPPromptData.model_validate(raw)) for raw in raw_prompts]


class PromptCache:
    """Versioned on-disk cache of the prompt library."""

    def __init__(self, path: Path | None = None):
        self.path = path or get_settings().prompt_cache_path

    async def get(self) -> PromptCacheData | None:
        """Return the cached document; corrupt or outdated caches are discarded."""
        try:
            raw = await read_json(self.path)
            if raw is None:
                return None
            cache = PromptCacheData.model_validate(raw)
        except (JSONStoreError, ValidationError) as e:
            logger.warning(f"Failed to read prompt cache: {e}")
            await self.clear()
            return None

        if cache.version != PROMPT_CACHE_VERSION:
            await self.clear()
            return None
        return cache

    async def set(self, prompts: Sequence[SystemPrompt], source: Literal["mcp", "local"]) -> PromptCacheData:
        cache = PromptCacheData(
            version=PROMPT_CACHE_VERSION,
            timestamp=_now_ms(),
            ttl=PROMPT_CACHE_TTL_MS,
            source=source,
            prompts=list(prompts),
        )
        try:
            await write_json(self.path, cache.model_dump(mode="json"))
        except OSError as e:
            logger.error(f"Failed to save prompt cache: {e}")
        return cache

    async def clear(self) -> None:
        try:
            await remove_json(self.path)
        except OSError as e:
            logger.warning(f"Failed to clear prompt cache: {e}")

    @staticmethod
    def is_cache_valid(cache: PromptCacheData | None) -> bool:
        """A cache is usable while it holds prompts and has not outlived its TTL."""
        if cache is None or not cache.prompts:
            return False
        return _now_ms() < cache.timestamp + cache.ttl

    @staticmethod
    def get_cache_age(cache: PromptCacheData | None) -> int | None:
        if cache is None:
            return None
        return _now_ms() - cache.timestamp
