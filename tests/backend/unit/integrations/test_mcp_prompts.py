"""Tests for the prompts.chat prompt library and its cache."""

from __future__ import annotations

import json

from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from integrations.mcp_manager import MCPClientCache
from integrations.mcp_prompts import PromptCache, find_prompts_chat_server, load_prompts_from_mcp
from models.error_models import MCPTransportError
from models.mcp_models import MCPContentItem, MCPResult, MCPServerDescriptor
from models.prompt_models import PromptCacheData, SystemPrompt

PROMPTS_SERVER = MCPServerDescriptor(id="prompts-chat-default", name="prompts.chat", url="https://prompts.chat/api/mcp")


def _cache_with_result(result: MCPResult | Exception) -> MagicMock:
    cache = MagicMock(spec=MCPClientCache)
    if isinstance(result, Exception):
        cache.execute_tool_call = AsyncMock(side_effect=result)
    else:
        cache.execute_tool_call = AsyncMock(return_value=result)
    return cache


class TestFindPromptsChatServer:
    """Tests for find_prompts_chat_server."""

    def test_match_by_url(self) -> None:
        """Test the server is found by its well-known url."""
        server = MCPServerDescriptor(id="custom", name="P", url="https://prompts.chat/api/mcp")

        assert find_prompts_chat_server([server]) is server

    def test_match_by_id(self) -> None:
        """Test the server is found by its well-known id."""
        server = MCPServerDescriptor(id="prompts-chat-default", name="P", url="https://mirror.example.com")

        assert find_prompts_chat_server([server]) is server

    def test_no_match(self) -> None:
        """Test other servers are not matched."""
        server = MCPServerDescriptor(id="x", name="X", url="https://x.example.com")

        assert find_prompts_chat_server([server]) is None


class TestLoadPromptsFromMCP:
    """Tests for load_prompts_from_mcp."""

    @pytest.mark.asyncio
    async def test_maps_prompts_and_caps_limit(self) -> None:
        """Test prompts are mapped and the limit is capped at 50."""
        payload = {
            "prompts": [
                {"id": "1", "title": "Linux Terminal", "content": "Act as a terminal", "tags": ["dev"]},
                {"id": "2", "title": "Poet", "content": "Write poems", "category": "Writing"},
            ]
        }
        cache = _cache_with_result(MCPResult(content=[MCPContentItem(type="text", text=json.dumps(payload))]))

        prompts = await load_prompts_from_mcp([PROMPTS_SERVER], limit=1000, client_cache=cache)

        assert [p.title for p in prompts] == ["Linux Terminal", "Poet"]
        assert prompts[0].prompt == "Act as a terminal"
        assert prompts[0].category == "Uncategorized"
        assert prompts[1].category == "Writing"
        cache.execute_tool_call.assert_awaited_once_with(PROMPTS_SERVER, "search_prompts", {"query": "", "limit": 50})

    @pytest.mark.asyncio
    async def test_missing_or_disabled_server(self) -> None:
        """Test nothing is loaded without an enabled prompts server."""
        cache = _cache_with_result(MCPResult())

        assert await load_prompts_from_mcp([], client_cache=cache) == []
        assert (
            await load_prompts_from_mcp([PROMPTS_SERVER.model_copy(update={"enabled": False})], client_cache=cache)
            == []
        )
        cache.execute_tool_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_error_result_returns_empty(self) -> None:
        """Test an isError result yields no prompts."""
        cache = _cache_with_result(MCPResult(content=[MCPContentItem(type="text", text="boom")], isError=True))

        assert await load_prompts_from_mcp([PROMPTS_SERVER], client_cache=cache) == []

    @pytest.mark.asyncio
    async def test_no_text_content_returns_empty(self) -> None:
        """Test a result without text yields no prompts."""
        cache = _cache_with_result(MCPResult(content=[MCPContentItem(type="image", data="AAA")]))

        assert await load_prompts_from_mcp([PROMPTS_SERVER], client_cache=cache) == []

    @pytest.mark.asyncio
    async def test_transport_errors_propagate(self) -> None:
        """Test network failures are raised to the caller."""
        cache = _cache_with_result(MCPTransportError("down"))

        with pytest.raises(MCPTransportError):
            await load_prompts_from_mcp([PROMPTS_SERVER], client_cache=cache)


class TestPromptCache:
    """Tests for PromptCache."""

    @pytest.mark.asyncio
    async def test_set_then_get(self, tmp_path: Path) -> None:
        """Test a stored cache is read back and considered valid."""
        cache = PromptCache(tmp_path / "prompts.json")
        prompts = [SystemPrompt(id="1", title="T", prompt="P")]

        await cache.set(prompts, "mcp")
        loaded = await cache.get()

        assert loaded is not None
        assert loaded.source == "mcp"
        assert loaded.prompts[0].title == "T"
        assert PromptCache.is_cache_valid(loaded) is True
        age = PromptCache.get_cache_age(loaded)
        assert age is not None and age >= 0

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path: Path) -> None:
        """Test a missing cache file yields None."""
        assert await PromptCache(tmp_path / "none.json").get() is None

    @pytest.mark.asyncio
    async def test_wrong_version_is_cleared(self, tmp_path: Path) -> None:
        """Test an outdated cache version is discarded."""
        path = tmp_path / "prompts.json"
        path.write_text(json.dumps({"version": 2, "timestamp": 1, "ttl": 1, "source": "mcp", "prompts": []}))

        assert await PromptCache(path).get() is None
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_corrupt_file_is_cleared(self, tmp_path: Path) -> None:
        """Test a corrupt cache file is discarded."""
        path = tmp_path / "prompts.json"
        path.write_text("{broken")

        assert await PromptCache(path).get() is None
        assert not path.exists()

    def test_validity_rules(self) -> None:
        """Test empty and expired caches are invalid."""
        prompt = SystemPrompt(id="1", title="T", prompt="P")

        assert PromptCache.is_cache_valid(None) is False
        assert PromptCache.is_cache_valid(PromptCacheData(timestamp=10**13, source="mcp", prompts=[])) is False
        with patch("integrations.mcp_prompts._now_ms", return_value=10_000):
            expired = PromptCacheData(timestamp=0, ttl=5_000, source="mcp", prompts=[prompt])
            fresh = PromptCacheData(timestamp=9_000, ttl=5_000, source="local", prompts=[prompt])
            assert PromptCache.is_cache_valid(expired) is False
            assert PromptCache.is_cache_valid(fresh) is True
            assert PromptCache.get_cache_age(fresh) == 1_000
        assert PromptCache.get_cache_age(None) is None

    @pytest.mark.asyncio
    async def test_default_path_from_settings(self, mock_settings: Any) -> None:
        """Test the cache file defaults to the settings data directory."""
        assert PromptCache().path == mock_settings.prompt_cache_path
