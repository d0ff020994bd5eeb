"""Shared test fixtures for the Chat Relay test suite.

This module provides common fixtures used across all test modules,
including settings mocks, HTTP fakes and a scripted chat driver.
"""

from __future__ import annotations

import json
import tempfile

from collections.abc import Callable, Generator, Sequence
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import httpx
import pytest

# ============================================================================
# EARLY INITIALIZATION: Runs before test collection
# ============================================================================


def _build_mock_settings(data_dir: Path) -> MagicMock:
    mock_settings = MagicMock()
    mock_settings.app_env = "test"
    mock_settings.debug = False
    mock_settings.http_request_logging = False
    mock_settings.enable_content_logging = False
    mock_settings.http_read_timeout = 600.0
    mock_settings.mcp_request_timeout = 30.0
    mock_settings.client_name = "Chat Relay"
    mock_settings.client_version = "1.0.0"
    mock_settings.agent_max_depth = 10
    mock_settings.memory_enabled = True
    mock_settings.memory_auto_save = True
    mock_settings.memory_auto_summary = False
    mock_settings.memory_limit = 8
    mock_settings.memory_min_importance = 0.5
    mock_settings.memory_summary_ttl_days = 30
    mock_settings.memory_summary_ttl_ms = 30 * 24 * 60 * 60 * 1000
    mock_settings.data_dir = data_dir
    mock_settings.memory_store_path = data_dir / "memory.json"
    mock_settings.offline_queue_path = data_dir / "offline_queue.json"
    mock_settings.prompt_cache_path = data_dir / "prompt_cache.json"
    return mock_settings


def pytest_configure(config: pytest.Config) -> None:
    """Configure settings mock before any test modules are imported.

    This hook runs before test collection, which is when module-level
    imports happen. Modules bind ``get_settings`` at import time, so the
    patch must be in place before they load.
    """
    mock_settings = _build_mock_settings(Path(tempfile.mkdtemp(prefix="chat-relay-tests-")))

    cfg: Any = config
    cfg._mock_settings = mock_settings

    patcher = patch("core.constants.get_settings", return_value=mock_settings)
    patcher.start()
    cfg._settings_patcher = patcher


def pytest_unconfigure(config: pytest.Config) -> None:
    """Clean up settings mock after all tests complete."""
    patcher = getattr(config, "_settings_patcher", None)
    if patcher:
        patcher.stop()


# ============================================================================
# Test Isolation: Settings Management
# ============================================================================


@pytest.fixture(autouse=True, scope="function")
def reset_settings_singleton() -> Generator[None, None, None]:
    """Reset settings singleton before and after each test."""
    from core import constants

    constants._settings_manager._instance = None
    yield
    constants._settings_manager._instance = None


@pytest.fixture
def mock_settings(request: pytest.FixtureRequest) -> MagicMock:
    """The settings object every module sees through get_settings()."""
    settings: MagicMock = request.config._mock_settings  # type: ignore[attr-defined]
    return settings


# ============================================================================
# Domain Fixtures
# ============================================================================


@pytest.fixture
def endpoint() -> Any:
    from models.chat_models import EndpointConfig

    return EndpointConfig(provider_id="openai", api_key="sk-test", model="gpt-4o")


@pytest.fixture
def auto_endpoint() -> Any:
    from models.chat_models import EndpointConfig

    return EndpointConfig(provider_id="openai", api_key="sk-test", model="")


@pytest.fixture
def mcp_server() -> Any:
    from models.mcp_models import MCPServerDescriptor

    return MCPServerDescriptor(id="srv1", name="Search", url="https://mcp.example.com/mcp", token="tok-1")


@pytest.fixture
def memory_store(tmp_path: Path) -> Any:
    from core.memory import MemoryStore

    return MemoryStore(tmp_path / "memory.json")


@pytest.fixture
def offline_queue(tmp_path: Path) -> Any:
    from core.offline_queue import OfflineQueue

    return OfflineQueue(tmp_path / "queue.json")


# ============================================================================
# HTTP Fakes
# ============================================================================


def jsonrpc_result(request: httpx.Request, result: Any, headers: dict[str, str] | None = None) -> httpx.Response:
    """JSON-RPC success envelope answering ``request``."""
    body = json.loads(request.content)
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body.get("id"), "result": result}, headers=headers)


class MCPServerFake:
    """In-memory MCP server for httpx.MockTransport.

    Records every request; ``tools`` and ``call_results`` drive responses.
    """

    def __init__(
        self,
        tools: list[dict[str, Any]] | None = None,
        call_results: dict[str, Any] | None = None,
        session_id: str | None = "sess-123",
    ) -> None:
        self.tools = tools or []
        self.call_results = call_results or {}
        self.session_id = session_id
        self.requests: list[httpx.Request] = []

    @property
    def methods(self) -> list[str]:
        return [json.loads(r.content)["method"] for r in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = json.loads(request.content)
        method = body["method"]

        if "id" not in body:
            return httpx.Response(202)
        if method == "initialize":
            headers = {"mcp-session-id": self.session_id} if self.session_id else None
            return jsonrpc_result(request, {"protocolVersion": "2024-11-05", "capabilities": {}}, headers)
        if method == "tools/list":
            return jsonrpc_result(request, {"tools": self.tools})
        if method == "tools/call":
            name = body["params"]["name"]
            result = self.call_results.get(name, {"content": [{"type": "text", "text": "ok"}]})
            if isinstance(result, Exception):
                raise result
            return jsonrpc_result(request, result)
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32601, "message": "Method not found"}},
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def mcp_fake() -> MCPServerFake:
    return MCPServerFake(
        tools=[
            {
                "name": "web_search",
                "description": "Search the web",
                "inputSchema": {"type": "object", "properties": {"query": {"type": "string"}}},
            }
        ]
    )


def sse_body(*events: dict[str, Any] | str) -> str:
    """Encode events as an SSE body terminated by ``data: [DONE]``."""
    lines = [f"data: {e if isinstance(e, str) else json.dumps(e)}" for e in events]
    lines.append("data: [DONE]")
    return "\n\n".join(lines) + "\n\n"


# ============================================================================
# Scripted Chat Driver
# ============================================================================


class FakeDriver:
    """ChatDriver returning scripted results in order (the last one repeats)."""

    def __init__(self, results: Sequence[Any] | Callable[..., Any]) -> None:
        self._results = results
        self.calls: list[dict[str, Any]] = []

    async def stream_chat(
        self,
        endpoint: Any,
        messages: Sequence[Any],
        tools: Sequence[Any],
        on_chunk: Callable[[str], Any],
        decision: Any = None,
    ) -> Any:
        self.calls.append(
            {"endpoint": endpoint, "messages": list(messages), "tools": list(tools), "decision": decision}
        )
        if callable(self._results):
            result = self._results(len(self.calls))
        else:
            result = self._results[min(len(self.calls), len(self._results)) - 1]
        if isinstance(result, Exception):
            raise result
        if result.full_content:
            on_chunk(result.full_content)
        return result


@pytest.fixture
def fake_driver_cls() -> type[FakeDriver]:
    return FakeDriver


@pytest.fixture
def mcp_fake_cls() -> type[MCPServerFake]:
    return MCPServerFake


@pytest.fixture
def sse() -> Callable[..., str]:
    return sse_body
