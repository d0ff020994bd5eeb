"""
MCP Client Manager - per-server client cache and tool discovery.

Holds at most one live MCPClient per configured server. A cached client is
reused only while the server's identity (url, token) is unchanged; any
change replaces it, so a session id issued to the old endpoint or
credential is never sent to the new one.
"""

from __future__ import annotations

import asyncio

from collections.abc import Sequence
from typing import Any

import httpx

from core.constants import TOOL_NAME_DELIMITER
from integrations.mcp_client import MCPClient
from models.mcp_models import (
    FunctionDefinition,
    MCPResult,
    MCPServerDescriptor,
    MCPServerTool,
    OpenAIFunction,
    ServerError,
)
from utils.logger import logger


async def _close_client(client: MCPClient, server_name: str) -> None:
    """Close a single MCP client with error handling."""
    try:
        await client.close()
    except Exception as e:
        logger.warning(f"Error closing MCP client {server_name}: {e}")


class MCPClientCache:
    """Registry of MCP clients keyed by server id.

    Each entry remembers the identity it was created for; ``get_or_create``
    replaces the entry when the descriptor's identity differs.
    """

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        """
        Args:
            http_client: Optional shared httpx client handed to every MCPClient
        """
        self._clients: dict[str, tuple[tuple[str, str | None], MCPClient]] = {}
        self._http_client = http_client
        self._pending_close: set[asyncio.Task[None]] = set()

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, server_id: object) -> bool:
        return server_id in self._clients

    def _retire(self, client: MCPClient, server_name: str) -> None:
        """Close a replaced client in the background when a loop is running."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(_close_client(client, server_name))
        self._pending_close.add(task)
        task.add_done_callback(self._pending_close.discard)

    def get_or_create(self, server: MCPServerDescriptor) -> MCPClient:
        """Return the cached client for ``server``, creating or replacing it as needed."""
        cached = self._clients.get(server.id)
        if cached is not None:
            identity, client = cached
            if identity == server.identity:
                return client
            logger.info(f"MCP server {server.name} changed url/token, replacing client")
            self._retire(client, server.name)

        client = MCPClient(server, http_client=self._http_client)
        self._clients[server.id] = (server.identity, client)
        return client

    def get(self, server_id: str) -> MCPClient | None:
        cached = self._clients.get(server_id)
        return cached[1] if cached else None

    def clear(self, server_id: str | None = None) -> None:
        """Drop one cached client, or all of them."""
        if server_id is not None:
            cached = self._clients.pop(server_id, None)
            if cached:
                self._retire(cached[1], server_id)
            return
        for sid, (_, client) in self._clients.items():
            self._retire(client, sid)
        self._clients.clear()

    async def aclose(self) -> None:
        """Close every cached client and wait for background closes."""
        clients = [(sid, client) for sid, (_, client) in self._clients.items()]
        self._clients.clear()
        if clients:
            await asyncio.gather(*(_close_client(client, sid) for sid, client in clients))
        if self._pending_close:
            await asyncio.gather(*self._pending_close)

    async def _discover(self, server: MCPServerDescriptor) -> list[MCPServerTool]:
        client = self.get_or_create(server)
        await client.initialize()
        tools = await client.list_tools()
        return [
            MCPServerTool(**tool.model_dump(), server_id=server.id, server_name=server.name) for tool in tools
        ]

    async def get_tools_from_servers(
        self, servers: Sequence[MCPServerDescriptor]
    ) -> tuple[list[MCPServerTool], list[ServerError]]:
        """Discover tools on every enabled server concurrently.

        A failing server contributes an entry to the error list, and its
        cached client is dropped so the next attempt starts a fresh session.

        Returns:
            Tuple of (tools from all healthy servers, per-server errors)
        """
        enabled = [server for server in servers if server.enabled]
        if not enabled:
            return [], []

        results = await asyncio.gather(*(self._discover(server) for server in enabled), return_exceptions=True)

        tools: list[MCPServerTool] = []
        errors: list[ServerError] = []
        for server, result in zip(enabled, results, strict=True):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                self.clear(server.id)
                errors.append(ServerError(server_name=server.name, error=str(result) or "Failed to connect"))
                logger.warning(f"Tool discovery failed for {server.name}: {result}")
                continue
            tools.extend(result)

        logger.info(f"Discovered {len(tools)} MCP tools from {len(enabled) - len(errors)}/{len(enabled)} servers")
        return tools, errors

    async def execute_tool_call(
        self, server: MCPServerDescriptor, tool_name: str, arguments: dict[str, Any]
    ) -> MCPResult:
        """Invoke a tool, initializing the server session first if needed."""
        client = self.get_or_create(server)
        await client.initialize()
        return await client.call_tool(tool_name, arguments)


def mcp_tools_to_openai_functions(tools: Sequence[MCPServerTool]) -> list[OpenAIFunction]:
    """Build model-facing tool declarations (``serverId__toolName``, ``[Server] description``)."""
    return [
        OpenAIFunction(
            function=FunctionDefinition(
                name=tool.function_name,
                description=f"[{tool.server_name}] {tool.description or ''}".rstrip(),
                parameters=tool.inputSchema,
            )
        )
        for tool in tools
    ]


def parse_tool_call_name(function_name: str) -> tuple[str, str]:
    """Split ``serverId__toolName`` on the first delimiter only.

    Returns:
        Tuple of (server_id, tool_name); server_id is "" when no delimiter is present
    """
    server_id, sep, tool_name = function_name.partition(TOOL_NAME_DELIMITER)
    if not sep:
        return "", function_name
    return server_id, tool_name


__all__ = [
    "MCPClientCache",
    "mcp_tools_to_openai_functions",
    "parse_tool_call_name",
]
