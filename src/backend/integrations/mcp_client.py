"""HTTP MCP Client for remote MCP servers.

Speaks JSON-RPC 2.0 over HTTP POST (the "streamable HTTP" transport). A
server may answer with a plain JSON envelope or with an SSE-framed body;
both are decoded here. The session id a server assigns on ``initialize`` is
echoed on every later request until the client is discarded.
"""

from __future__ import annotations

import json
import time

from typing import Any

import httpx

from core.constants import (
    MCP_ACCEPT_HEADER,
    MCP_PROTOCOL_VERSION,
    MCP_SESSION_HEADER,
    MCP_SESSION_REQUEST_HEADER,
    SSE_CONTENT_TYPE,
    SSE_DATA_PREFIX,
    SSE_DONE_SENTINEL,
    get_settings,
)
from models.error_models import MCPProtocolError, MCPTransportError
from models.mcp_models import (
    JSONRPCRequest,
    JSONRPCResponse,
    MCPResult,
    MCPServerDescriptor,
    MCPTool,
)
from utils.client_factory import create_http_client
from utils.logger import logger


def decode_sse_envelope(body: str, request_id: int | str) -> JSONRPCResponse | None:
    """Find the envelope answering ``request_id`` in an SSE-framed body.

    Lines may or may not carry the ``data: `` prefix. Unparseable lines, the
    ``[DONE]`` sentinel and envelopes for other ids are skipped; when the same
    id appears more than once, the last one wins.
    """
    match: JSONRPCResponse | None = None
    for raw_line in body.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith(SSE_DATA_PREFIX.strip()):
            line = line[len(SSE_DATA_PREFIX.strip()) :].lstrip()
        if line == SSE_DONE_SENTINEL:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(data, dict) or data.get("id") != request_id:
            continue
        match = JSONRPCResponse.model_validate(data)
    return match


def is_sse_body(body: str, content_type: str = "") -> bool:
    """True when the body is SSE-framed: declared as such or carrying a ``data:`` line."""
    if SSE_CONTENT_TYPE in content_type or "\n" in body:
        return True
    return body.lstrip().startswith(SSE_DATA_PREFIX.strip())


class MCPClient:
    """MCP client using the HTTP POST transport.

    Requests are issued sequentially; each call awaits its response before
    returning, so the session id captured from one response is always in
    place for the next request.
    """

    def __init__(self, server: MCPServerDescriptor, http_client: httpx.AsyncClient | None = None):
        """Initialize HTTP MCP client.

        Args:
            server: Server descriptor (url, optional bearer token)
            http_client: Shared httpx client; one is created and owned otherwise
        """
        self.server = server
        self.server_name = server.name
        self._http = http_client
        self._owns_http = http_client is None
        self._session_id: str | None = None
        self._initialized = False
        self._init_data: dict[str, Any] | None = None
        self._last_id = 0
        self.tools: list[MCPTool] | None = None

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = create_http_client()
        return self._http

    def _next_id(self) -> int:
        """Time-derived request id, bumped when two calls land in the same millisecond."""
        candidate = int(time.time() * 1000)
        if candidate <= self._last_id:
            candidate = self._last_id + 1
        self._last_id = candidate
        return candidate

    def _build_headers(self, method: str) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": MCP_ACCEPT_HEADER,
        }
        if self.server.token:
            headers["Authorization"] = f"Bearer {self.server.token}"
        if self._session_id and method != "initialize":
            headers[MCP_SESSION_REQUEST_HEADER] = self._session_id
        return headers

    async def _post(self, request: JSONRPCRequest) -> httpx.Response:
        try:
            response = await self._client().post(
                self.server.url,
                headers=self._build_headers(request.method),
                json=request.to_payload(),
                timeout=get_settings().mcp_request_timeout,
            )
        except httpx.HTTPError as e:
            raise MCPTransportError(
                f"MCP request to {self.server_name} failed: {e}", server_name=self.server_name, cause=e
            ) from e

        new_session_id = response.headers.get(MCP_SESSION_HEADER)
        if new_session_id:
            self._session_id = new_session_id
        return response

    async def _send_request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Send a JSON-RPC request and return its ``result``.

        Returns:
            The decoded result, or None for an empty body.

        Raises:
            MCPTransportError: Network failure or non-2xx status
            MCPProtocolError: Error envelope or undecodable body
        """
        request = JSONRPCRequest(id=self._next_id(), method=method, params=params)
        response = await self._post(request)

        if not response.is_success:
            logger.error(f"MCP {method} failed with status {response.status_code}: {response.text}")
            raise MCPTransportError(
                f"MCP server returned {response.status_code}: {response.text}",
                server_name=self.server_name,
                status_code=response.status_code,
            )

        body = response.text
        if not body:
            return None

        envelope: JSONRPCResponse | None = None
        if is_sse_body(body, response.headers.get("content-type", "")):
            envelope = decode_sse_envelope(body, request.id)  # type: ignore[arg-type]

        if envelope is None:
            try:
                envelope = JSONRPCResponse.model_validate(json.loads(body))
            except (json.JSONDecodeError, ValueError) as e:
                raise MCPProtocolError(
                    f"MCP error: invalid response from {self.server_name}", server_name=self.server_name, cause=e
                ) from e

        if envelope.error is not None:
            raise MCPProtocolError(
                f"MCP error: {envelope.error.message}",
                server_name=self.server_name,
                rpc_code=envelope.error.code,
            )
        return envelope.result

    async def _send_notification(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Fire-and-forget notification; failures are logged, never raised."""
        request = JSONRPCRequest(method=method, params=params)
        try:
            response = await self._post(request)
            if not response.is_success:
                logger.warning(f"{self.server_name}: notification {method} returned {response.status_code}")
        except MCPTransportError as e:
            logger.warning(f"{self.server_name}: notification {method} failed: {e}")

    async def initialize(self) -> dict[str, Any]:
        """Perform the initialize handshake (cached after the first success)."""
        if self._initialized and self._init_data is not None:
            return self._init_data

        settings = get_settings()
        result = await self._send_request(
            "initialize",
            {
                "protocolVersion": MCP_PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": settings.client_name, "version": settings.client_version},
            },
        )
        logger.info(f"{self.server_name}: Initialized successfully")

        await self._send_notification("notifications/initialized")

        self._initialized = True
        self._init_data = result if isinstance(result, dict) else {}
        return self._init_data

    async def list_tools(self) -> list[MCPTool]:
        """List available tools from MCP server."""
        result = await self._send_request("tools/list")
        tools_data = (result or {}).get("tools", []) if isinstance(result, dict) else []
        self.tools = [MCPTool.model_validate(t) for t in tools_data]
        return self.tools

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> MCPResult:
        """Call a tool on the MCP server. Errors propagate to the caller."""
        result = await self._send_request("tools/call", {"name": tool_name, "arguments": arguments})
        return MCPResult.model_validate(result)

    async def list_resources(self) -> list[dict[str, Any]]:
        """List resources; servers without the capability yield an empty list."""
        try:
            result = await self._send_request("resources/list")
        except Exception as e:
            logger.debug(f"{self.server_name}: resources/list unavailable: {e}")
            return []
        return list((result or {}).get("resources", [])) if isinstance(result, dict) else []

    async def read_resource(self, uri: str) -> Any:
        """Read one resource. Errors propagate to the caller."""
        return await self._send_request("resources/read", {"uri": uri})

    async def list_prompts(self) -> list[dict[str, Any]]:
        """List prompts; servers without the capability yield an empty list."""
        try:
            result = await self._send_request("prompts/list")
        except Exception as e:
            logger.debug(f"{self.server_name}: prompts/list unavailable: {e}")
            return []
        return list((result or {}).get("prompts", [])) if isinstance(result, dict) else []

    async def close(self) -> None:
        """Forget the session and release the HTTP client if this instance owns it."""
        self._initialized = False
        self._init_data = None
        self._session_id = None
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None
