"""
Pydantic models for MCP (Model Context Protocol).

These models provide type safety for:
- Server descriptors (MCPServerDescriptor)
- Tool definitions (MCPTool, MCPServerTool)
- Tool execution results (MCPResult, MCPContentItem)
- JSON-RPC envelopes (JSONRPCRequest, JSONRPCResponse)
- Model-facing function declarations (OpenAIFunction)
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from core.constants import JSONRPC_VERSION, TOOL_NAME_DELIMITER


class MCPServerDescriptor(BaseModel):
    """A configured MCP server.

    Identity for client-cache matching is ``(url, token)``; ``id`` is the
    stable key the server's tools are namespaced under.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    name: str
    url: str
    enabled: bool = True
    token: str | None = None

    @property
    def identity(self) -> tuple[str, str | None]:
        """Key deciding whether a cached client can be reused."""
        return (self.url, self.token or None)


class MCPTool(BaseModel):
    """Model for an MCP tool definition as returned by ``tools/list``."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str
    description: str | None = None
    inputSchema: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class MCPServerTool(MCPTool):
    """A discovered tool tagged with the server that provides it."""

    server_id: str
    server_name: str

    @property
    def function_name(self) -> str:
        """Name exposed to the model: ``serverId__toolName``."""
        return f"{self.server_id}{TOOL_NAME_DELIMITER}{self.name}"


class MCPContentItem(BaseModel):
    """One entry of a tool result's ``content`` array."""

    model_config = ConfigDict(extra="allow")

    type: str | None = None
    text: str | None = None
    data: str | None = None
    mimeType: str | None = None


class MCPResult(BaseModel):
    """Model for an MCP tool execution result."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    content: list[Annotated[MCPContentItem | Any, Field(union_mode="left_to_right")]] = Field(default_factory=list)
    isError: bool = False

    @model_validator(mode="before")
    @classmethod
    def _tolerate_loose_results(cls, data: Any) -> Any:
        """Accept null fields, a bare content value and non-object results."""
        if not isinstance(data, dict):
            return {"content": [] if data is None else [data]}
        data = dict(data)
        content = data.get("content")
        if content is None:
            data["content"] = []
        elif not isinstance(content, list):
            data["content"] = [content]
        if data.get("isError") is None:
            data["isError"] = False
        return data


class JSONRPCError(BaseModel):
    """JSON-RPC error object."""

    model_config = ConfigDict(extra="allow")

    code: int = 0
    message: str = "Unknown error"
    data: Any = None


class JSONRPCRequest(BaseModel):
    """Outgoing request or notification (notifications omit ``id``)."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: int | str | None = None
    method: str
    params: dict[str, Any] | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class JSONRPCResponse(BaseModel):
    """Incoming response envelope."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: str = JSONRPC_VERSION
    id: int | str | None = None
    result: Any = None
    error: JSONRPCError | None = None


class FunctionDefinition(BaseModel):
    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)


class OpenAIFunction(BaseModel):
    """Tool declaration sent to an OpenAI-compatible endpoint."""

    type: Literal["function"] = "function"
    function: FunctionDefinition


class ServerError(BaseModel):
    """A per-server discovery failure."""

    server_name: str
    error: str


LatencyClass = Literal["low", "medium", "high"]


class MCPToolRegistryEntry(BaseModel):
    """Tool metadata tracked across runs."""

    tool: MCPServerTool
    latency_class: LatencyClass = "medium"
    last_seen_at: int
    failure_count: int = 0


class MCPServersImport(BaseModel):
    """Result of importing a YAML server list."""

    servers: list[MCPServerDescriptor] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
