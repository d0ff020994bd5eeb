"""
Integrations Module - External System Integrations
===================================================

Clients for the remote systems the agent talks to: MCP tool servers and
OpenAI-compatible model endpoints.

Modules:
    mcp_client: JSON-RPC 2.0 over HTTP POST, with JSON and SSE response decoding
    mcp_manager: Per-server client cache, concurrent tool discovery and tool calls
    mcp_registry: Tool metadata (latency class, failures, last seen) across runs
    mcp_collections: YAML import and export of server lists
    mcp_prompts: System-prompt library from prompts.chat with a local cache
    openai_driver: Streaming ``/chat/completions`` driver

Key Components:

MCP Client Cache (mcp_manager.py):
    One live client per configured server:
    - Reused while the server's (url, token) identity is unchanged
    - Replaced (and the old session closed) when the identity changes
    - Dropped after a failed discovery so the next run starts fresh

Chat Driver (openai_driver.py):
    Incremental decoding of completion streams:
    - Cumulative text delivered to the caller's sink
    - Tool-call fragments merged by index
    - Plain JSON bodies handled for endpoints that ignore ``stream``

Example:
    Discovering tools:

        from integrations.mcp_manager import MCPClientCache, mcp_tools_to_openai_functions

        cache = MCPClientCache()
        tools, errors = await cache.get_tools_from_servers(servers)
        functions = mcp_tools_to_openai_functions(tools)

See Also:
    :mod:`core.agent`: The loop that uses these integrations
"""
