"""
Chat Relay - Agent orchestration for OpenAI-compatible chat endpoints
=====================================================================

Drives a bounded tool-calling loop between a language model and remote MCP
tool servers.

Key Features:
    - **MCP Client**: JSON-RPC over HTTP with SSE decoding and session tracking
    - **Streaming Driver**: Incremental text and tool-call assembly
    - **Model Selection**: Capability matching and complexity-based auto routing
    - **Long-term Memory**: Importance-ranked memories with TTL
    - **Offline Queue**: Turns that failed on the network are replayed later
    - **Structured Logging**: JSON logs with rotation and trace correlation

Modules:
    core: Configuration, providers, model selection, agent loop, stores
    integrations: MCP client and cache, tool registry, prompt library, chat driver
    models: Pydantic models for messages, tools, decisions and stores
    utils: Logging, HTTP client factory, tracing, JSON persistence
"""
