"""
Models Module - Pydantic Data Models
====================================

Typed data structures shared by the agent core and its integrations.

Modules:
    chat_models: Endpoint configuration, conversation and wire-format messages
    mcp_models: MCP server descriptors, tools, results and JSON-RPC envelopes
    agent_models: Model catalog entries, decisions and run results
    memory_models: Memory entries and offline-queue records
    prompt_models: System-prompt library entries and cache document
    error_models: Error codes, exception hierarchy and error payloads
"""
