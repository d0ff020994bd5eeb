"""
Core Application Layer - Agent Orchestration and Configuration
==============================================================

Provides the model-selection logic and the agent loop.

Modules:
    constants: Protocol constants, defaults and Pydantic settings validation
    providers: Static provider table, auth headers and base-URL resolution
    model_registry: Mutable (provider, model) catalog with tiers and capabilities
    decision_engine: Manual capability matching and auto-mode complexity routing
    context: Message-list construction (system prompt, memory, attachments)
    agent: The bounded tool-calling loop
    memory: JSON-backed long-term memory store
    offline_queue: JSON-backed retry queue for chat requests

Example:
    Running one turn:

        from core.agent import AgentCore

        agent = AgentCore(max_depth=5)
        result = await agent.run_chat(
            messages=messages,
            endpoint=endpoint,
            on_chunk=print,
            mcp_servers=servers,
            mcp_enabled=True,
        )

See Also:
    :mod:`integrations.mcp_client`: MCP JSON-RPC transport
    :mod:`integrations.openai_driver`: Streaming chat-completion driver
"""
