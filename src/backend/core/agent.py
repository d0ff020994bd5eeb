"""
Agent core - the bounded tool-calling loop for one chat turn.

State flow:
    IDLE -> RECEIVE_INPUT -> BUILD_CONTEXT -> THINK -> DECIDE -> ACT
    ACT with no tool calls -> IDLE
    ACT with tool calls -> OBSERVE -> UPDATE_STATE -> BUILD_CONTEXT

Each pass through UPDATE_STATE counts one tool iteration; reaching
``max_depth`` iterations aborts the turn with MaxToolDepthExceededError.
"""

from __future__ import annotations

import json
import re
import time

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from core.constants import (
    MEMORY_EXPLICIT_IMPORTANCE,
    MEMORY_EXPLICIT_MAX_CHARS,
    MEMORY_SUMMARY_IMPORTANCE,
    SUMMARY_ASSISTANT_MAX_CHARS,
    SUMMARY_MAX_MESSAGES,
    SUMMARY_MESSAGE_MAX_CHARS,
    SUMMARY_SYSTEM_PROMPT,
    get_settings,
)
from core.context import ImageResolver, build_agent_context, resolve_image_data_url
from core.decision_engine import decide_agent_action, get_latest_user_message
from core.memory import MemoryStore
from core.model_registry import ModelRegistry
from core.offline_queue import OfflineQueue
from integrations.mcp_manager import MCPClientCache, mcp_tools_to_openai_functions, parse_tool_call_name
from integrations.mcp_registry import MCPToolRegistry
from integrations.openai_driver import ChatDriver, ChunkCallback, OpenAICompatibleDriver, emit_chunk
from models.agent_models import AgentDecision, AgentRunResult, AgentState, MemorySettings
from models.chat_models import ChatCompletionMessage, ChatMessage, EndpointConfig, ToolCall, Usage
from models.error_models import TRANSPORT_ERRORS, AppException, ErrorCode, MaxToolDepthExceededError
from models.mcp_models import MCPContentItem, MCPResult, MCPServerDescriptor, MCPServerTool, OpenAIFunction
from models.memory_models import MemoryType, QueuedChatPayload
from utils.logger import logger
from utils.observability import log_agent_event, trace_scope

DecisionCallback = Callable[[AgentDecision], Any]

#: "remember ..." style requests stored verbatim as user memories.
EXPLICIT_MEMORY_PATTERNS: tuple[tuple[re.Pattern[str], MemoryType], ...] = (
    (re.compile(r"^\s*(please\s+)?remember( that)?[:\s]+", re.IGNORECASE), "user"),
    (re.compile(r"^\s*пожалуйста\s+запомни( что)?[:\s]+", re.IGNORECASE), "user"),
    (re.compile(r"^\s*запомни( что)?[:\s]+", re.IGNORECASE), "user"),
)


def format_tool_result(result: MCPResult) -> str:
    """Render a tool result as the text sent back to the model."""
    if not result.content:
        return "No result"
    if len(result.content) == 1:
        item = result.content[0]
        if isinstance(item, MCPContentItem):
            if item.type == "text" and item.text is not None:
                return item.text
            if item.type == "image":
                return f"[Image: {item.mimeType or 'image/png'}]"
    return json.dumps(result.model_dump(exclude_none=True), ensure_ascii=False)


def truncate_text(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return f"{text[:max_length].strip()}..."


def extract_explicit_memory(text: str) -> tuple[MemoryType, str] | None:
    """Detect an explicit "remember ..." request and return (type, content)."""
    for pattern, memory_type in EXPLICIT_MEMORY_PATTERNS:
        if pattern.search(text):
            content = pattern.sub("", text, count=1).strip()
            if not content:
                return None
            return memory_type, truncate_text(content, MEMORY_EXPLICIT_MAX_CHARS)
    return None


def _format_message_for_summary(message: ChatMessage) -> str:
    base = (message.content or "").strip()
    count = len(message.attachments)
    note = f" [{count} image{'s' if count > 1 else ''}]" if count else ""
    return f"{base}{note}".strip() or "[attachment]"


def build_summary_input(messages: Sequence[ChatMessage], assistant_message: str) -> str:
    lines = [
        f"{message.role}: {truncate_text(_format_message_for_summary(message), SUMMARY_MESSAGE_MAX_CHARS)}"
        for message in list(messages)[-SUMMARY_MAX_MESSAGES:]
    ]
    if assistant_message.strip():
        lines.append(f"assistant: {truncate_text(assistant_message.strip(), SUMMARY_ASSISTANT_MAX_CHARS)}")
    return "\n".join(lines)


def _merge_usage(total: Usage | None, latest: Usage | None) -> Usage | None:
    if latest is None:
        return total
    if total is None:
        return latest.model_copy()

    def add(a: int | None, b: int | None) -> int | None:
        if a is None and b is None:
            return None
        return (a or 0) + (b or 0)

    return Usage(
        prompt_tokens=add(total.prompt_tokens, latest.prompt_tokens),
        completion_tokens=add(total.completion_tokens, latest.completion_tokens),
        total_tokens=add(total.total_tokens, latest.total_tokens),
    )


def _parse_arguments(raw: str) -> dict[str, Any]:
    """Decode tool-call arguments; an empty string means no arguments.

    Raises:
        ValueError: If the arguments are not a JSON object
    """
    if not raw.strip():
        return {}
    args = json.loads(raw)
    if not isinstance(args, dict):
        raise ValueError(f"expected a JSON object, got {type(args).__name__}")
    return args


@dataclass
class _RunContext:
    """Mutable state of one run_chat() call."""

    raw_messages: Sequence[ChatMessage]
    chat_messages: list[ChatCompletionMessage] = field(default_factory=list)
    tools: list[OpenAIFunction] = field(default_factory=list)
    tools_by_name: dict[str, MCPServerTool] = field(default_factory=dict)
    pending_tool_calls: list[ToolCall] = field(default_factory=list)
    depth: int = 0
    context_built: bool = False
    tools_loaded: bool = False
    last_assistant_message: str | None = None
    decision: AgentDecision | None = None
    usage: Usage | None = None
    tool_names_used: list[str] = field(default_factory=list)


class AgentCore:
    """Runs chat turns against one model endpoint and a set of MCP servers.

    Collaborators (driver, catalogs, stores) are injected so callers and
    tests can share or isolate them; defaults come from settings.
    """

    def __init__(
        self,
        max_depth: int | None = None,
        driver: ChatDriver | None = None,
        registry: ModelRegistry | None = None,
        client_cache: MCPClientCache | None = None,
        tool_registry: MCPToolRegistry | None = None,
        memory_store: MemoryStore | None = None,
        offline_queue: OfflineQueue | None = None,
        image_resolver: ImageResolver = resolve_image_data_url,
        memory_enabled: bool | None = None,
        memory_auto_save: bool | None = None,
        memory_auto_summary: bool | None = None,
        memory_limit: int | None = None,
        memory_min_importance: float | None = None,
        memory_summary_ttl_ms: int | None = None,
    ):
        settings = get_settings()
        self.max_depth = max_depth if max_depth is not None else settings.agent_max_depth
        self.driver: ChatDriver = driver or OpenAICompatibleDriver()
        self.registry = registry if registry is not None else ModelRegistry()
        self.client_cache = client_cache if client_cache is not None else MCPClientCache()
        self.tool_registry = tool_registry if tool_registry is not None else MCPToolRegistry()
        self.offline_queue = offline_queue
        self.image_resolver = image_resolver

        self.memory_enabled = settings.memory_enabled if memory_enabled is None else memory_enabled
        self.memory_auto_save = settings.memory_auto_save if memory_auto_save is None else memory_auto_save
        self.memory_auto_summary = (
            settings.memory_auto_summary if memory_auto_summary is None else memory_auto_summary
        )
        self.memory_limit = settings.memory_limit if memory_limit is None else memory_limit
        self.memory_min_importance = (
            settings.memory_min_importance if memory_min_importance is None else memory_min_importance
        )
        self.memory_summary_ttl_ms = (
            settings.memory_summary_ttl_ms if memory_summary_ttl_ms is None else memory_summary_ttl_ms
        )
        self._memory_store = memory_store

        self.state = AgentState.IDLE

    @property
    def memory_store(self) -> MemoryStore:
        if self._memory_store is None:
            self._memory_store = MemoryStore()
        return self._memory_store

    def _transition(self, state: AgentState) -> None:
        logger.debug(f"Agent state {self.state.value} -> {state.value}")
        self.state = state

    async def run_chat(
        self,
        messages: Sequence[ChatMessage],
        endpoint: EndpointConfig,
        on_chunk: ChunkCallback,
        mcp_servers: Sequence[MCPServerDescriptor] | None = None,
        mcp_enabled: bool = False,
        system_prompt: str | None = None,
        chat_prompt: str | None = None,
        on_decision: DecisionCallback | None = None,
        queue_on_failure: bool = False,
        chat_id: str | None = None,
    ) -> AgentRunResult:
        """Run one chat turn to completion.

        Args:
            messages: Conversation history ending with the user's turn
            endpoint: Model endpoint (empty model selects auto mode)
            on_chunk: Sink receiving cumulative assistant text and tool status lines
            mcp_servers: Tool servers available to this turn
            mcp_enabled: Whether tools may be used at all
            system_prompt: Overrides endpoint.system_prompt
            chat_prompt: Per-chat instructions appended to the system prompt
            on_decision: Called once with the model decision
            queue_on_failure: Enqueue the turn on a transport error instead of raising
            chat_id: Chat identifier stored with a queued request

        Returns:
            AgentRunResult with the final text, decision, depth and usage

        Raises:
            MaxToolDepthExceededError: Tool iterations reached max_depth
            LLMError / MCPError: Endpoint failures that were not queued
        """
        servers = list(mcp_servers or [])
        with trace_scope(provider_id=endpoint.provider_id) as trace:
            started = time.monotonic()
            log_agent_event(
                "info",
                "run_started",
                {
                    "trace_id": trace.trace_id,
                    "provider_id": endpoint.provider_id,
                    "model": endpoint.model or "auto",
                    "message_count": len(messages),
                    "mcp_enabled": mcp_enabled,
                    "server_count": len(servers),
                },
            )
            try:
                context = await self._run_loop(
                    messages, endpoint, on_chunk, servers, mcp_enabled, system_prompt, chat_prompt, on_decision
                )
            except TRANSPORT_ERRORS as e:
                self._transition(AgentState.IDLE)
                if queue_on_failure and self.offline_queue is not None:
                    queued = await self.offline_queue.enqueue(
                        QueuedChatPayload(
                            chat_id=chat_id,
                            messages=list(messages),
                            endpoint=endpoint,
                            mcp_servers=servers,
                            mcp_enabled=mcp_enabled,
                            system_prompt=system_prompt,
                            chat_prompt=chat_prompt,
                            memory_settings=self.memory_settings,
                        )
                    )
                    log_agent_event(
                        "warning",
                        "run_queued",
                        {"trace_id": trace.trace_id, "queue_id": queued.id, "error": str(e)},
                    )
                    return AgentRunResult(trace_id=trace.trace_id, queued=True, queue_id=queued.id)
                log_agent_event("error", "run_failed", {"trace_id": trace.trace_id, "error": str(e)})
                raise
            except Exception as e:
                self._transition(AgentState.IDLE)
                log_agent_event("error", "run_failed", {"trace_id": trace.trace_id, "error": str(e)})
                raise

            if self.memory_enabled and context.last_assistant_message:
                await self._persist_memories(
                    messages, context.last_assistant_message, endpoint, context.decision
                )

            duration_ms = (time.monotonic() - started) * 1000
            latest = get_latest_user_message(messages)
            logger.log_conversation_turn(
                user_input=latest.content if latest else "",
                response=context.last_assistant_message or "",
                function_calls=context.tool_names_used,
                duration_ms=duration_ms,
                tokens_used=context.usage.total_tokens if context.usage else None,
                attachments_count=len(latest.attachments) if latest else 0,
                tool_names=sorted(set(context.tool_names_used)) or None,
            )
            log_agent_event(
                "info",
                "run_completed",
                {
                    "trace_id": trace.trace_id,
                    "depth": context.depth,
                    "model": context.decision.model if context.decision else None,
                    "duration_ms": round(duration_ms, 2),
                },
            )
            return AgentRunResult(
                content=context.last_assistant_message or "",
                decision=context.decision,
                depth=context.depth,
                usage=context.usage,
                trace_id=trace.trace_id,
            )

    @property
    def memory_settings(self) -> MemorySettings:
        return MemorySettings(
            enabled=self.memory_enabled,
            auto_save=self.memory_auto_save,
            auto_summary=self.memory_auto_summary,
            limit=self.memory_limit,
            min_importance=self.memory_min_importance,
            summary_ttl_ms=self.memory_summary_ttl_ms,
        )

    async def _run_loop(
        self,
        messages: Sequence[ChatMessage],
        endpoint: EndpointConfig,
        on_chunk: ChunkCallback,
        servers: list[MCPServerDescriptor],
        mcp_enabled: bool,
        system_prompt: str | None,
        chat_prompt: str | None,
        on_decision: DecisionCallback | None,
    ) -> _RunContext:
        context = _RunContext(raw_messages=messages)
        decision_emitted = False
        self._transition(AgentState.RECEIVE_INPUT)

        while self.state != AgentState.IDLE:
            if self.state == AgentState.RECEIVE_INPUT:
                self._transition(AgentState.BUILD_CONTEXT)

            elif self.state == AgentState.BUILD_CONTEXT:
                if not context.context_built:
                    context.chat_messages = await build_agent_context(
                        messages=messages,
                        endpoint=endpoint,
                        system_prompt=system_prompt,
                        chat_prompt=chat_prompt,
                        memory_store=self.memory_store if self.memory_enabled else None,
                        memory_limit=self.memory_limit,
                        memory_min_importance=self.memory_min_importance,
                        image_resolver=self.image_resolver,
                    )
                    context.context_built = True
                if not context.tools_loaded:
                    await self._load_tools(context, servers, mcp_enabled)
                    context.tools_loaded = True
                self._transition(AgentState.THINK)

            elif self.state == AgentState.THINK:
                self._transition(AgentState.DECIDE)

            elif self.state == AgentState.DECIDE:
                context.decision = decide_agent_action(
                    endpoint=endpoint,
                    messages=messages,
                    tools=context.tools,
                    mcp_enabled=mcp_enabled,
                    registry=self.registry,
                )
                if not decision_emitted:
                    decision_emitted = True
                    log_agent_event("info", "decision", context.decision.model_dump(exclude={"capabilities"}))
                    if on_decision is not None:
                        on_decision(context.decision)
                self._transition(AgentState.ACT)

            elif self.state == AgentState.ACT:
                if context.decision is None:
                    raise AppException(ErrorCode.INTERNAL_ERROR, "Agent reached ACT without a decision")
                decision_tools = context.tools if context.decision.tool_choice == "auto" else []
                completion = await self.driver.stream_chat(
                    endpoint=endpoint,
                    messages=context.chat_messages,
                    tools=decision_tools,
                    on_chunk=on_chunk,
                    decision=context.decision,
                )
                context.usage = _merge_usage(context.usage, completion.usage)

                if not completion.tool_calls:
                    context.last_assistant_message = completion.full_content or ""
                    self._transition(AgentState.IDLE)
                    continue

                context.chat_messages.append(
                    ChatCompletionMessage(
                        role="assistant",
                        content=completion.full_content or None,
                        tool_calls=completion.tool_calls,
                    )
                )
                context.pending_tool_calls = completion.tool_calls
                self._transition(AgentState.OBSERVE)

            elif self.state == AgentState.OBSERVE:
                await self._emit_tool_status(context.pending_tool_calls, on_chunk)
                await self._execute_tool_calls(context, servers)
                self._transition(AgentState.UPDATE_STATE)

            elif self.state == AgentState.UPDATE_STATE:
                context.depth += 1
                if context.depth >= self.max_depth:
                    logger.error(f"Tool call depth limit reached ({self.max_depth})")
                    raise MaxToolDepthExceededError(self.max_depth)
                self._transition(AgentState.BUILD_CONTEXT)

            else:
                self._transition(AgentState.IDLE)

        return context

    async def _load_tools(
        self, context: _RunContext, servers: list[MCPServerDescriptor], mcp_enabled: bool
    ) -> None:
        if not mcp_enabled:
            return
        enabled = [server for server in servers if server.enabled]
        if not enabled:
            return

        try:
            tools, errors = await self.client_cache.get_tools_from_servers(enabled)
        except Exception as e:
            logger.error(f"Failed to fetch MCP tools: {e}", exc_info=True)
            return

        if errors:
            logger.warning(
                "MCP server errors: " + "; ".join(f"{err.server_name}: {err.error}" for err in errors),
            )
        if tools:
            context.tools = mcp_tools_to_openai_functions(tools)
            context.tools_by_name = {tool.function_name: tool for tool in tools}
            self.tool_registry.register_tools(tools)

    async def _emit_tool_status(self, tool_calls: Sequence[ToolCall], on_chunk: ChunkCallback) -> None:
        names = [parse_tool_call_name(call.function.name)[1] for call in tool_calls]
        if len(names) == 1:
            status = f"[Using tool: {names[0]}...]"
        else:
            status = f"[Using tools: {', '.join(names)}...]"
        log_agent_event("info", "tool_calls", {"tools": names, "count": len(names)})
        await emit_chunk(on_chunk, status)

    async def _execute_tool_calls(self, context: _RunContext, servers: list[MCPServerDescriptor]) -> None:
        servers_by_id = {server.id: server for server in servers}

        for call in context.pending_tool_calls:
            function_name = call.function.name
            tool = context.tools_by_name.get(function_name)
            if tool is not None:
                server_id, tool_name = tool.server_id, tool.name
            else:
                server_id, tool_name = parse_tool_call_name(function_name)
            server = servers_by_id.get(server_id)
            args: dict[str, Any] = {}

            if tool is None:
                logger.warning(f"Model requested unknown tool {function_name}")
                result = f'Error: Unknown tool "{function_name}"'
            elif server is None or not server.enabled:
                result = f"Error: Server not found for tool {function_name}"
            else:
                try:
                    args = _parse_arguments(call.function.arguments)
                except ValueError as e:
                    result = f"Error executing tool: Invalid JSON arguments: {e}"
                else:
                    started = time.monotonic()
                    try:
                        tool_result = await self.client_cache.execute_tool_call(server, tool_name, args)
                        result = format_tool_result(tool_result)
                        self.tool_registry.record_tool_latency(
                            server_id, tool_name, (time.monotonic() - started) * 1000
                        )
                    except Exception as e:
                        logger.warning(f"Tool {function_name} failed: {e}")
                        self.tool_registry.mark_tool_failure(server_id, tool_name)
                        result = f"Error executing tool: {e}"

            logger.log_function_call(function_name, args, result)
            context.tool_names_used.append(tool_name)
            context.chat_messages.append(ChatCompletionMessage(role="tool", content=result, tool_call_id=call.id))

    async def _create_conversation_summary(
        self,
        messages: Sequence[ChatMessage],
        assistant_message: str,
        endpoint: EndpointConfig,
        decision: AgentDecision | None,
    ) -> str | None:
        if not assistant_message.strip() or len(messages) < 2:
            return None
        conversation = build_summary_input(messages, assistant_message)
        if not conversation.strip():
            return None

        summary_decision = decision.model_copy(update={"tool_choice": "none", "mode": "chat"}) if decision else None
        try:
            completion = await self.driver.stream_chat(
                endpoint=endpoint,
                messages=[
                    ChatCompletionMessage(role="system", content=SUMMARY_SYSTEM_PROMPT),
                    ChatCompletionMessage(role="user", content=f"Conversation:\n{conversation}"),
                ],
                tools=[],
                on_chunk=lambda _content: None,
                decision=summary_decision,
            )
        except Exception as e:
            logger.warning(f"Failed to summarize conversation for memory: {e}")
            return None

        summary = completion.full_content.strip()
        return truncate_text(summary, SUMMARY_ASSISTANT_MAX_CHARS) if summary else None

    async def _persist_memories(
        self,
        messages: Sequence[ChatMessage],
        assistant_message: str,
        endpoint: EndpointConfig,
        decision: AgentDecision | None,
    ) -> None:
        if self.memory_auto_save:
            latest = get_latest_user_message(messages)
            explicit = extract_explicit_memory(latest.content) if latest and latest.content else None
            if explicit is not None:
                memory_type, content = explicit
                try:
                    await self.memory_store.add_memory(
                        type=memory_type, content=content, importance=MEMORY_EXPLICIT_IMPORTANCE
                    )
                except Exception as e:
                    logger.warning(f"Failed to store explicit memory: {e}")

        if self.memory_auto_summary:
            summary = await self._create_conversation_summary(messages, assistant_message, endpoint, decision)
            if summary:
                try:
                    await self.memory_store.add_memory(
                        type="task",
                        content=summary,
                        importance=MEMORY_SUMMARY_IMPORTANCE,
                        ttl=self.memory_summary_ttl_ms,
                    )
                except Exception as e:
                    logger.warning(f"Failed to store summary memory: {e}")


async def run_agent_chat(
    messages: Sequence[ChatMessage],
    endpoint: EndpointConfig,
    on_chunk: ChunkCallback,
    mcp_servers: Sequence[MCPServerDescriptor] | None = None,
    mcp_enabled: bool = False,
    system_prompt: str | None = None,
    chat_prompt: str | None = None,
    memory_settings: MemorySettings | None = None,
    on_decision: DecisionCallback | None = None,
    **agent_kwargs: Any,
) -> AgentRunResult:
    """Build an AgentCore from memory settings and run a single turn."""
    if memory_settings is not None:
        agent_kwargs.update(
            memory_enabled=memory_settings.enabled,
            memory_auto_save=memory_settings.auto_save,
            memory_auto_summary=memory_settings.auto_summary,
            memory_limit=memory_settings.limit,
            memory_min_importance=memory_settings.min_importance,
            memory_summary_ttl_ms=memory_settings.summary_ttl_ms,
        )
    agent = AgentCore(**agent_kwargs)
    return await agent.run_chat(
        messages=messages,
        endpoint=endpoint,
        on_chunk=on_chunk,
        mcp_servers=mcp_servers,
        mcp_enabled=mcp_enabled,
        system_prompt=system_prompt,
        chat_prompt=chat_prompt,
        on_decision=on_decision,
    )
