"""
MCP Tool Registry - tool metadata remembered across agent runs.

Tracks when each discovered tool was last seen, how often it failed and how
fast its last successful call was. Tools are listed in a stable order for
prompt building.
"""

from __future__ import annotations

import time

from collections.abc import Iterable, Sequence

from core.constants import TOOL_NAME_DELIMITER
from models.mcp_models import LatencyClass, MCPServerTool, MCPToolRegistryEntry
from utils.logger import logger

LATENCY_ORDER = ("low", "medium", "high")

DEFAULT_LATENCY_CLASS = "medium"

#: Upper bounds (ms) of the low and medium latency classes.
LOW_LATENCY_MAX_MS = 1000
MEDIUM_LATENCY_MAX_MS = 5000


def _tool_key(server_id: str, tool_name: str) -> str:
    return f"{server_id}{TOOL_NAME_DELIMITER}{tool_name}"


def _now_ms() -> int:
    return int(time.time() * 1000)


def classify_latency(elapsed_ms: float) -> LatencyClass:
    if elapsed_ms < LOW_LATENCY_MAX_MS:
        return "low"
    if elapsed_ms < MEDIUM_LATENCY_MAX_MS:
        return "medium"
    return "high"


class MCPToolRegistry:
    """Registry of discovered tools keyed by ``serverId__toolName``."""

    def __init__(self) -> None:
        self._entries: dict[str, MCPToolRegistryEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def register_tools(self, tools: Iterable[MCPServerTool]) -> None:
        """Record tools from a discovery pass.

        Existing entries keep their latency class and failure count; only the
        tool definition and ``last_seen_at`` are refreshed.
        """
        now = _now_ms()
        count = 0
        for tool in tools:
            key = _tool_key(tool.server_id, tool.name)
            existing = self._entries.get(key)
            self._entries[key] = MCPToolRegistryEntry(
                tool=tool,
                latency_class=existing.latency_class if existing else DEFAULT_LATENCY_CLASS,
                last_seen_at=now,
                failure_count=existing.failure_count if existing else 0,
            )
            count += 1
        if count:
            logger.debug(f"Registered {count} MCP tools ({len(self._entries)} total)")

    def mark_tool_failure(self, server_id: str, tool_name: str) -> None:
        """Bump the failure count of a known tool; unknown tools are ignored."""
        entry = self._entries.get(_tool_key(server_id, tool_name))
        if entry is None:
            return
        entry.failure_count += 1
        entry.last_seen_at = _now_ms()

    def record_tool_latency(self, server_id: str, tool_name: str, elapsed_ms: float) -> None:
        """Set the latency class of a known tool from its last successful call."""
        entry = self._entries.get(_tool_key(server_id, tool_name))
        if entry is None:
            return
        entry.latency_class = classify_latency(elapsed_ms)
        entry.last_seen_at = _now_ms()

    def get_registered_tools(self, server_ids: Sequence[str] | None = None) -> list[MCPToolRegistryEntry]:
        """Entries sorted by latency class, then server name, then tool name."""
        entries = list(self._entries.values())
        if server_ids is not None:
            entries = [entry for entry in entries if entry.tool.server_id in server_ids]
        return sorted(
            entries,
            key=lambda entry: (
                LATENCY_ORDER.index(entry.latency_class),
                entry.tool.server_name,
                entry.tool.name,
            ),
        )

    def clear(self) -> None:
        self._entries.clear()
