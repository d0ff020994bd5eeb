"""
Pydantic models for the JSON-backed stores: long-term memory and the
offline request queue.

Timestamps and TTLs are epoch milliseconds so persisted files stay
interchangeable with the mobile client's storage.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from models.agent_models import MemorySettings
from models.chat_models import ChatMessage, EndpointConfig
from models.mcp_models import MCPServerDescriptor

MemoryType = Literal["user", "task", "fact", "system"]


class MemoryEntry(BaseModel):
    id: str
    type: MemoryType
    content: str
    importance: float = Field(ge=0.0, le=1.0)
    created_at: int
    last_accessed_at: int
    ttl: int | None = None

    def is_expired(self, now_ms: int) -> bool:
        """An entry with a TTL expires once ``now - created_at > ttl``."""
        if not self.ttl:
            return False
        return now_ms - self.created_at > self.ttl


class QueuedChatPayload(BaseModel):
    """Everything needed to replay a chat turn later."""

    chat_id: str | None = None
    messages: list[ChatMessage]
    endpoint: EndpointConfig
    mcp_servers: list[MCPServerDescriptor] = Field(default_factory=list)
    mcp_enabled: bool = False
    system_prompt: str | None = None
    chat_prompt: str | None = None
    memory_settings: MemorySettings | None = None


class QueuedChatRequest(BaseModel):
    id: str
    created_at: int
    attempts: int = 0
    last_error: str | None = None
    payload: QueuedChatPayload


class FlushResult(BaseModel):
    """Counts returned by OfflineQueue.flush()."""

    processed: int = 0
    failed: int = 0
    remaining: int = 0
