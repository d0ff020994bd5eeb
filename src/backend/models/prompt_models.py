"""
Pydantic models for the system-prompt library loaded from prompts.chat.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from core.constants import PROMPT_CACHE_TTL_MS, PROMPT_CACHE_VERSION


class MCPPromptData(BaseModel):
    """A prompt as returned by the ``search_prompts`` tool."""

    model_config = ConfigDict(extra="ignore")

    id: str
    slug: str | None = None
    title: str
    description: str | None = None
    content: str
    type: str | None = None
    structuredFormat: str | None = None
    author: str | None = None
    category: str | None = None
    tags: list[str] | None = None
    votes: int | None = None
    createdAt: str | None = None


class SystemPrompt(BaseModel):
    """A prompt usable as the system prompt of a chat."""

    id: str
    title: str
    prompt: str
    category: str = "Uncategorized"
    tags: list[str] = Field(default_factory=list)
    description: str | None = None
    author: str | None = None
    votes: int | None = None
    created_at: str | None = None
    type: str | None = None
    slug: str | None = None

    @classmethod
    def from_mcp(cls, data: MCPPromptData) -> SystemPrompt:
        return cls(
            id=data.id,
            title=data.title,
            prompt=data.content,
            category=data.category or "Uncategorized",
            tags=data.tags or [],
            description=data.description,
            author=data.author,
            votes=data.votes,
            created_at=data.createdAt,
            type=data.type,
            slug=data.slug,
        )


class PromptCacheData(BaseModel):
    """On-disk prompt cache document."""

    version: int = PROMPT_CACHE_VERSION
    timestamp: int
    ttl: int = PROMPT_CACHE_TTL_MS
    source: Literal["mcp", "local"]
    prompts: list[SystemPrompt] = Field(default_factory=list)
