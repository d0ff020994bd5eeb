"""
Pydantic models for model selection and agent runs.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from models.chat_models import ToolChoice, Usage

Tier = Literal["cheap", "standard", "premium"]
Complexity = Literal["simple", "moderate", "complex"]
AgentMode = Literal["chat", "tool"]

#: Ordering used to compare tiers (cheapest first).
TIER_ORDER: tuple[Tier, ...] = ("cheap", "standard", "premium")


class ModelCapabilities(BaseModel):
    """What a model can do."""

    model_config = ConfigDict(frozen=True)

    supports_vision: bool = False
    supports_tools: bool = True
    supports_audio: bool = False
    supports_streaming: bool = True
    max_context_tokens: int | None = None


class ModelCatalogEntry(BaseModel):
    """A registered (provider, model) pair.

    ``tier`` is optional; when omitted the registry derives it from the
    built-in tier table.
    """

    provider_id: str
    model: str
    capabilities: ModelCapabilities = Field(default_factory=ModelCapabilities)
    priority: int = 0
    tier: Tier | None = None


class AgentDecision(BaseModel):
    """Resolved model and tool policy for one request."""

    model: str
    tool_choice: ToolChoice = "none"
    mode: AgentMode = "chat"
    capabilities: ModelCapabilities = Field(default_factory=ModelCapabilities)
    reason: str | None = None
    complexity: Complexity | None = None


class AgentState(str, Enum):
    """Agent loop states."""

    IDLE = "IDLE"
    RECEIVE_INPUT = "RECEIVE_INPUT"
    BUILD_CONTEXT = "BUILD_CONTEXT"
    THINK = "THINK"
    DECIDE = "DECIDE"
    ACT = "ACT"
    OBSERVE = "OBSERVE"
    UPDATE_STATE = "UPDATE_STATE"


class MemorySettings(BaseModel):
    """Per-run memory behaviour (mirrors the user's settings screen)."""

    enabled: bool = True
    auto_save: bool = True
    auto_summary: bool = False
    limit: int = 8
    min_importance: float = Field(default=0.5, ge=0.0, le=1.0)
    summary_ttl_ms: int = 30 * 24 * 60 * 60 * 1000


class AgentRunResult(BaseModel):
    """Outcome of one agent turn."""

    content: str = ""
    decision: AgentDecision | None = None
    depth: int = 0
    usage: Usage | None = None
    trace_id: str | None = None
    queued: bool = False
    queue_id: str | None = None
