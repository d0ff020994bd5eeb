"""
Decision engine: picks the model and tool policy for a request.

Manual mode (endpoint names a model) keeps the user's choice unless it lacks a
required capability, in which case the best registered alternative is used.
Auto mode (empty model) classifies the latest user message and routes it to
the cheapest registered model whose tier covers the request's complexity.
"""

from __future__ import annotations

import re

from collections.abc import Sequence
from dataclasses import dataclass

from core.model_registry import (
    ModelRegistry,
    get_provider_default_capabilities,
    get_provider_default_model,
)
from models.agent_models import (
    TIER_ORDER,
    AgentDecision,
    Complexity,
    ModelCapabilities,
    ModelCatalogEntry,
    Tier,
)
from models.chat_models import ChatMessage, EndpointConfig
from models.mcp_models import OpenAIFunction

# ============================================================================
# Reason Codes
# ============================================================================

REASON_MANUAL = "manual_model_selected"
REASON_FALLBACK = "fallback_model_selected"
REASON_AUTO_PREFIX = "auto_selected_"
REASON_AUTO_FALLBACK = "auto_fallback_first_candidate"
REASON_PROVIDER_DEFAULT = "provider_default_model"
REASON_NO_MODELS = "no_models_available"

# ============================================================================
# Complexity Heuristics
# ============================================================================

#: Word count above which a message is at least moderate.
MODERATE_WORD_THRESHOLD = 30

#: Word count above which a message is complex.
COMPLEX_WORD_THRESHOLD = 120

#: Question marks suggesting a multi-part request.
MODERATE_QUESTION_THRESHOLD = 2
COMPLEX_QUESTION_THRESHOLD = 3

FENCED_CODE_RE = re.compile(r"```")

#: Phrasing that usually needs a strong model (English and Russian).
COMPLEX_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"\b(analy[sz]e|architect(ure)?|refactor|implement|optimi[sz]e|debug|prove|derive|"
        r"step[- ]by[- ]step|trade-?offs?|in[- ]depth|design a|algorithm)\b",
        re.IGNORECASE,
    ),
    re.compile(
        r"(проанализируй|анализ|архитектур|рефактор|реализуй|оптимизируй|отлад|докажи|выведи|"
        r"пошагово|подробно|алгоритм|спроектируй)",
        re.IGNORECASE,
    ),
)

#: Phrasing for everyday tasks beyond small talk (English and Russian).
MODERATE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"\b(explain|summari[sz]e|describe|translate|compare|write|rewrite|list|"
        r"how (do|does|can|to)|why|what is the difference)\b",
        re.IGNORECASE,
    ),
    re.compile(
        r"(объясни|кратко|перескажи|опиши|переведи|сравни|напиши|перепиши|перечисли|"
        r"как сделать|почему|в чем разница|чем отличается)",
        re.IGNORECASE,
    ),
)

#: Minimum tier able to serve each complexity level.
COMPLEXITY_TIERS: dict[Complexity, Tier] = {
    "simple": "cheap",
    "moderate": "standard",
    "complex": "premium",
}


@dataclass(frozen=True, slots=True)
class Requirements:
    """Capabilities a request needs from the selected model."""

    needs_vision: bool
    needs_tools: bool
    needs_streaming: bool = True

    def satisfied_by(self, capabilities: ModelCapabilities) -> bool:
        if self.needs_vision and not capabilities.supports_vision:
            return False
        if self.needs_tools and not capabilities.supports_tools:
            return False
        return not (self.needs_streaming and not capabilities.supports_streaming)


def has_image_attachments(messages: Sequence[ChatMessage]) -> bool:
    return any(message.role == "user" and message.has_images for message in messages)


def get_latest_user_message(messages: Sequence[ChatMessage]) -> ChatMessage | None:
    for message in reversed(messages):
        if message.role == "user":
            return message
    return None


def classify_complexity(text: str) -> Complexity:
    """Bucket a user request into simple / moderate / complex.

    Signals: fenced code, complex/moderate phrasing (EN and RU), word count
    and the number of questions asked.
    """
    stripped = text.strip()
    if not stripped:
        return "simple"

    word_count = len(stripped.split())
    question_count = stripped.count("?")

    if FENCED_CODE_RE.search(stripped):
        return "complex"
    if word_count > COMPLEX_WORD_THRESHOLD or question_count >= COMPLEX_QUESTION_THRESHOLD:
        return "complex"
    if any(pattern.search(stripped) for pattern in COMPLEX_PATTERNS):
        return "complex"

    if word_count > MODERATE_WORD_THRESHOLD or question_count >= MODERATE_QUESTION_THRESHOLD:
        return "moderate"
    if any(pattern.search(stripped) for pattern in MODERATE_PATTERNS):
        return "moderate"

    return "simple"


def _tier_rank(tier: Tier) -> int:
    return TIER_ORDER.index(tier)


def _build_decision(
    entry: ModelCatalogEntry,
    requirements: Requirements,
    reason: str,
    complexity: Complexity | None = None,
) -> AgentDecision:
    can_use_tools = requirements.needs_tools and entry.capabilities.supports_tools
    tool_choice = "auto" if can_use_tools else "none"
    return AgentDecision(
        model=entry.model,
        tool_choice=tool_choice,
        mode="tool" if tool_choice == "auto" else "chat",
        capabilities=entry.capabilities,
        reason=reason,
        complexity=complexity,
    )


def _decide_manual(
    endpoint: EndpointConfig,
    registry: ModelRegistry,
    requirements: Requirements,
) -> AgentDecision:
    candidates = registry.get_candidates(endpoint.provider_id)
    endpoint_candidate = next((c for c in candidates if c.model == endpoint.model), None)
    if endpoint_candidate is None:
        endpoint_candidate = ModelCatalogEntry(
            provider_id=endpoint.provider_id,
            model=endpoint.model,
            capabilities=get_provider_default_capabilities(endpoint.provider_id),
            priority=-1,
        )

    ordered = [endpoint_candidate, *(c for c in candidates if c is not endpoint_candidate)]
    selected = next((c for c in ordered if requirements.satisfied_by(c.capabilities)), endpoint_candidate)

    reason = REASON_FALLBACK if selected is not endpoint_candidate else REASON_MANUAL
    return _build_decision(selected, requirements, reason)


def _decide_auto(
    endpoint: EndpointConfig,
    messages: Sequence[ChatMessage],
    registry: ModelRegistry,
    requirements: Requirements,
) -> AgentDecision:
    latest = get_latest_user_message(messages)
    complexity = classify_complexity(latest.content if latest else "")
    required_rank = _tier_rank(COMPLEXITY_TIERS[complexity])

    candidates = registry.get_candidates(endpoint.provider_id)
    if candidates:
        qualifying = [
            c
            for c in candidates
            if _tier_rank(registry.tier_of(c)) >= required_rank and requirements.satisfied_by(c.capabilities)
        ]
        if qualifying:
            # min() keeps the first (highest-priority) candidate among equal tiers
            selected = min(qualifying, key=lambda c: _tier_rank(registry.tier_of(c)))
            return _build_decision(selected, requirements, f"{REASON_AUTO_PREFIX}{complexity}", complexity)
        return _build_decision(candidates[0], requirements, REASON_AUTO_FALLBACK, complexity)

    default_model = get_provider_default_model(endpoint.provider_id, endpoint.folder_id)
    if default_model:
        entry = ModelCatalogEntry(
            provider_id=endpoint.provider_id,
            model=default_model,
            capabilities=get_provider_default_capabilities(endpoint.provider_id),
        )
        return _build_decision(entry, requirements, REASON_PROVIDER_DEFAULT, complexity)

    return AgentDecision(
        model="",
        tool_choice="none",
        mode="chat",
        capabilities=get_provider_default_capabilities(endpoint.provider_id),
        reason=REASON_NO_MODELS,
        complexity=complexity,
    )


def decide_agent_action(
    endpoint: EndpointConfig,
    messages: Sequence[ChatMessage],
    tools: Sequence[OpenAIFunction],
    mcp_enabled: bool,
    registry: ModelRegistry,
) -> AgentDecision:
    """Resolve the model and tool policy for a request.

    Args:
        endpoint: User-selected endpoint (empty model selects auto mode)
        messages: Conversation so far
        tools: Tool declarations available for this turn
        mcp_enabled: Whether the user enabled tool servers
        registry: Model catalog to select from

    Returns:
        AgentDecision with model, tool choice, mode, capabilities and reason code
    """
    requirements = Requirements(
        needs_vision=has_image_attachments(messages),
        needs_tools=mcp_enabled and len(tools) > 0,
    )

    if endpoint.is_auto:
        return _decide_auto(endpoint, messages, registry, requirements)
    return _decide_manual(endpoint, registry, requirements)
