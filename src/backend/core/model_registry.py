"""
Model catalog for the decision engine.

The registry is an explicit object (not module state) so each AgentCore, and
each test, can own an isolated catalog. Static per-provider defaults and the
tier table live alongside it.
"""

from __future__ import annotations

import re

from models.agent_models import ModelCapabilities, ModelCatalogEntry, Tier
from utils.logger import logger

# ============================================================================
# Provider Defaults
# ============================================================================

#: Capabilities assumed for providers without a specific profile.
DEFAULT_CAPABILITIES = ModelCapabilities(
    supports_vision=False,
    supports_tools=True,
    supports_audio=False,
    supports_streaming=True,
)

#: Capabilities assumed for an unregistered model of a given provider.
PROVIDER_DEFAULTS: dict[str, ModelCapabilities] = {
    "openai": ModelCapabilities(
        supports_vision=True,
        supports_tools=True,
        supports_audio=True,
        supports_streaming=True,
        max_context_tokens=128000,
    ),
    "anthropic": ModelCapabilities(
        supports_vision=True,
        supports_tools=True,
        supports_audio=False,
        supports_streaming=True,
        max_context_tokens=200000,
    ),
}

#: Model used when auto mode finds an empty catalog. Yandex is handled
#: separately because its model URI embeds the folder id.
PROVIDER_DEFAULT_MODELS: dict[str, str] = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-5-haiku-20241022",
    "together": "meta-llama/Llama-3.3-70B-Instruct-Turbo",
    "mistral": "mistral-small-latest",
    "perplexity": "sonar",
    "deepseek": "deepseek-chat",
    "groq": "llama-3.1-8b-instant",
    "dashscope": "qwen-turbo",
}

YANDEX_DEFAULT_MODEL = "yandexgpt-lite/latest"

# ============================================================================
# Tier Table
# ============================================================================

#: Tier assigned when no rule matches.
DEFAULT_TIER: Tier = "standard"

#: Ordered (pattern, tier) rules per provider; first match wins, so more
#: specific patterns come first.
MODEL_TIER_RULES: dict[str, tuple[tuple[re.Pattern[str], Tier], ...]] = {
    "openai": (
        (re.compile(r"^gpt-3\.5"), "cheap"),
        (re.compile(r"^gpt-4\.1-nano"), "cheap"),
        (re.compile(r"^gpt-4o-mini"), "standard"),
        (re.compile(r"^gpt-4\.1-mini"), "standard"),
        (re.compile(r"^o\d+-mini"), "standard"),
        (re.compile(r"^gpt-4o"), "premium"),
        (re.compile(r"^gpt-4"), "premium"),
        (re.compile(r"^o\d+"), "premium"),
    ),
    "anthropic": (
        (re.compile(r"haiku"), "cheap"),
        (re.compile(r"sonnet"), "standard"),
        (re.compile(r"opus"), "premium"),
    ),
    "mistral": (
        (re.compile(r"(tiny|small|ministral)"), "cheap"),
        (re.compile(r"large"), "premium"),
    ),
    "groq": (
        (re.compile(r"(8b|instant)"), "cheap"),
        (re.compile(r"70b"), "premium"),
    ),
    "deepseek": (
        (re.compile(r"reasoner"), "premium"),
        (re.compile(r"chat"), "standard"),
    ),
    "perplexity": (
        (re.compile(r"^sonar$"), "cheap"),
        (re.compile(r"reasoning"), "premium"),
    ),
    "dashscope": (
        (re.compile(r"turbo"), "cheap"),
        (re.compile(r"plus"), "standard"),
        (re.compile(r"max"), "premium"),
    ),
    "yandex": (
        (re.compile(r"yandexgpt-lite/"), "cheap"),
        (re.compile(r"yandexgpt/"), "premium"),
    ),
}


def get_provider_default_capabilities(provider_id: str) -> ModelCapabilities:
    """Capabilities assumed for an unregistered model of ``provider_id``."""
    return PROVIDER_DEFAULTS.get(provider_id, DEFAULT_CAPABILITIES).model_copy()


def get_provider_default_model(provider_id: str, folder_id: str | None = None) -> str | None:
    """Fallback model name for a provider, or None when no sensible default exists."""
    if provider_id == "yandex":
        folder = (folder_id or "").strip()
        if folder:
            return f"gpt://{folder}/{YANDEX_DEFAULT_MODEL}"
        return YANDEX_DEFAULT_MODEL
    return PROVIDER_DEFAULT_MODELS.get(provider_id)


def get_model_tier(provider_id: str, model: str) -> Tier:
    """Classify a model into cheap/standard/premium using the tier table."""
    name = model.strip().lower()
    for pattern, tier in MODEL_TIER_RULES.get(provider_id, ()):
        if pattern.search(name):
            return tier
    return DEFAULT_TIER


class ModelRegistry:
    """Mutable catalog of (provider, model) entries.

    Entries are unique per (provider_id, model); registering the same pair
    again replaces the previous entry.
    """

    def __init__(self, entries: list[ModelCatalogEntry] | None = None) -> None:
        self._entries: list[ModelCatalogEntry] = []
        for entry in entries or []:
            self.register(entry)

    def __len__(self) -> int:
        return len(self._entries)

    def register(self, entry: ModelCatalogEntry) -> None:
        """Add or replace a catalog entry."""
        for index, existing in enumerate(self._entries):
            if existing.provider_id == entry.provider_id and existing.model == entry.model:
                self._entries[index] = entry
                logger.debug(f"Replaced model {entry.provider_id}/{entry.model}")
                return
        self._entries.append(entry)
        logger.debug(f"Registered model {entry.provider_id}/{entry.model}")

    def clear(self) -> None:
        self._entries.clear()

    def get_candidates(self, provider_id: str) -> list[ModelCatalogEntry]:
        """Entries for a provider, highest priority first (stable for ties)."""
        candidates = [entry for entry in self._entries if entry.provider_id == provider_id]
        return sorted(candidates, key=lambda entry: entry.priority, reverse=True)

    def find(self, provider_id: str, model: str) -> ModelCatalogEntry | None:
        for entry in self._entries:
            if entry.provider_id == provider_id and entry.model == model:
                return entry
        return None

    def tier_of(self, entry: ModelCatalogEntry) -> Tier:
        """Explicit tier if set, otherwise derived from the tier table."""
        return entry.tier or get_model_tier(entry.provider_id, entry.model)
