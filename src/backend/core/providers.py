"""
Provider registry for OpenAI-compatible model endpoints.

Static lookup of base URLs and auth header formats, plus helpers to normalize
user-entered base URLs and to list the models an endpoint offers.
"""

from __future__ import annotations

import re

from dataclasses import dataclass
from typing import Any, Literal

import httpx

from pydantic import BaseModel, Field

from utils.logger import logger

ModelListType = Literal["openai", "anthropic", "replicate", "perplexity"]

#: Placeholder substituted with the API key in ``auth_format``.
KEY_PLACEHOLDER = "<KEY>"

#: Extra header carrying the Yandex Cloud folder id.
FOLDER_ID_HEADER = "x-folder-id"


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    """Static description of a model provider.

    Attributes:
        id: Provider identifier stored in EndpointConfig.provider_id
        name: Human-readable name for settings screens
        base_url: Default API base URL ("" for custom endpoints)
        auth_header: Header name carrying the credential
        auth_format: Header value template with a <KEY> placeholder
        model_list_type: Strategy used by fetch_provider_models
        requires_folder_id: Whether requests need an account/folder identifier
    """

    id: str
    name: str
    base_url: str
    auth_header: str
    auth_format: str
    model_list_type: ModelListType = "openai"
    requires_folder_id: bool = False


#: Provider table. The first entry is the fallback for unknown ids.
PROVIDER_CONFIGS: tuple[ProviderConfig, ...] = (
    ProviderConfig("openai", "OpenAI", "https://api.openai.com/v1", "Authorization", "Bearer <KEY>"),
    ProviderConfig(
        "anthropic", "Anthropic Claude", "https://api.anthropic.com/v1", "x-api-key", "<KEY>", "anthropic"
    ),
    ProviderConfig("together", "Together AI", "https://api.together.ai/v1", "Authorization", "Bearer <KEY>"),
    ProviderConfig("mistral", "Mistral AI", "https://api.mistral.ai/v1", "Authorization", "Bearer <KEY>"),
    ProviderConfig(
        "perplexity", "Perplexity", "https://api.perplexity.ai", "Authorization", "Bearer <KEY>", "perplexity"
    ),
    ProviderConfig(
        "yandex",
        "Yandex AI Studio",
        "https://api.ai.yandex.net/v1",
        "Authorization",
        "Api-Key <KEY>",
        requires_folder_id=True,
    ),
    ProviderConfig(
        "replicate", "Replicate", "https://api.replicate.com/v1", "Authorization", "Token <KEY>", "replicate"
    ),
    ProviderConfig("deepseek", "DeepSeek", "https://api.deepseek.com", "Authorization", "Bearer <KEY>"),
    ProviderConfig("groq", "Groq", "https://api.groq.com/openai/v1", "Authorization", "Bearer <KEY>"),
    ProviderConfig(
        "dashscope", "Alibaba DashScope", "https://dashscope.aliyuncs.com/api/v1", "Authorization", "Bearer <KEY>"
    ),
    ProviderConfig("custom", "Custom / Self-hosted", "", "Authorization", "Bearer <KEY>"),
)

_PROVIDERS_BY_ID: dict[str, ProviderConfig] = {p.id: p for p in PROVIDER_CONFIGS}

PERPLEXITY_FALLBACK_MODELS: tuple[str, ...] = (
    "sonar",
    "sonar-pro",
    "sonar-reasoning",
    "sonar-pro-reasoning",
)

ANTHROPIC_FALLBACK_MODELS: tuple[str, ...] = (
    "claude-3-5-sonnet-20240620",
    "claude-3-5-haiku-20241022",
    "claude-3-opus-20240229",
    "claude-3-sonnet-20240229",
    "claude-3-haiku-20240307",
)

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def get_providers() -> list[ProviderConfig]:
    return list(PROVIDER_CONFIGS)


def get_provider_config(provider_id: str) -> ProviderConfig:
    """Look up a provider, falling back to the first entry for unknown ids."""
    return _PROVIDERS_BY_ID.get(provider_id, PROVIDER_CONFIGS[0])


def format_auth_header_label(provider_id: str) -> str:
    """Human-readable auth hint, e.g. ``Authorization: Bearer <KEY>``."""
    provider = get_provider_config(provider_id)
    return f"{provider.auth_header}: {provider.auth_format}"


def build_auth_headers(provider_id: str, api_key: str) -> dict[str, str]:
    """Build the credential header for a provider (empty when no key is set)."""
    if not api_key:
        return {}
    provider = get_provider_config(provider_id)
    return {provider.auth_header: provider.auth_format.replace(KEY_PLACEHOLDER, api_key)}


def build_provider_headers(provider_id: str, api_key: str, folder_id: str | None = None) -> dict[str, str]:
    """Auth headers plus any provider-specific account headers."""
    headers = build_auth_headers(provider_id, api_key)
    provider = get_provider_config(provider_id)
    if provider.requires_folder_id and folder_id and folder_id.strip():
        headers[FOLDER_ID_HEADER] = folder_id.strip()
    return headers


def normalize_base_url(base_url: str, append_v1: bool = False) -> str:
    """Normalize a user-entered base URL.

    Trims whitespace, adds ``https://`` when no scheme is given, strips
    trailing slashes and optionally ensures a trailing ``/v1`` segment.
    """
    url = (base_url or "").strip()
    if not url:
        return ""
    if not _SCHEME_RE.match(url):
        url = f"https://{url}"
    url = url.rstrip("/")
    if append_v1 and not url.endswith("/v1"):
        url = f"{url}/v1"
    return url


def resolve_base_url(provider_id: str, base_url: str = "") -> str:
    """Base URL used for requests: the table entry, or the user's URL for custom endpoints."""
    provider = get_provider_config(provider_id)
    if provider.id == "custom":
        return normalize_base_url(base_url, append_v1=True)
    return provider.base_url


class ModelListResult(BaseModel):
    """Outcome of fetch_provider_models."""

    models: list[str] = Field(default_factory=list)
    message: str | None = None
    error: str | None = None


def extract_models(payload: Any) -> list[str]:
    """Pull model ids out of the many shapes ``/models`` endpoints return."""
    candidates = payload
    if isinstance(payload, dict):
        for key in ("data", "models", "results", "list"):
            if isinstance(payload.get(key), list):
                candidates = payload[key]
                break
    if not isinstance(candidates, list):
        return []

    models: list[str] = []
    for item in candidates:
        name: str | None = None
        if isinstance(item, str):
            name = item
        elif isinstance(item, dict):
            if item.get("id"):
                name = str(item["id"])
            elif item.get("name") and item.get("owner"):
                name = f"{item['owner']}/{item['name']}"
            elif item.get("name"):
                name = str(item["name"])
            elif item.get("model"):
                name = str(item["model"])
        if name and name not in models:
            models.append(name)
    return models


async def fetch_provider_models(
    provider_id: str,
    base_url: str,
    api_key: str,
    current_model: str | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> ModelListResult:
    """List models offered by an endpoint.

    Never raises; failures are reported through ``ModelListResult.error``.

    Args:
        provider_id: Provider identifier
        base_url: Base URL as entered by the user
        api_key: Credential for the provider
        current_model: Model used for the Anthropic reachability check
        http_client: Optional client (a short-lived one is created otherwise)
    """
    provider = get_provider_config(provider_id)
    normalized = normalize_base_url(base_url)
    if not normalized:
        return ModelListResult(error="Base URL is missing.")

    if provider.model_list_type == "perplexity":
        return ModelListResult(
            models=list(PERPLEXITY_FALLBACK_MODELS),
            message="Using built-in Perplexity model list.",
        )

    headers = {**build_auth_headers(provider_id, api_key), "Content-Type": "application/json"}
    client = http_client or httpx.AsyncClient(timeout=30.0)
    try:
        if provider.model_list_type == "anthropic":
            model_to_check = current_model or ANTHROPIC_FALLBACK_MODELS[0]
            response = await client.post(
                f"{normalized}/messages",
                headers=headers,
                json={"model": model_to_check, "max_tokens": 1, "messages": [{"role": "user", "content": "ping"}]},
            )
            if response.is_error:
                return ModelListResult(
                    error=response.text
                    or f"Anthropic request failed: {response.status_code} {response.reason_phrase}"
                )
            return ModelListResult(
                models=list(ANTHROPIC_FALLBACK_MODELS),
                message="Anthropic does not expose a model list; showing common models.",
            )

        response = await client.get(f"{normalized}/models", headers=headers)
        if response.is_error:
            return ModelListResult(
                error=response.text or f"Model request failed: {response.status_code} {response.reason_phrase}"
            )

        models = extract_models(response.json())
        if not models:
            return ModelListResult(error="No models found. Enter a model manually.")
        return ModelListResult(models=models)
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Model listing failed for {provider_id}: {e}")
        return ModelListResult(error=f"Failed to load models: {e}")
    finally:
        if http_client is None:
            await client.aclose()
