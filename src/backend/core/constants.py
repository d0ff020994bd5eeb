"""
Constants and configuration for Chat Relay.
Centralizes protocol constants, agent defaults and tunables.
Includes Pydantic validation for environment variables.
"""

from __future__ import annotations

import os
import threading

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import (
    DotEnvSettingsSource,
    PydanticBaseSettingsSource,
)

# ============================================================================
# Project Paths
# ============================================================================

#: Project root directory (parent of src/)
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent

#: Default directory for JSON-backed stores (memory, offline queue, prompt cache)
DATA_PATH = PROJECT_ROOT / "data"

# ============================================================================
# MCP Protocol
# ============================================================================

#: MCP protocol revision sent in the initialize handshake.
MCP_PROTOCOL_VERSION = "2024-11-05"

#: JSON-RPC version string for every envelope.
JSONRPC_VERSION = "2.0"

#: Accept header value; servers may answer with plain JSON or an SSE body.
MCP_ACCEPT_HEADER = "application/json, text/event-stream"

#: Response header carrying the server-assigned session id (lowercase, httpx headers are case-insensitive).
MCP_SESSION_HEADER = "mcp-session-id"

#: Request header used to echo the session id back to the server.
MCP_SESSION_REQUEST_HEADER = "Mcp-Session-Id"

#: Delimiter between server id and tool name in model-facing function names.
#: Tool names may contain underscores, so parsing splits on the first occurrence only.
TOOL_NAME_DELIMITER = "__"

# ============================================================================
# SSE Framing (shared by MCP responses and chat-completion streams)
# ============================================================================

#: Data-field prefix of an SSE line.
SSE_DATA_PREFIX = "data: "

#: Stream terminator sentinel.
SSE_DONE_SENTINEL = "[DONE]"

#: Content type announcing an SSE body.
SSE_CONTENT_TYPE = "text/event-stream"

# ============================================================================
# Agent Loop
# ============================================================================

#: Default maximum number of tool-calling round-trips within one user turn.
DEFAULT_MAX_TOOL_DEPTH = 10

#: Fallback tool-choice policy when a decision does not specify one.
DEFAULT_TOOL_CHOICE = "auto"

#: Fallback MIME type when an image tool result omits one.
DEFAULT_IMAGE_MIME_TYPE = "image/png"

# ============================================================================
# Memory Configuration
# ============================================================================

#: Default number of memories injected into the context.
MEMORY_DEFAULT_LIMIT = 8

#: Default importance floor for context memories.
MEMORY_DEFAULT_MIN_IMPORTANCE = 0.5

#: Importance assigned to explicit "remember ..." requests.
MEMORY_EXPLICIT_IMPORTANCE = 0.9

#: Maximum characters stored for an explicit memory.
MEMORY_EXPLICIT_MAX_CHARS = 400

#: Importance assigned to automatic conversation summaries.
MEMORY_SUMMARY_IMPORTANCE = 0.6

#: Summary TTL in milliseconds (30 days).
MEMORY_SUMMARY_TTL_MS = 30 * 24 * 60 * 60 * 1000

#: Number of trailing conversation messages fed to the summarizer.
SUMMARY_MAX_MESSAGES = 12

#: Per-message truncation for summary input.
SUMMARY_MESSAGE_MAX_CHARS = 300

#: Truncation for the assistant reply and for the produced summary.
SUMMARY_ASSISTANT_MAX_CHARS = 600

#: Instructions for the summarization call.
SUMMARY_SYSTEM_PROMPT = (
    "Summarize the conversation in 1-2 sentences for long-term memory. "
    "Focus on stable facts, preferences, and ongoing tasks. "
    "Avoid sensitive or transient details. Output plain text only."
)

# ============================================================================
# Prompt Library (prompts.chat MCP server)
# ============================================================================

#: Public prompts.chat MCP endpoint.
PROMPTS_CHAT_URL = "https://prompts.chat/api/mcp"

#: Server id used when the prompts.chat server is preconfigured.
PROMPTS_CHAT_SERVER_ID = "prompts-chat-default"

#: Upper bound accepted by the search_prompts tool.
PROMPTS_CHAT_MAX_LIMIT = 50

#: Prompt cache lifetime in milliseconds (24 hours).
PROMPT_CACHE_TTL_MS = 24 * 60 * 60 * 1000

#: On-disk prompt cache schema version.
PROMPT_CACHE_VERSION = 1

# ============================================================================
# Logging Configuration
# ============================================================================

#: Maximum size in bytes for log files before rotation (10MB).
LOG_MAX_SIZE = 10 * 1024 * 1024

#: Number of conversation log backups to retain during rotation.
LOG_BACKUP_COUNT_CONVERSATIONS = 5

#: Number of error log backups to retain during rotation.
LOG_BACKUP_COUNT_ERRORS = 3

#: Maximum characters to show in log previews for user input/response.
LOG_PREVIEW_LENGTH = 50

#: Length of generated logger session IDs (hex characters).
SESSION_ID_LENGTH = 8

# ============================================================================
# HTTP Timeouts
# ============================================================================

#: Seconds to establish a connection.
HTTP_CONNECT_TIMEOUT = 30.0

#: Seconds to wait between streamed chunks; reasoning models can pause for a long time.
HTTP_READ_TIMEOUT = 600.0

#: Seconds to send a request body.
HTTP_WRITE_TIMEOUT = 30.0

#: Seconds to acquire a pooled connection.
HTTP_POOL_TIMEOUT = 30.0

# ============================================================================
# Environment Configuration with Pydantic Validation
# ============================================================================

#: Valid environment names for configuration loading
Environment = Literal["development", "production", "test"]

#: Backend source directory for .env file resolution
_BACKEND_DIR = Path(__file__).parent.parent


def _get_env_files() -> list[Path]:
    """Determine which .env files to load based on APP_ENV.

    Load order (later files override earlier - pydantic-settings last-wins):
    1. .env (base defaults) - lowest priority
    2. .env.{environment} (environment-specific overrides)
    3. .env.local (local developer overrides, gitignored) - highest priority

    Returns:
        List of Path objects for env files that exist.
    """
    env_name = os.getenv("APP_ENV", "development").lower()
    if env_name not in ("development", "production", "test"):
        env_name = "development"

    candidates = [
        _BACKEND_DIR / ".env",
        _BACKEND_DIR / f".env.{env_name}",
        _BACKEND_DIR / ".env.local",
    ]
    return [p for p in candidates if p.exists()]


def _reload_dotenv_into_environ() -> None:
    """Reload our dotenv chain into os.environ.

    Environment-specific values (.env.development, .env.production) must take
    precedence over anything an earlier load_dotenv() call left behind.
    Must be called BEFORE Settings() instantiation.
    """
    from dotenv import load_dotenv

    for env_file in _get_env_files():
        load_dotenv(env_file, override=True)


class Settings(BaseSettings):
    """Environment settings with validation and environment-specific file support.

    Configuration priority (highest to lowest):
    1. Values passed to Settings() constructor
    2. Environment variables
    3. .env.local > .env.{APP_ENV} > .env (dotenv files, last wins)
    """

    # Environment identification
    app_env: Environment = Field(default="development", description="Application environment")

    # Debug and logging
    debug: bool = Field(default=False, description="Enable debug logging")
    http_request_logging: bool = Field(default=False, description="Enable HTTP request/response logging")
    enable_content_logging: bool = Field(
        default=False, description="Log (redacted) message content instead of hiding it"
    )

    # HTTP client timeouts
    http_read_timeout: float = Field(
        default=HTTP_READ_TIMEOUT, description="HTTP read timeout for streaming (seconds)"
    )
    mcp_request_timeout: float = Field(default=60.0, description="Timeout for a single MCP request (seconds)")

    # MCP client identity
    client_name: str = Field(default="Chat Relay", description="clientInfo.name sent on MCP initialize")
    client_version: str = Field(default="1.0.0", description="clientInfo.version sent on MCP initialize")

    # Agent loop
    agent_max_depth: int = Field(
        default=DEFAULT_MAX_TOOL_DEPTH, ge=1, description="Maximum tool-calling round-trips per turn"
    )

    # Memory
    memory_enabled: bool = Field(default=True, description="Inject and persist long-term memories")
    memory_auto_save: bool = Field(default=True, description="Store explicit 'remember ...' requests")
    memory_auto_summary: bool = Field(default=False, description="Summarize finished turns into task memories")
    memory_limit: int = Field(default=MEMORY_DEFAULT_LIMIT, ge=0, description="Memories injected per turn")
    memory_min_importance: float = Field(
        default=MEMORY_DEFAULT_MIN_IMPORTANCE, description="Importance floor for injected memories"
    )
    memory_summary_ttl_days: int = Field(default=30, ge=1, description="Lifetime of summary memories (days)")

    # Storage
    data_dir: Path = Field(default=DATA_PATH, description="Directory for JSON-backed stores")

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize settings source priority for environment-specific config.

        Priority (highest to lowest):
        1. init_settings - Values passed to Settings() constructor
        2. env_settings - Environment variables
        3. dotenv files - .env.local > .env.{APP_ENV} > .env (last-wins in list)
        """
        env_files = _get_env_files()

        dotenv_source = DotEnvSettingsSource(
            settings_cls,
            env_file=env_files,
            env_file_encoding="utf-8",
        )

        return (init_settings, env_settings, dotenv_source)

    @field_validator("app_env", mode="before")
    @classmethod
    def validate_app_env(cls, v: str | None) -> str:
        """Validate and normalize APP_ENV value."""
        if v is None:
            return "development"
        normalized = str(v).lower()
        if normalized not in ("development", "production", "test"):
            raise ValueError(f"app_env must be 'development', 'production', or 'test', got '{v}'")
        return normalized

    @field_validator("memory_min_importance")
    @classmethod
    def validate_min_importance(cls, v: float) -> float:
        """Importance is a probability-like score in [0, 1]."""
        if not 0.0 <= v <= 1.0:
            raise ValueError("memory_min_importance must be between 0 and 1")
        return v

    @property
    def memory_summary_ttl_ms(self) -> int:
        """Summary memory lifetime in milliseconds."""
        return self.memory_summary_ttl_days * 24 * 60 * 60 * 1000

    @property
    def memory_store_path(self) -> Path:
        return self.data_dir / "memory.json"

    @property
    def offline_queue_path(self) -> Path:
        return self.data_dir / "offline_queue.json"

    @property
    def prompt_cache_path(self) -> Path:
        return self.data_dir / "prompt_cache.json"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"

    @property
    def is_test(self) -> bool:
        """Check if running in test mode."""
        return self.app_env == "test"


# ============================================================================
# Settings Management (Thread-safe)
# ============================================================================


class _SettingsManager:
    """Thread-safe settings manager.

    Uses a class to avoid global statement warnings from linters.
    """

    __slots__ = ("_instance", "_lock")

    def __init__(self) -> None:
        self._instance: Settings | None = None
        self._lock = threading.Lock()

    def get(self) -> Settings:
        """Get the cached settings instance, loading it on first use.

        Returns:
            Validated Settings instance.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self._instance is not None:
            return self._instance

        with self._lock:
            # Double-check after acquiring lock
            if self._instance is not None:
                return self._instance

            _reload_dotenv_into_environ()
            self._instance = Settings()
            return self._instance

    def reload(self) -> Settings:
        """Force reload settings from environment files."""
        with self._lock:
            _reload_dotenv_into_environ()
            self._instance = Settings()
            return self._instance

    def clear(self) -> None:
        """Clear cached settings instance."""
        with self._lock:
            self._instance = None


# Module-level singleton manager
_settings_manager = _SettingsManager()


def get_settings() -> Settings:
    """Get settings instance.

    This is the primary entry point for accessing application settings.
    Settings are validated on first access and cached.

    Returns:
        Validated Settings instance.

    Raises:
        ValueError: If configuration is invalid.
    """
    return _settings_manager.get()


def reload_settings() -> Settings:
    """Force reload settings from environment files.

    Returns:
        Fresh Settings instance loaded from current environment.
    """
    return _settings_manager.reload()


def clear_settings_cache() -> None:
    """Clear cached settings instance.

    Primarily useful for testing to ensure fresh settings on each test.
    """
    _settings_manager.clear()
