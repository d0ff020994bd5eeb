"""
HTTP client factory utilities.
Centralizes httpx.AsyncClient creation for model endpoints and MCP servers.
"""

from __future__ import annotations

import httpx

from core.constants import (
    HTTP_CONNECT_TIMEOUT,
    HTTP_POOL_TIMEOUT,
    HTTP_READ_TIMEOUT,
    HTTP_WRITE_TIMEOUT,
    get_settings,
)
from utils.http_logger import create_logging_client


def build_timeout(read_timeout: float | None = None) -> httpx.Timeout:
    """Build the timeout profile used for streaming requests.

    Args:
        read_timeout: Read timeout in seconds (default: 600s for reasoning models)
    """
    effective_read_timeout = read_timeout if read_timeout is not None else HTTP_READ_TIMEOUT
    return httpx.Timeout(
        connect=HTTP_CONNECT_TIMEOUT,
        read=effective_read_timeout,
        write=HTTP_WRITE_TIMEOUT,
        pool=HTTP_POOL_TIMEOUT,
    )


def create_http_client(
    enable_logging: bool | None = None,
    read_timeout: float | None = None,
) -> httpx.AsyncClient:
    """Create HTTP client with proper timeouts for streaming.

    Args:
        enable_logging: Enable HTTP request/response logging (default: settings.http_request_logging)
        read_timeout: Read timeout in seconds (default: settings.http_read_timeout)

    Returns:
        Configured httpx.AsyncClient
    """
    if enable_logging is None or read_timeout is None:
        settings = get_settings()
        if enable_logging is None:
            enable_logging = bool(settings.http_request_logging)
        if read_timeout is None:
            read_timeout = float(settings.http_read_timeout)

    timeout = build_timeout(read_timeout)

    if enable_logging:
        return create_logging_client(enabled=True, timeout=timeout)

    return httpx.AsyncClient(timeout=timeout)
