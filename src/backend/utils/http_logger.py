"""
HTTP request/response logging for debugging model endpoints and MCP servers.

Captures request payloads and response metadata using httpx event hooks.
"""

from __future__ import annotations

import json

from typing import Any

import httpx

from utils.logger import logger

SENSITIVE_HEADERS = ("authorization", "api-key", "x-api-key", "mcp-session-id")


class HTTPLogger:
    """Logs HTTP requests and responses for debugging."""

    def __init__(self, enabled: bool = True):
        """Initialize HTTP logger.

        Args:
            enabled: Whether to enable HTTP logging (default: True)
        """
        self.enabled = enabled
        self._request_data: dict[int, dict[str, Any]] = {}

    async def log_request(self, request: httpx.Request) -> None:
        """Log outgoing HTTP request.

        Args:
            request: The httpx request object
        """
        if not self.enabled:
            return

        try:
            body_str = request.content.decode("utf-8") if request.content else ""
            body_json = json.loads(body_str) if body_str else {}
        except (UnicodeDecodeError, json.JSONDecodeError, httpx.RequestNotRead):
            body_json = {"_note": "body not captured"}

        self._request_data[id(request)] = {
            "method": request.method,
            "url": str(request.url),
        }

        logger.info(
            f"HTTP Request: {request.method} {request.url}",
            http_request=True,
            http_method=request.method,
            url=str(request.url),
            headers=self._sanitize_headers(dict(request.headers)),
            payload=body_json,
        )

        if body_json:
            logger.debug(f"Request Payload:\n{json.dumps(body_json, indent=2, ensure_ascii=False)}")

    async def log_response(self, response: httpx.Response) -> None:
        """Log HTTP response.

        Streaming bodies are never read here; consuming them would break the caller.

        Args:
            response: The httpx response object
        """
        if not self.enabled:
            return

        request_data = self._request_data.pop(id(response.request), {})

        logger.info(
            f"HTTP Response: {response.status_code} "
            f"{request_data.get('method', 'UNKNOWN')} {request_data.get('url', 'UNKNOWN')}",
            http_response=True,
            status_code=response.status_code,
            headers=self._sanitize_headers(dict(response.headers)),
            content_type=response.headers.get("content-type", ""),
        )

    def _sanitize_headers(self, headers: dict[str, str]) -> dict[str, str]:
        """Remove sensitive data from headers.

        Args:
            headers: Original headers dictionary

        Returns:
            Sanitized headers with sensitive values redacted
        """
        sanitized = headers.copy()
        for actual_key, value in headers.items():
            if actual_key.lower() in SENSITIVE_HEADERS:
                # Show last 4 chars only
                sanitized[actual_key] = f"***{value[-4:]}" if len(value) > 4 else "***"
        return sanitized


def create_logging_client(
    enabled: bool = True,
    timeout: httpx.Timeout | None = None,
) -> httpx.AsyncClient:
    """Create an httpx client with request/response logging.

    Args:
        enabled: Whether to enable HTTP logging
        timeout: Optional timeout configuration

    Returns:
        Configured httpx.AsyncClient with event hooks
    """
    http_logger = HTTPLogger(enabled=enabled)

    event_hooks: dict[str, list[Any]] = {
        "request": [http_logger.log_request],
        "response": [http_logger.log_response],
    }

    return httpx.AsyncClient(event_hooks=event_hooks, timeout=timeout)
