"""
Error codes, exception hierarchy and serializable error models for Chat Relay.

Every raised error carries an ErrorCode so callers (UI glue, offline queue,
logs) can categorize failures without string matching.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    """Application-specific error codes for categorization."""

    # Validation errors (2xxx)
    VALIDATION_ERROR = "VAL_2001"
    VALIDATION_INVALID_FORMAT = "VAL_2003"

    # External service errors (7xxx)
    EXTERNAL_SERVICE_ERROR = "EXT_7001"
    EXTERNAL_TIMEOUT = "EXT_7002"
    LLM_ERROR = "EXT_7010"
    LLM_TRANSPORT_ERROR = "EXT_7011"
    MCP_SERVER_ERROR = "EXT_7020"
    MCP_TRANSPORT_ERROR = "EXT_7021"
    MCP_PROTOCOL_ERROR = "EXT_7022"

    # Agent errors (91xx)
    AGENT_MAX_DEPTH_EXCEEDED = "AGENT_9101"

    # Internal errors (9xxx)
    INTERNAL_ERROR = "INT_9001"
    INTERNAL_CONFIGURATION_ERROR = "INT_9002"


class ErrorDetail(BaseModel):
    """Detailed information about a specific sub-error."""

    field: str | None = None
    message: str
    code: str | None = None


class ErrorResponse(BaseModel):
    """Standardized error payload handed to UI glue.

    Example:
    {
        "code": "EXT_7021",
        "message": "MCP server returned 503: unavailable",
        "trace_id": "trace_lz3k9q1a_4fj2kq",
        "timestamp": "2025-01-15T10:30:00Z"
    }
    """

    code: ErrorCode
    message: str
    trace_id: str | None = None
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    details: list[ErrorDetail] | None = None
    # Debug info - only included on request
    debug: dict[str, Any] | None = Field(default=None, exclude=True)

    def to_dict(self, include_debug: bool = False) -> dict[str, Any]:
        """Convert to a JSON-ready dictionary.

        Args:
            include_debug: Include debug information
        """
        data = self.model_dump(mode="json", exclude_none=True)
        if include_debug and self.debug:
            data["debug"] = self.debug
        return data


class AppException(Exception):
    """Base application exception with error code support.

    Example:
        raise AppException(
            code=ErrorCode.INTERNAL_ERROR,
            message="Something broke",
            details={"component": "agent"},
        )
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        self.cause = cause
        super().__init__(message)

    def to_response(self, trace_id: str | None = None) -> ErrorResponse:
        """Build the serializable error payload for this exception."""
        debug = {"cause": repr(self.cause)} if self.cause else None
        if self.details:
            debug = {**(debug or {}), **self.details}
        return ErrorResponse(code=self.code, message=self.message, trace_id=trace_id, debug=debug)


class ConfigurationError(AppException):
    """Invalid or missing configuration."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(code=ErrorCode.INTERNAL_CONFIGURATION_ERROR, message=message, details=details)


class MCPError(AppException):
    """Base class for MCP server failures."""

    def __init__(
        self,
        message: str,
        server_name: str | None = None,
        code: ErrorCode = ErrorCode.MCP_SERVER_ERROR,
        cause: Exception | None = None,
    ):
        super().__init__(code=code, message=message, details={"server": server_name}, cause=cause)
        self.server_name = server_name


class MCPTransportError(MCPError):
    """Network failure or non-2xx HTTP status from an MCP server."""

    def __init__(
        self,
        message: str,
        server_name: str | None = None,
        status_code: int | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, server_name=server_name, code=ErrorCode.MCP_TRANSPORT_ERROR, cause=cause)
        self.status_code = status_code


class MCPProtocolError(MCPError):
    """JSON-RPC error envelope or malformed response body."""

    def __init__(
        self,
        message: str,
        server_name: str | None = None,
        rpc_code: int | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, server_name=server_name, code=ErrorCode.MCP_PROTOCOL_ERROR, cause=cause)
        self.rpc_code = rpc_code


class LLMError(AppException):
    """Base class for chat-completion endpoint failures."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.LLM_ERROR,
        cause: Exception | None = None,
    ):
        super().__init__(code=code, message=message, cause=cause)


class LLMRequestError(LLMError):
    """The endpoint answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code
        self.details = {"status_code": status_code}


class LLMTransportError(LLMError):
    """The endpoint could not be reached or the stream broke."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message, code=ErrorCode.LLM_TRANSPORT_ERROR, cause=cause)


class MaxToolDepthExceededError(AppException):
    """The model kept requesting tools past the configured limit."""

    def __init__(self, max_depth: int):
        super().__init__(
            code=ErrorCode.AGENT_MAX_DEPTH_EXCEEDED,
            message="Maximum tool call depth exceeded",
            details={"max_depth": max_depth},
        )
        self.max_depth = max_depth


#: Failures that justify parking a request in the offline queue.
TRANSPORT_ERRORS: tuple[type[AppException], ...] = (LLMTransportError, MCPTransportError)
