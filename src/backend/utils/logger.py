"""
Logging setup for Chat Relay using Python's standard logging
with JSON formatting for structured logs.

Log destinations:
- Console (stderr): Human-readable format for debugging
- logs/conversations.jsonl: JSON format for conversation history and agent traces
- logs/errors.jsonl: JSON format for error tracking
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import uuid

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pythonjsonlogger import json as jsonlogger

from core.constants import (
    LOG_BACKUP_COUNT_CONVERSATIONS,
    LOG_BACKUP_COUNT_ERRORS,
    LOG_MAX_SIZE,
    LOG_PREVIEW_LENGTH,
    PROJECT_ROOT,
    SESSION_ID_LENGTH,
    get_settings,
)
from utils.observability import get_trace_context

# PII Redaction patterns
REDACTION_PATTERNS = [
    (r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b", "[EMAIL]"),
    (r"\b(?:\d{4}[- ]?){3}\d{4}\b", "[CARD]"),
    (r"\b(sk-|pk-|api[-_]?key[-_]?)[A-Za-z0-9]{20,}\b", "[API_KEY]"),
    (r"\b(password|secret|token)\s*[:=]\s*\S+", "[REDACTED]"),
]


@dataclass
class ConversationTurn:
    """Structured representation of a conversation turn for logging."""

    user_input: str
    response: str
    function_calls: list[str] = field(default_factory=list)
    duration_ms: float | None = None
    tokens_used: int | None = None
    session_id: str = ""
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


class ConversationFilter(logging.Filter):
    """Filter to allow all INFO level logs for conversations"""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.INFO


class ErrorFilter(logging.Filter):
    """Filter to only allow ERROR and CRITICAL logs"""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


class ColoredConsoleFormatter(logging.Formatter):
    """
    Custom formatter that adds colors to log levels and standardizes format.
    Format: HH:MM:SS [LEVEL] logger_name - message
    """

    # ANSI color codes
    GREY = "\x1b[38;20m"
    GREEN = "\x1b[32;20m"
    YELLOW = "\x1b[33;20m"
    RED = "\x1b[31;20m"
    BOLD_RED = "\x1b[31;1m"
    RESET = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        level_fmt = f"[{record.levelname}]"
        color = self.LEVEL_COLORS.get(record.levelno)
        if color:
            level_fmt = f"{color}{level_fmt}{self.RESET}"

        record.asctime = self.formatTime(record, "%H:%M:%S")
        message = f"{record.asctime} {level_fmt} {record.name} - {record.getMessage()}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def setup_logging(name: str = "chat-relay", debug: bool | None = None) -> logging.Logger:
    """
    Set up logging with console and rotating JSON file handlers.

    Args:
        name: Logger name
        debug: Enable debug logging (overrides DEBUG env var)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)  # Capture all, filter at handler level

    # Remove any existing handlers
    logger.handlers = []

    if debug is None:
        debug = os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")

    # --- Console Handler (Human-readable) ---
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    console_handler.setFormatter(ColoredConsoleFormatter())
    logger.addHandler(console_handler)

    # --- Conversation Log Handler (JSON) ---
    log_dir = PROJECT_ROOT / "logs"
    log_dir.mkdir(exist_ok=True)

    conv_handler = logging.handlers.RotatingFileHandler(
        log_dir / "conversations.jsonl",
        maxBytes=LOG_MAX_SIZE,
        backupCount=LOG_BACKUP_COUNT_CONVERSATIONS,
        encoding="utf-8",
    )
    conv_handler.setLevel(logging.INFO)
    conv_handler.addFilter(ConversationFilter())
    conv_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(timestamp)s %(levelname)s %(message)s %(session_id)s %(trace_id)s %(event)s %(func)s",
            timestamp=True,
        )
    )
    logger.addHandler(conv_handler)

    # --- Error Log Handler (JSON) ---
    error_handler = logging.handlers.RotatingFileHandler(
        log_dir / "errors.jsonl",
        maxBytes=LOG_MAX_SIZE,
        backupCount=LOG_BACKUP_COUNT_ERRORS,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.addFilter(ErrorFilter())
    error_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(timestamp)s %(levelname)s %(name)s %(message)s %(trace_id)s",
            timestamp=True,
        )
    )
    logger.addHandler(error_handler)

    return logger


class ChatLogger:
    """
    High-level logging interface for Chat Relay.
    Wraps standard Python logging with convenience methods.
    """

    def __init__(self, name: str = "chat-relay"):
        self.logger = setup_logging(name)
        self.session_id = str(uuid.uuid4())[:SESSION_ID_LENGTH]

    def _enrich_context(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        """Enrich log arguments with trace context and session ID."""
        kwargs.setdefault("session_id", self.session_id)

        if ctx := get_trace_context():
            for key, value in ctx.to_log_context().items():
                kwargs.setdefault(key, value)

        return kwargs

    def debug(self, message: str, **kwargs: Any) -> None:
        """Debug level logging"""
        kwargs = self._enrich_context(kwargs)
        self.logger.debug(message, extra=kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        """Info level logging"""
        kwargs = self._enrich_context(kwargs)
        self.logger.info(message, extra=kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        """Warning level logging"""
        kwargs = self._enrich_context(kwargs)
        self.logger.warning(message, extra=kwargs)

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        """Error level logging with optional exception info"""
        kwargs = self._enrich_context(kwargs)
        self.logger.error(message, extra=kwargs, exc_info=exc_info)

    def _should_log_content(self) -> bool:
        """Check if content logging is enabled via settings."""
        try:
            return bool(get_settings().enable_content_logging)
        except ValueError:
            # Settings failed validation; never leak content in that case
            return False

    def _redact_content(self, text: str) -> str:
        """Redact PII from text using defined patterns."""
        if not text:
            return text

        redacted = text
        for pattern, replacement in REDACTION_PATTERNS:
            redacted = re.sub(pattern, replacement, redacted)
        return redacted

    def _preview(self, text: str) -> str:
        preview = self._redact_content(text[:LOG_PREVIEW_LENGTH].replace("\n", " "))
        if len(text) > LOG_PREVIEW_LENGTH:
            preview += "..."
        return preview

    def log_conversation_turn(
        self,
        user_input: str,
        response: str,
        function_calls: list[Any] | None = None,
        duration_ms: float | None = None,
        tokens_used: int | None = None,
        attachments_count: int = 0,
        tool_names: list[str] | None = None,
    ) -> None:
        """
        Log a conversation turn securely.
        """
        turn = ConversationTurn(
            user_input=user_input,
            response=response,
            function_calls=function_calls or [],
            duration_ms=duration_ms,
            tokens_used=tokens_used,
            session_id=self.session_id,
        )

        should_log_content = self._should_log_content()

        if should_log_content:
            user_preview = self._preview(turn.user_input)
            response_preview = self._preview(turn.response)
        else:
            user_preview = "[HIDDEN]"
            response_preview = "[HIDDEN]"

        msg_parts = [f"User: {user_preview} → AI: {response_preview}"]

        if turn.function_calls:
            msg_parts.append(f"[{len(turn.function_calls)} functions]")

        if turn.duration_ms:
            msg_parts.append(f"[{turn.duration_ms:.0f}ms]")

        if turn.tokens_used:
            msg_parts.append(f"[{turn.tokens_used} tokens]")

        extra_data: dict[str, Any] = {
            "conversation_turn": True,
            "timestamp": turn.timestamp,
            "session_id": turn.session_id,
            "chars_input": len(turn.user_input),
            "chars_response": len(turn.response),
            "functions": len(turn.function_calls),
            "content_logging": should_log_content,
        }

        if attachments_count > 0:
            extra_data["attachments"] = attachments_count
        if tool_names:
            extra_data["tool_names"] = tool_names
        if turn.duration_ms is not None:
            extra_data["ms"] = int(turn.duration_ms)
        if turn.tokens_used is not None:
            extra_data["tokens"] = turn.tokens_used

        extra_data = self._enrich_context(extra_data)

        self.logger.info(" ".join(msg_parts), extra=extra_data)

    def log_function_call(self, function_name: str, args: dict[str, Any], result: Any) -> None:
        """
        Log a tool call - secure version.
        """
        should_log_content = self._should_log_content()

        if should_log_content:
            redacted_args = self._redact_content(str(args))
            console_msg = f"Function call: {function_name}({redacted_args}) → {str(result)[:50]}..."
        else:
            console_msg = f"Function call: {function_name}(...) -> [HIDDEN]"

        extra_data = {"func": function_name, "content_logging": should_log_content}
        extra_data = self._enrich_context(extra_data)

        self.logger.info(console_msg, extra=extra_data)


# Global logger instance
logger = ChatLogger()
