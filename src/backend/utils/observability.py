"""
Agent run tracing for Chat Relay.

Each agent run gets a trace id that is propagated through a context variable,
so every log line emitted while the run is active can be correlated without
passing the id through function arguments.
"""

from __future__ import annotations

import secrets
import string
import time

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Literal

AgentLogLevel = Literal["debug", "info", "warning", "error"]

TRACE_ID_PREFIX = "trace_"

_BASE36_ALPHABET = string.digits + string.ascii_lowercase

# Context variable for run-scoped data
_trace_context: ContextVar[TraceContext | None] = ContextVar("trace_context", default=None)


@dataclass
class TraceContext:
    """Run-scoped tracing data."""

    trace_id: str
    start_time: float = field(default_factory=time.monotonic)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def elapsed_ms(self) -> float:
        """Get elapsed time since run start in milliseconds."""
        return (time.monotonic() - self.start_time) * 1000

    def to_log_context(self) -> dict[str, Any]:
        """Get context dict for logging."""
        ctx: dict[str, Any] = {"trace_id": self.trace_id, "elapsed_ms": round(self.elapsed_ms, 2)}
        ctx.update(self.extra)
        return ctx


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[rem])
    return "".join(reversed(digits))


def create_trace_id() -> str:
    """Generate a trace id.

    Format: ``trace_<base36 epoch millis>_<6 random base36 chars>``
    Example: trace_lz3k9q1a_4fj2kq
    """
    now = _to_base36(int(time.time() * 1000))
    rand = "".join(secrets.choice(_BASE36_ALPHABET) for _ in range(6))
    return f"{TRACE_ID_PREFIX}{now}_{rand}"


def generate_id(random_length: int = 10) -> str:
    """Time-ordered opaque id for stored records: base36 epoch millis + random suffix."""
    now = _to_base36(int(time.time() * 1000))
    rand = "".join(secrets.choice(_BASE36_ALPHABET) for _ in range(random_length))
    return f"{now}{rand}"


def get_trace_context() -> TraceContext | None:
    """Get the current trace context, or None outside of an agent run."""
    return _trace_context.get()


@contextmanager
def trace_scope(trace_id: str | None = None, **extra: Any) -> Iterator[TraceContext]:
    """Bind a trace context for the duration of the block."""
    ctx = TraceContext(trace_id=trace_id or create_trace_id(), extra=extra)
    token = _trace_context.set(ctx)
    try:
        yield ctx
    finally:
        _trace_context.reset(token)


def log_agent_event(level: AgentLogLevel, event: str, payload: dict[str, Any] | None = None) -> None:
    """Emit a structured ``agent_trace`` log record.

    Args:
        level: Log level name
        event: Short event name (e.g. "run_started", "tool_calls")
        payload: Structured fields attached to the record
    """
    from utils.logger import logger

    fields = dict(payload or {})
    fields["event"] = event
    log_fn = getattr(logger, level, logger.info)
    log_fn(f"agent_trace: {event}", agent_trace=True, **fields)
