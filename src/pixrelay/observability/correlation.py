"""Correlation ID management for request and background-job tracing."""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token

# Context variable for correlation ID - accessible across async calls
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"


def generate_correlation_id(prefix: str | None = None) -> str:
    """Generate a new correlation ID, optionally tagged with a job prefix."""
    cid = str(uuid.uuid4())
    return f"{prefix}:{cid}" if prefix else cid


def get_correlation_id() -> str:
    """Get current correlation ID from context."""
    return correlation_id_var.get()


def set_correlation_id(cid: str) -> Token[str]:
    """Set correlation ID in context."""
    return correlation_id_var.set(cid)


def reset_correlation_id(token: Token[str]) -> None:
    """Reset correlation ID to previous value."""
    correlation_id_var.reset(token)


@contextmanager
def correlation_scope(prefix: str) -> Iterator[str]:
    """Bind a fresh correlation ID for work running outside a request.

    Timer callbacks and the retention sweeper run on their own threads, where
    no middleware sets an ID.
    """
    cid = generate_correlation_id(prefix)
    token = set_correlation_id(cid)
    try:
        yield cid
    finally:
        reset_correlation_id(token)
