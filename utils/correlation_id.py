from contextvars import ContextVar, Token
from typing import Optional
from uuid import uuid4

CORRELATION_HEADER = "X-Correlation-ID"

correlation_id_context: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def bind_correlation_id(correlation_id: Optional[str] = None) -> Token:
    """Bind the inbound id, or a fresh uuid4 when the caller sent none."""
    return correlation_id_context.set(correlation_id or str(uuid4()))


def reset_correlation_id(token: Token) -> None:
    correlation_id_context.reset(token)
