"""Request-scoped caller context."""

from __future__ import annotations

import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from datetime import datetime, timezone

USER_ID_HEADER = "x-user-id"


@dataclass(frozen=True)
class RequestContext:
    """Who is calling, and from where.

    The user id is supplied by the fronting identity proxy; this service
    does not authenticate callers itself.
    """

    user_id: str
    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


_request_context: ContextVar[RequestContext | None] = ContextVar(
    "request_context",
    default=None,
)


def set_request_context(ctx: RequestContext) -> Token[RequestContext | None]:
    """Set context and return reset token."""
    return _request_context.set(ctx)


def reset_request_context(token: Token[RequestContext | None]) -> None:
    """Reset context using token from set_request_context()."""
    _request_context.reset(token)


def get_request_context_optional() -> RequestContext | None:
    """Get context or None."""
    return _request_context.get()
