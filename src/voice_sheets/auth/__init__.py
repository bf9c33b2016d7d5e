"""Caller identity propagated from the fronting proxy."""

from voice_sheets.auth.context import (
    USER_ID_HEADER,
    RequestContext,
    get_request_context_optional,
    reset_request_context,
    set_request_context,
)

__all__ = [
    "RequestContext",
    "USER_ID_HEADER",
    "get_request_context_optional",
    "reset_request_context",
    "set_request_context",
]
