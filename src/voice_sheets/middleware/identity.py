"""Caller identity from the fronting proxy's user header."""

from __future__ import annotations

import logging
import re
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from voice_sheets.auth.context import (
    USER_ID_HEADER,
    RequestContext,
    reset_request_context,
    set_request_context,
)
from voice_sheets.middleware.security import EXEMPT_PATHS, get_client_ip

logger = logging.getLogger(__name__)

_USER_ID_RE = re.compile(r"^[A-Za-z0-9_.@:|-]{1,128}$")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Builds a ``RequestContext`` for every non-exempt request.

    Requests without a well-formed ``X-User-Id`` header get 401.
    """

    def __init__(self, app: Callable, trust_forwarded_headers: bool = False) -> None:
        super().__init__(app)
        self._trust_forwarded_headers = trust_forwarded_headers

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        user_id = request.headers.get(USER_ID_HEADER, "").strip()
        if not _USER_ID_RE.match(user_id):
            return JSONResponse(
                status_code=401,
                content={
                    "error": {
                        "type": "Unauthenticated",
                        "message": "X-User-Id header required",
                        "retryable": False,
                    }
                },
            )

        context = RequestContext(
            user_id=user_id,
            ip_address=get_client_ip(
                request, trust_forwarded_headers=self._trust_forwarded_headers
            ),
            user_agent=request.headers.get("user-agent"),
            request_id=request.headers.get("x-request-id") or str(uuid.uuid4()),
        )
        token = set_request_context(context)
        try:
            request.state.user_id = user_id
            request.state.request_context = context
            return await call_next(request)
        finally:
            reset_request_context(token)
