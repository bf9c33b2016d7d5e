"""Request audit logging with log-injection and secret masking."""

from __future__ import annotations

import logging
import re
import time
import uuid
from functools import lru_cache
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from voice_sheets.middleware.security import EXEMPT_PATHS, get_client_ip
from voice_sheets.utils.masking import SENSITIVE_KEY_MARKERS

logger = logging.getLogger(__name__)

# Control character pattern for log injection prevention.
_CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")


def _sanitize_log_value(value: str) -> str:
    """Replace control characters (newlines, tabs, etc.) to prevent log injection."""
    return _CONTROL_CHAR_RE.sub("_", value)


@lru_cache(maxsize=64)
def _get_mask_pattern(marker: str) -> re.Pattern:
    return re.compile(
        rf'(["\']?\w*{re.escape(marker)}\w*["\']?\s*[:=]\s*)["\']?[^"\'\s,}}]*["\']?',
        re.IGNORECASE,
    )


def mask_exception_message(message: str) -> str:
    """Mask ``key=value`` / ``"key": "value"`` pairs whose key looks secret."""
    masked = message
    for marker in SENSITIVE_KEY_MARKERS:
        masked = _get_mask_pattern(marker).sub(r"\1***MASKED***", masked)
    return masked


class AuditMiddleware(BaseHTTPMiddleware):
    """Logs one start line and one end line per request.

    The end line carries user id, status and duration. Exception messages
    are masked before being logged.
    """

    def __init__(
        self,
        app: Callable,
        enabled: bool = True,
        trust_forwarded_headers: bool = False,
    ) -> None:
        super().__init__(app)
        self.enabled = enabled
        self._trust_forwarded_headers = trust_forwarded_headers

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled or request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        request_id = _sanitize_log_value(request.headers.get("x-request-id", str(uuid.uuid4())))
        start_time = time.time()
        safe_path = _sanitize_log_value(request.url.path)
        safe_ip = _sanitize_log_value(
            get_client_ip(request, trust_forwarded_headers=self._trust_forwarded_headers)
        )

        logger.info(
            "REQUEST_START request_id=%s method=%s path=%s client_ip=%s",
            request_id,
            request.method,
            safe_path,
            safe_ip,
        )

        error_message: str | None = None
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception as exc:
            error_message = _sanitize_log_value(mask_exception_message(str(exc)))
            raise
        finally:
            duration_ms = int((time.time() - start_time) * 1000)
            # Set by the identity middleware, which runs inside this one.
            user_id = _sanitize_log_value(
                str(getattr(request.state, "user_id", None) or "anonymous")
            )
            if error_message:
                logger.error(
                    "REQUEST_END request_id=%s user_id=%s method=%s path=%s "
                    "status=%s duration_ms=%d error=%s",
                    request_id,
                    user_id,
                    request.method,
                    safe_path,
                    status_code,
                    duration_ms,
                    error_message,
                )
            else:
                logger.info(
                    "REQUEST_END request_id=%s user_id=%s method=%s path=%s "
                    "status=%s duration_ms=%d",
                    request_id,
                    user_id,
                    request.method,
                    safe_path,
                    status_code,
                    duration_ms,
                )
