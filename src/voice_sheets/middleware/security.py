"""Request size limits and per-user rate limiting."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from voice_sheets.config import RateLimitSettings

logger = logging.getLogger(__name__)

EXEMPT_PATHS = frozenset({"/health"})


class BodySizeLimitExceeded(Exception):
    """Raised when request body exceeds size limit."""


@dataclass
class RateLimitBucket:
    """Sliding window rate limit bucket."""

    timestamps: list[float] = field(default_factory=list)

    def cleanup(self, now: float, window_seconds: float) -> None:
        cutoff = now - window_seconds
        self.timestamps = [t for t in self.timestamps if t > cutoff]

    def add_request(self, now: float) -> None:
        self.timestamps.append(now)

    def count(self) -> int:
        return len(self.timestamps)


class SlidingWindowRateLimiter:
    """Sliding window rate limiter keyed by an arbitrary string.

    Process-local: with several uvicorn workers each keeps its own counts.
    """

    _CLEANUP_INTERVAL: float = 60.0
    _BUCKET_MAX_AGE: float = 300.0

    def __init__(
        self,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._buckets: dict[str, RateLimitBucket] = defaultdict(RateLimitBucket)
        self._window_seconds = window_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_cleanup: float = 0.0

    async def allow(self, key: str, limit: int) -> bool:
        async with self._lock:
            now = self._clock()

            if now - self._last_cleanup > self._CLEANUP_INTERVAL:
                self._cleanup_old_buckets_unlocked(now)
                self._last_cleanup = now

            bucket = self._buckets[key]
            bucket.cleanup(now, self._window_seconds)

            if bucket.count() >= limit:
                return False

            bucket.add_request(now)
            return True

    def _cleanup_old_buckets_unlocked(self, now: float) -> None:
        """Remove buckets with no recent activity. Must be called under lock."""
        cutoff = now - max(self._BUCKET_MAX_AGE, self._window_seconds)
        stale = [
            key
            for key, bucket in self._buckets.items()
            if not bucket.timestamps or max(bucket.timestamps) < cutoff
        ]
        for key in stale:
            del self._buckets[key]


def _sanitize_ip(value: str) -> str:
    return "".join(c for c in value if 0x20 <= ord(c) < 0x7F)


def get_client_ip(request: Request, trust_forwarded_headers: bool = False) -> str:
    """Get client IP with optional trusted proxy header support."""
    if trust_forwarded_headers:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return _sanitize_ip(forwarded_for.split(",")[0].strip())

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return _sanitize_ip(real_ip.strip())

    if request.client:
        return request.client.host

    return "unknown"


def _error(status_code: int, error_type: str, message: str, **headers: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"type": error_type, "message": message, "retryable": False}},
        headers=headers or None,
    )


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Rejects request bodies larger than ``max_body_size_bytes`` with 413."""

    def __init__(self, app: Callable, max_body_size_bytes: int) -> None:
        super().__init__(app)
        self.max_body_size_bytes = max_body_size_bytes

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        # Content-Length is only a fast path; the body is always measured.
        content_length = request.headers.get("content-length")
        if content_length:
            try:
                if int(content_length) > self.max_body_size_bytes:
                    return self._too_large()
            except ValueError:
                logger.warning("Invalid Content-Length header: %r", content_length)

        if request.method in ("POST", "PUT", "PATCH"):
            try:
                await self._read_body_limited(request)
            except BodySizeLimitExceeded:
                logger.warning("Request body exceeded limit during streaming")
                return self._too_large()

        return await call_next(request)

    def _too_large(self) -> JSONResponse:
        return _error(
            413,
            "RequestTooLarge",
            f"Request body exceeds {self.max_body_size_bytes} bytes",
        )

    async def _read_body_limited(self, request: Request) -> None:
        buf = bytearray()
        async for chunk in request.stream():
            buf.extend(chunk)
            if len(buf) > self.max_body_size_bytes:
                raise BodySizeLimitExceeded(f"Body exceeded {self.max_body_size_bytes} bytes")
        # Cache the body so downstream handlers can read it
        request._body = bytes(buf)


class UserRateLimitMiddleware(BaseHTTPMiddleware):
    """Per-user request limit.

    Runs after the identity middleware has put ``user_id`` on
    ``request.state``. Limiter failures let the request through.
    """

    def __init__(
        self,
        app: Callable,
        config: RateLimitSettings,
        limiter: SlidingWindowRateLimiter | None = None,
    ) -> None:
        super().__init__(app)
        self.config = config
        self.rate_limiter = limiter or SlidingWindowRateLimiter(config.window_seconds)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.config.enabled or request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        user_id = getattr(request.state, "user_id", None)
        if user_id:
            try:
                allowed = await self.rate_limiter.allow(
                    f"user:{user_id}", self.config.requests_per_minute
                )
            except Exception:
                logger.exception("Rate limiter failed; allowing request user=%s", user_id)
                allowed = True
            if not allowed:
                logger.warning("Rate limit exceeded for user: %s", user_id)
                return _error(
                    429,
                    "RateLimitExceeded",
                    "Too many requests from this user",
                    **{"Retry-After": str(self.config.window_seconds)},
                )

        return await call_next(request)
