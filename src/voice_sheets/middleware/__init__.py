"""Request identity, rate limiting and audit middleware."""

from .audit import AuditMiddleware
from .identity import RequestContextMiddleware
from .security import BodySizeLimitMiddleware, UserRateLimitMiddleware

__all__ = [
    "AuditMiddleware",
    "BodySizeLimitMiddleware",
    "RequestContextMiddleware",
    "UserRateLimitMiddleware",
]
