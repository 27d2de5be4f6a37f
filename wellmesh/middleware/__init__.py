"""Request gates and middleware for the WellMesh backend."""

from wellmesh.middleware.errors import (
    Forbidden,
    RequestRejected,
    ServiceUnavailable,
    TooManyRequests,
    Unauthenticated,
    register_exception_handlers,
)
from wellmesh.middleware.rate_limit import FixedWindowRateLimiter, rate_limiter
from wellmesh.middleware.security_headers import SecurityHeadersMiddleware
from wellmesh.middleware.session import SessionGuard, auth_service, get_bearer_token

__all__ = [
    "FixedWindowRateLimiter",
    "Forbidden",
    "RequestRejected",
    "SecurityHeadersMiddleware",
    "ServiceUnavailable",
    "SessionGuard",
    "TooManyRequests",
    "Unauthenticated",
    "auth_service",
    "get_bearer_token",
    "rate_limiter",
    "register_exception_handlers",
]
