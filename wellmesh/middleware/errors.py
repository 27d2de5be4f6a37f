"""Request rejections raised by the session and rate-limit gates.

Every rejection is rendered as ``{"error": "<message>"}``; no internal detail
reaches the client.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from wellmesh.core.kv_store import StoreUnavailableError

logger = logging.getLogger(__name__)


class RequestRejected(Exception):
    """Base class for a request stopped before reaching its handler."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, headers: dict[str, str] | None = None):
        super().__init__(message)
        self.message = message
        self.headers = headers or {}


class Unauthenticated(RequestRejected):
    """Missing, malformed, revoked, expired or forged credentials."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str):
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"})


class Forbidden(RequestRejected):
    """Valid identity without the required role or ownership."""

    status_code = status.HTTP_403_FORBIDDEN


class TooManyRequests(RequestRejected):
    """Rate limit exceeded for the current window."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, message: str, retry_after: int | None = None):
        headers = {"Retry-After": str(retry_after)} if retry_after is not None else None
        super().__init__(message, headers=headers)
        self.retry_after = retry_after


class ServiceUnavailable(RequestRejected):
    """A gate needed the key-value store and its policy is fail-closed."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


def register_exception_handlers(app: FastAPI) -> None:
    """Render rejections, HTTP errors and store outages as small JSON error bodies."""

    @app.exception_handler(RequestRejected)
    async def request_rejected_handler(request: Request, exc: RequestRejected) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message},
            headers=exc.headers or None,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable_handler(
        request: Request, exc: StoreUnavailableError
    ) -> JSONResponse:
        logger.error(f"Store unavailable for {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": "Service temporarily unavailable."},
        )
