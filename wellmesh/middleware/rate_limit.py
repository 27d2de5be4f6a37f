"""Fixed-window rate limiting backed by the key-value store."""

import logging

from fastapi import Depends, Request, Response

from wellmesh.core.config import settings
from wellmesh.core.kv_store import KeyValueStore, StoreUnavailableError, get_kv_store
from wellmesh.core.request_utils import get_client_ip
from wellmesh.middleware.errors import ServiceUnavailable, TooManyRequests

logger = logging.getLogger(__name__)

RATE_LIMITED_MESSAGE = "Too many requests. Please try again later."
STORE_DOWN_MESSAGE = "Rate limiting is temporarily unavailable."


class FixedWindowRateLimiter:
    """Per-client request counter over fixed windows.

    Key ``rate:<client-ip>`` counts requests; the first request of a window
    creates it with a TTL of ``window_seconds`` and later requests never
    extend that TTL. At most ``limit`` requests are admitted per window.

    The increment and the limit comparison are a single atomic store
    operation, so concurrent requests cannot race past the limit. Rejected
    requests still increment the counter, so its stored value can exceed
    ``limit``; only the number of admitted requests is bounded.

    Use as a dependency: ``APIRouter(dependencies=[Depends(limiter)])``.
    """

    def __init__(
        self,
        limit: int = 10,
        window_seconds: int = 60,
        key_prefix: str = "rate",
        fail_open: bool | None = None,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be at least 1")
        self.limit = limit
        self.window_seconds = window_seconds
        self.key_prefix = key_prefix
        self.fail_open = fail_open
        logger.info(f"Rate limiter set to {limit} requests per {window_seconds} seconds")

    def __repr__(self) -> str:
        return f"FixedWindowRateLimiter(limit={self.limit}, window_seconds={self.window_seconds})"

    def key_for(self, client_id: str) -> str:
        return f"{self.key_prefix}:{client_id}"

    async def hit(self, store: KeyValueStore, client_id: str) -> int:
        """Count one request for ``client_id`` and return the window's count.

        Raises TooManyRequests when the count exceeds the limit.
        """
        key = self.key_for(client_id)
        count = await store.increment(key, self.window_seconds)
        if count > self.limit:
            try:
                retry_after = await store.ttl(key)
            except StoreUnavailableError as e:
                # Already over the limit; a lost TTL lookup must not admit the request
                logger.warning(f"Could not read window TTL for {key}: {e}")
                retry_after = None
            raise TooManyRequests(
                RATE_LIMITED_MESSAGE,
                retry_after=retry_after if retry_after is not None else self.window_seconds,
            )
        return count

    async def __call__(
        self,
        request: Request,
        response: Response,
        store: KeyValueStore = Depends(get_kv_store),
    ) -> None:
        client_ip = get_client_ip(request, settings.trusted_proxy_ips_set)
        try:
            count = await self.hit(store, client_ip)
        except TooManyRequests:
            logger.warning(f"Rate limit exceeded for {client_ip} on {request.url.path}")
            raise
        except StoreUnavailableError as e:
            fail_open = settings.rate_limit_fail_open if self.fail_open is None else self.fail_open
            if fail_open:
                logger.warning(f"Rate limiter error, allowing request: {e}")
                return
            logger.error(f"Rate limiter error, rejecting request: {e}")
            raise ServiceUnavailable(STORE_DOWN_MESSAGE) from e

        response.headers["X-RateLimit-Limit"] = str(self.limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.limit - count))


def rate_limiter(limit: int = 10, window_seconds: int = 60) -> FixedWindowRateLimiter:
    """Build a fixed-window limiter, e.g. ``rate_limiter(20, 60)`` for auth routes."""
    return FixedWindowRateLimiter(limit=limit, window_seconds=window_seconds)
