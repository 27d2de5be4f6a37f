"""Redis client provider for the key-value store."""

from functools import lru_cache

import redis.asyncio as aioredis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, TimeoutError

from wellmesh.core.config import settings

HEALTH_CHECK_INTERVAL = 30  # seconds
MAX_CONNECTIONS = 50
SOCKET_CONNECT_TIMEOUT = 5.0  # seconds
SOCKET_TIMEOUT = 5.0  # seconds
MAX_RETRIES = 3


def build_redis_client(redis_url: str) -> aioredis.Redis:
    """Create an asyncio Redis client with string responses.

    Transient ConnectionError/TimeoutError are retried with exponential
    backoff; anything left after that reaches the caller.
    """
    return aioredis.from_url(
        redis_url,
        encoding="utf-8",
        decode_responses=True,
        health_check_interval=HEALTH_CHECK_INTERVAL,
        socket_keepalive=True,
        socket_connect_timeout=SOCKET_CONNECT_TIMEOUT,
        socket_timeout=SOCKET_TIMEOUT,
        max_connections=MAX_CONNECTIONS,
        retry=Retry(ExponentialBackoff(), retries=MAX_RETRIES),
        retry_on_error=[ConnectionError, TimeoutError],
    )


@lru_cache
def get_redis() -> aioredis.Redis:
    """Process-wide Redis client (connections are opened lazily)."""
    return build_redis_client(settings.redis_url)


async def close_redis() -> None:
    """Close the shared client if it was created."""
    if get_redis.cache_info().currsize:
        await get_redis().aclose()
        get_redis.cache_clear()
