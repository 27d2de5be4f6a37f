"""Token blacklist, verification tokens and response caching on the key-value store."""

import json
import logging
import uuid
from typing import Any

from fastapi import Depends

from wellmesh.core.config import settings
from wellmesh.core.kv_store import KeyValueStore, get_kv_store

logger = logging.getLogger(__name__)

BLACKLIST_PREFIX = "blacklist:"
VERIFY_PREFIX = "verify:"


class CacheService:
    """Thin policy layer over a KeyValueStore.

    StoreUnavailableError from the store is propagated unchanged; callers
    decide whether a store outage fails open or closed.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    # --- Token blacklist ---

    async def is_token_blacklisted(self, token: str) -> bool:
        """Check if an access token has been revoked."""
        return await self.store.get(f"{BLACKLIST_PREFIX}{token}") == "true"

    async def blacklist_token(self, token: str, ttl_seconds: int | None = None) -> None:
        """Revoke an access token until ``ttl_seconds`` elapse (default: one token lifetime)."""
        ttl = ttl_seconds or settings.blacklist_ttl_seconds
        await self.store.set(f"{BLACKLIST_PREFIX}{token}", "true", ttl)

    # --- Generic cache ---

    async def fetch_cached_data(self, key: str) -> str | None:
        return await self.store.get(key)

    async def set_cache_data(self, key: str, value: str, ttl_seconds: int) -> None:
        await self.store.set(key, value, ttl_seconds)

    async def fetch_json(self, key: str) -> Any | None:
        cached = await self.store.get(key)
        if cached is None:
            return None
        try:
            return json.loads(cached)
        except ValueError:
            logger.warning(f"Discarding unreadable cache entry: {key}")
            await self.store.delete(key)
            return None

    async def set_json(self, key: str, data: Any, ttl_seconds: int | None = None) -> None:
        payload = json.dumps(data, default=str)
        await self.store.set(key, payload, ttl_seconds or settings.cache_ttl_seconds)

    async def delete_pattern(self, prefix: str) -> int:
        """Invalidate every cached entry whose key starts with ``prefix``."""
        removed = await self.store.delete_by_prefix(prefix)
        if removed:
            logger.debug(f"Invalidated {removed} cache entries under {prefix!r}")
        return removed

    # --- E-mail verification tokens ---

    async def store_verification_token(self, user_id: int) -> str:
        """Create a one-shot verification token for ``user_id``."""
        token = str(uuid.uuid4())
        await self.store.set(
            f"{VERIFY_PREFIX}{token}", str(user_id), settings.verify_token_ttl_seconds
        )
        return token

    async def pop_verification_token(self, token: str) -> int | None:
        """Return the user id for ``token`` and invalidate it."""
        key = f"{VERIFY_PREFIX}{token}"
        user_id = await self.store.get(key)
        if user_id is None:
            return None
        await self.store.delete(key)
        try:
            return int(user_id)
        except ValueError:
            logger.warning("Verification token mapped to a non-numeric user id")
            return None


def get_cache_service(store: KeyValueStore = Depends(get_kv_store)) -> CacheService:
    """Dependency to get the cache service."""
    return CacheService(store)
