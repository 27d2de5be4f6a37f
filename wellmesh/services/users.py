"""User directory queries with short-lived response caching."""

import logging
import math
from typing import Any

from fastapi import Depends
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from wellmesh.core.database import get_db
from wellmesh.core.kv_store import StoreUnavailableError
from wellmesh.models.user import Role, User
from wellmesh.schemas.auth import SessionUser
from wellmesh.schemas.user import UserListResponse, UserResponse, UserUpdateRequest
from wellmesh.services.auth import USERS_CACHE_PREFIX, UserConflictError
from wellmesh.services.cache import CacheService, get_cache_service

logger = logging.getLogger(__name__)


class UserNotFoundError(Exception):
    """No active user with the given id."""

    pass


class RoleChangeForbiddenError(Exception):
    """Only admins may change a user's role."""

    pass


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class UserService:
    """Read and modify users; every write invalidates the ``users:`` cache."""

    def __init__(self, session: AsyncSession, cache: CacheService):
        self.session = session
        self.cache = cache

    async def _cached(self, key: str) -> Any | None:
        # The cache is an optimization; an unreachable store reads as a miss
        try:
            return await self.cache.fetch_json(key)
        except StoreUnavailableError as e:
            logger.warning(f"Cache read skipped for {key}: {e}")
            return None

    async def _store(self, key: str, data: Any) -> None:
        try:
            await self.cache.set_json(key, data)
        except StoreUnavailableError as e:
            logger.warning(f"Cache write skipped for {key}: {e}")

    async def _invalidate(self) -> None:
        try:
            await self.cache.delete_pattern(USERS_CACHE_PREFIX)
        except StoreUnavailableError as e:
            logger.warning(f"Cache invalidation failed, entries expire on their own: {e}")

    async def _get_active(self, user_id: int) -> User:
        user = await self.session.get(User, user_id)
        if user is None or user.is_deleted:
            raise UserNotFoundError(f"User {user_id} not found")
        return user

    async def list_users(
        self,
        page: int = 1,
        limit: int = 10,
        role: Role | None = None,
        search: str | None = None,
    ) -> UserListResponse:
        """Return one page of non-deleted users, newest first."""
        role_key = role.value if role else ""
        search_key = (search or "").strip().lower()
        cache_key = (
            f"{USERS_CACHE_PREFIX}list:page={page}:limit={limit}:role={role_key}:search={search_key}"
        )
        cached = await self._cached(cache_key)
        if cached is not None:
            return UserListResponse.model_validate(cached)

        conditions = [User.is_deleted.is_(False)]
        if role:
            conditions.append(User.role == role)
        if search_key:
            pattern = f"%{_escape_like(search_key)}%"
            conditions.append(
                or_(
                    func.lower(User.username).like(pattern, escape="\\"),
                    func.lower(User.email).like(pattern, escape="\\"),
                )
            )

        total = (
            await self.session.execute(select(func.count(User.id)).where(*conditions))
        ).scalar() or 0
        result = await self.session.execute(
            select(User)
            .where(*conditions)
            .order_by(User.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        users = result.scalars().all()

        response = UserListResponse(
            total=total,
            page=page,
            total_pages=math.ceil(total / limit) if total else 0,
            users=[UserResponse.model_validate(u) for u in users],
        )
        await self._store(cache_key, response.model_dump(mode="json"))
        return response

    async def get_user(self, user_id: int) -> UserResponse:
        cache_key = f"{USERS_CACHE_PREFIX}{user_id}"
        cached = await self._cached(cache_key)
        if cached is not None:
            return UserResponse.model_validate(cached)

        user = await self._get_active(user_id)
        response = UserResponse.model_validate(user)
        await self._store(cache_key, response.model_dump(mode="json"))
        return response

    async def update_user(
        self, user_id: int, data: UserUpdateRequest, actor: SessionUser
    ) -> UserResponse:
        """Apply a partial update. ``actor`` has already passed the ownership check."""
        changes = data.model_dump(exclude_unset=True)
        if "role" in changes and actor.role != Role.ADMIN:
            raise RoleChangeForbiddenError("Only admins can change roles")

        user = await self._get_active(user_id)
        username = changes.get("username")
        if username and username != user.username:
            taken = await self.session.execute(
                select(User.id).where(User.username == username, User.id != user_id)
            )
            if taken.first() is not None:
                raise UserConflictError(f"Username {username} is already taken")

        for field, value in changes.items():
            if value is not None:
                setattr(user, field, value)
        await self.session.commit()
        await self.session.refresh(user)
        await self._invalidate()

        logger.info(f"User {user_id} updated by {actor.id}: {sorted(changes)}")
        return UserResponse.model_validate(user)

    async def remove_user(self, user_id: int) -> None:
        """Soft-delete a user."""
        user = await self._get_active(user_id)
        user.is_deleted = True
        await self.session.commit()
        await self._invalidate()
        logger.info(f"User {user_id} removed")


def get_user_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache_service),
) -> UserService:
    """Dependency to get the user service."""
    return UserService(db, cache)
