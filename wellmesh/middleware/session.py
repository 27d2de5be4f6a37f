"""Session gate: bearer token authentication plus role and ownership authorization.

A request passes only if, in order:

1. it carries ``Authorization: Bearer <token>``,
2. the token is not blacklisted,
3. the token verifies as an unexpired access token,
4. (roles configured) the caller's role is one of the allowed roles,
5. (id lock) the ``id`` path parameter is the caller's own id, or the caller is an admin.

The first failing step rejects the request. The decoded identity is returned
to the route and stored on ``request.state.user``.
"""

import logging
from collections.abc import Iterable

from fastapi import Depends, Request
from pydantic import ValidationError

from wellmesh.core.config import settings
from wellmesh.core.kv_store import StoreUnavailableError
from wellmesh.middleware.errors import Forbidden, ServiceUnavailable, Unauthenticated
from wellmesh.models.user import Role
from wellmesh.schemas.auth import SessionUser
from wellmesh.services.auth import decode_access_token
from wellmesh.services.cache import CacheService, get_cache_service
from wellmesh.services.token_codec import TokenError, TokenExpiredError

logger = logging.getLogger(__name__)

NO_TOKEN_MESSAGE = "Access denied. No token provided."
BLACKLISTED_MESSAGE = "Access denied. Token is blacklisted."
INVALID_TOKEN_MESSAGE = "Invalid or expired token."
FORBIDDEN_MESSAGE = "Forbidden. You do not have access."
STORE_DOWN_MESSAGE = "Authentication is temporarily unavailable."


def get_bearer_token(request: Request) -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


class SessionGuard:
    """Reusable per-route authentication/authorization dependency.

    Args:
        id_lock: Restrict callers to their own ``{id}`` path parameter (admins bypass).
        allowed_roles: Roles allowed through; empty means any authenticated role.
        fail_open: Skip the blacklist check when the key-value store is down.
            Defaults to the SESSION_FAIL_OPEN setting.
    """

    def __init__(
        self,
        id_lock: bool = False,
        allowed_roles: Iterable[Role | str] = (),
        fail_open: bool | None = None,
    ) -> None:
        self.id_lock = id_lock
        self.allowed_roles = frozenset(Role(role) for role in allowed_roles)
        self.fail_open = fail_open

    def __repr__(self) -> str:
        roles = sorted(role.value for role in self.allowed_roles)
        return f"SessionGuard(id_lock={self.id_lock}, allowed_roles={roles})"

    async def __call__(
        self,
        request: Request,
        cache: CacheService = Depends(get_cache_service),
    ) -> SessionUser:
        path = request.url.path

        token = get_bearer_token(request)
        if not token:
            logger.warning(f"Request without token: {request.method} {path}")
            raise Unauthenticated(NO_TOKEN_MESSAGE)

        if await self._is_blacklisted(cache, token, request):
            logger.warning(f"Revoked token used for: {request.method} {path}")
            raise Unauthenticated(BLACKLISTED_MESSAGE)

        try:
            user = SessionUser.model_validate(decode_access_token(token))
        except TokenExpiredError as e:
            logger.debug(f"Expired token for: {request.method} {path}")
            raise Unauthenticated(INVALID_TOKEN_MESSAGE) from e
        except (TokenError, ValidationError) as e:
            logger.warning(f"Invalid token for: {request.method} {path} - {e}")
            raise Unauthenticated(INVALID_TOKEN_MESSAGE) from e

        request.state.user = user

        if self.allowed_roles and user.role not in self.allowed_roles:
            logger.warning(f"Role {user.role.value} denied for: {request.method} {path}")
            raise Forbidden(FORBIDDEN_MESSAGE)

        if self.id_lock and not self._owns_target(user, request):
            logger.warning(f"User {user.id} denied access to {request.method} {path}")
            raise Forbidden(FORBIDDEN_MESSAGE)

        return user

    async def _is_blacklisted(self, cache: CacheService, token: str, request: Request) -> bool:
        try:
            return await cache.is_token_blacklisted(token)
        except StoreUnavailableError as e:
            fail_open = settings.session_fail_open if self.fail_open is None else self.fail_open
            if fail_open:
                logger.warning(f"Blacklist check skipped, store unavailable: {e}")
                return False
            logger.error(f"Blacklist check failed for {request.url.path}: {e}")
            raise ServiceUnavailable(STORE_DOWN_MESSAGE) from e

    @staticmethod
    def _owns_target(user: SessionUser, request: Request) -> bool:
        if user.role == Role.ADMIN:
            return True
        raw_id = request.path_params.get("id")
        try:
            return raw_id is not None and int(raw_id) == user.id
        except (TypeError, ValueError):
            return False


def auth_service(id_lock: bool = False, allowed_roles: Iterable[Role | str] = ()) -> SessionGuard:
    """Build a session gate, e.g. ``Depends(auth_service(True))``."""
    return SessionGuard(id_lock=id_lock, allowed_roles=allowed_roles)


require_user = SessionGuard()
require_admin = SessionGuard(allowed_roles=[Role.ADMIN])
