"""Authentication service: passwords, token issue/rotation/revocation and sign-up."""

import logging
import secrets
from datetime import UTC, datetime, timedelta
from typing import Any

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerifyMismatchError
from fastapi import Depends
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from wellmesh.core.config import settings
from wellmesh.core.database import get_db
from wellmesh.models.refresh_token import RefreshToken
from wellmesh.models.user import Role, User
from wellmesh.services import token_codec
from wellmesh.services.cache import CacheService, get_cache_service
from wellmesh.services.token_codec import InvalidSignatureError, TokenError

logger = logging.getLogger(__name__)

# Argon2 password hasher with recommended parameters
# Memory: 64 MiB, Time: 3 iterations, Parallelism: 4
ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)

USERS_CACHE_PREFIX = "users:"


class AuthError(Exception):
    """Base authentication error."""

    pass


class InvalidCredentialsError(AuthError):
    """Invalid email or password."""

    pass


class EmailNotVerifiedError(AuthError):
    """The account exists but its e-mail address is not verified yet."""

    pass


class InvalidRefreshTokenError(AuthError):
    """Refresh token is unknown, revoked, expired or belongs to someone else."""

    pass


class InvalidVerificationTokenError(AuthError):
    """E-mail verification token is unknown or already used."""

    pass


class RegistrationError(AuthError):
    """Sign-up rejected (bad sign-up secret)."""

    pass


class UserConflictError(RegistrationError):
    """Username or e-mail already taken."""

    pass


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash using constant-time comparison."""
    try:
        ph.verify(password_hash, password)
        return True
    except (VerifyMismatchError, InvalidHashError):
        return False


def create_access_token(user_id: int, role: Role | str) -> str:
    """Create a short-lived access token carrying the user's id and role."""
    # jti makes every issued token distinct, so revoking one never revokes another
    payload = {
        "id": user_id,
        "role": Role(role).value,
        "type": "access",
        "jti": secrets.token_hex(16),
    }
    return token_codec.sign(
        payload,
        settings.secret_key,
        settings.access_token_expires_in,
        algorithm=settings.jwt_algorithm,
    )


def create_refresh_token(user_id: int) -> str:
    """Create a long-lived refresh token."""
    payload = {"id": user_id, "type": "refresh", "jti": secrets.token_hex(16)}
    return token_codec.sign(
        payload,
        settings.secret_key,
        settings.refresh_token_expires_in,
        algorithm=settings.jwt_algorithm,
    )


def decode_access_token(token: str) -> dict[str, Any]:
    """Validate an access token and return its payload."""
    payload = token_codec.verify(token, settings.secret_key, settings.jwt_algorithm)
    if payload.get("type") != "access":
        raise InvalidSignatureError("Not an access token")
    return payload


def decode_refresh_token(token: str) -> dict[str, Any]:
    """Validate a refresh token and return its payload."""
    payload = token_codec.verify(token, settings.secret_key, settings.jwt_algorithm)
    if payload.get("type") != "refresh":
        raise InvalidSignatureError("Not a refresh token")
    return payload


class AuthService:
    """Service for authentication operations."""

    def __init__(self, session: AsyncSession, cache: CacheService):
        self.session = session
        self.cache = cache

    async def get_user_by_email(self, email: str) -> User | None:
        result = await self.session.execute(
            select(User).where(func.lower(User.email) == email.lower())
        )
        return result.scalar_one_or_none()

    async def get_user_by_id(self, user_id: int) -> User | None:
        return await self.session.get(User, user_id)

    async def authenticate(self, email: str, password: str) -> User:
        """Authenticate a user and return the user object.

        Raises InvalidCredentialsError for both "user not found" and
        "wrong password" to prevent user enumeration.
        """
        user = await self.get_user_by_email(email)

        if user is None or user.is_deleted:
            # Perform a dummy hash to prevent timing attacks
            verify_password(password, hash_password("dummy"))
            raise InvalidCredentialsError("Invalid email or password")

        if not verify_password(password, user.password_hash):
            raise InvalidCredentialsError("Invalid email or password")

        if not user.is_verified:
            raise EmailNotVerifiedError("Please verify your email before logging in.")

        return user

    async def _issue_tokens(self, user: User) -> dict[str, Any]:
        refresh_token = create_refresh_token(user.id)
        self.session.add(
            RefreshToken(
                token=refresh_token,
                user_id=user.id,
                expires_at=datetime.now(UTC)
                + timedelta(seconds=settings.refresh_token_ttl_seconds),
            )
        )
        return {
            "access_token": create_access_token(user.id, user.role),
            "refresh_token": refresh_token,
            "token_type": "bearer",
            "expires_in": settings.access_token_ttl_seconds,
        }

    async def login(self, email: str, password: str) -> tuple[dict[str, Any], User]:
        """Check credentials, then issue an access/refresh pair and persist the refresh token."""
        user = await self.authenticate(email, password)
        tokens = await self._issue_tokens(user)
        await self.session.commit()

        logger.info(f"User {user.id} logged in")
        return tokens, user

    async def _get_refresh_row(self, refresh_token: str) -> RefreshToken | None:
        result = await self.session.execute(
            select(RefreshToken).where(RefreshToken.token == refresh_token)
        )
        return result.scalar_one_or_none()

    async def refresh(self, refresh_token: str) -> dict[str, Any]:
        """Exchange a refresh token for a new pair. The old refresh token is consumed."""
        row = await self._get_refresh_row(refresh_token)
        if row is None:
            raise InvalidRefreshTokenError("Invalid refresh token")

        try:
            payload = decode_refresh_token(refresh_token)
        except TokenError as e:
            # Expired or otherwise unusable; drop the row so it cannot be retried
            await self.session.delete(row)
            await self.session.commit()
            raise InvalidRefreshTokenError("Invalid or expired refresh token") from e

        if payload.get("id") != row.user_id:
            raise InvalidRefreshTokenError("Invalid refresh token")

        user = await self.get_user_by_id(row.user_id)
        if user is None or user.is_deleted:
            await self.session.delete(row)
            await self.session.commit()
            raise InvalidRefreshTokenError("User no longer exists")

        await self.session.delete(row)
        tokens = await self._issue_tokens(user)
        await self.session.commit()

        logger.info(f"Rotated refresh token for user {user.id}")
        return tokens

    async def logout(self, access_token: str, refresh_token: str) -> None:
        """Revoke the access token and delete the refresh token record.

        The refresh token must belong to the access token's subject. The
        blacklist entry is written first so a store outage leaves the
        refresh record in place.
        """
        try:
            payload = decode_access_token(access_token)
        except TokenError as e:
            raise InvalidCredentialsError("Invalid or expired token.") from e

        row = await self._get_refresh_row(refresh_token)
        if row is None or row.user_id != payload.get("id"):
            raise InvalidRefreshTokenError("Invalid refresh token")

        await self.cache.blacklist_token(access_token, settings.blacklist_ttl_seconds)
        await self.session.delete(row)
        await self.session.commit()

        logger.info(f"User {row.user_id} logged out")

    async def verify_email(self, token: str) -> User:
        """Consume a verification token and mark its user verified."""
        user_id = await self.cache.pop_verification_token(token)
        if user_id is None:
            raise InvalidVerificationTokenError("Invalid or expired verification token")

        user = await self.get_user_by_id(user_id)
        if user is None or user.is_deleted:
            raise InvalidVerificationTokenError("Invalid or expired verification token")

        if not user.is_verified:
            user.is_verified = True
            await self.session.commit()
            await self.cache.delete_pattern(USERS_CACHE_PREFIX)
            logger.info(f"Verified e-mail for user {user.id}")

        return user

    async def register(
        self,
        *,
        email: str,
        username: str,
        password: str,
        role: Role,
        secret_code: str | None,
        phone: str | None = None,
        image_url: str | None = None,
    ) -> tuple[User, str]:
        """Create an unverified user and return it with its verification link."""
        expected = settings.signup_secret_for(role.value)
        if not expected or not secret_code or not secrets.compare_digest(expected, secret_code):
            logger.warning(f"Sign-up rejected for role {role.value}: bad secret code")
            raise RegistrationError("Invalid secret code for the requested role")

        existing = await self.session.execute(
            select(User.id).where(
                or_(func.lower(User.email) == email.lower(), User.username == username)
            )
        )
        if existing.first() is not None:
            raise UserConflictError("A user with this email or username already exists")

        user = User(
            email=email.lower(),
            username=username,
            password_hash=hash_password(password),
            role=role,
            phone=phone,
            image_url=image_url,
        )
        self.session.add(user)
        await self.session.commit()
        await self.session.refresh(user)

        token = await self.cache.store_verification_token(user.id)
        await self.cache.delete_pattern(USERS_CACHE_PREFIX)

        verify_url = f"{settings.frontend_url.rstrip('/')}/verify-email?token={token}"
        logger.info(f"Created user {user.id} with role {role.value}")
        logger.debug(f"Verification link for user {user.id}: {verify_url}")
        return user, verify_url

    async def purge_expired_refresh_tokens(self) -> int:
        """Delete refresh token rows past their expiry."""
        result = await self.session.execute(
            delete(RefreshToken).where(RefreshToken.expires_at < datetime.now(UTC))
        )
        await self.session.commit()
        count = result.rowcount or 0
        if count:
            logger.info(f"Purged {count} expired refresh tokens")
        return count


def get_auth_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache_service),
) -> AuthService:
    """Dependency to get the auth service."""
    return AuthService(db, cache)
