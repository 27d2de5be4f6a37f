"""Signing and verification of JSON Web Tokens with a symmetric secret."""

import re
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from jwt.exceptions import PyJWTError

DEFAULT_ALGORITHM = "HS256"

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhdw]?)\s*$", re.IGNORECASE)
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}


class TokenError(Exception):
    """JWT token error."""

    pass


class TokenExpiredError(TokenError):
    """JWT token has expired."""

    pass


class InvalidSignatureError(TokenError):
    """JWT token is malformed, tampered with, or signed with another key."""

    pass


def parse_duration(value: int | str | timedelta) -> int:
    """Convert ``3600``, ``"90s"``, ``"30m"``, ``"1h"``, ``"1d"`` or ``"2w"`` to seconds."""
    if isinstance(value, timedelta):
        seconds = int(value.total_seconds())
    elif isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    elif isinstance(value, int):
        seconds = value
    else:
        match = _DURATION_RE.match(str(value))
        if not match:
            raise ValueError(f"Invalid duration: {value!r}")
        seconds = int(match.group(1)) * _UNIT_SECONDS[match.group(2).lower()]
    if seconds <= 0:
        raise ValueError(f"Duration must be positive: {value!r}")
    return seconds


def sign(
    payload: dict[str, Any],
    secret: str,
    expires_in: int | str | timedelta,
    algorithm: str = DEFAULT_ALGORITHM,
) -> str:
    """Sign ``payload`` into a token that expires ``expires_in`` from now.

    ``iat`` and ``exp`` are set here and override any values in ``payload``.
    """
    now = datetime.now(UTC)
    claims = {
        **payload,
        "iat": now,
        "exp": now + timedelta(seconds=parse_duration(expires_in)),
    }
    # PyJWT 2.x returns str; older type stubs may declare bytes
    return str(jwt.encode(claims, secret, algorithm=algorithm))


def verify(token: str, secret: str, algorithm: str = DEFAULT_ALGORITHM) -> dict[str, Any]:
    """Verify signature and expiry and return the decoded payload.

    Raises TokenExpiredError when ``exp`` is in the past and InvalidSignatureError
    for anything else that prevents verification.
    """
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=[algorithm],
            options={"require": ["exp"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenExpiredError("Token has expired") from e
    except PyJWTError as e:
        raise InvalidSignatureError(f"Invalid token: {e}") from e
