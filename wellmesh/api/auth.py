"""Authentication API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from wellmesh.core.config import settings
from wellmesh.middleware.rate_limit import rate_limiter
from wellmesh.middleware.session import get_bearer_token, require_user
from wellmesh.schemas.auth import (
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    SessionUser,
    TokenResponse,
)
from wellmesh.schemas.user import UserResponse
from wellmesh.services.auth import (
    AuthService,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    InvalidRefreshTokenError,
    InvalidVerificationTokenError,
    get_auth_service,
)

logger = logging.getLogger(__name__)

auth_limiter = rate_limiter(settings.auth_rate_limit, settings.rate_limit_window_seconds)

router = APIRouter(prefix="/auth", tags=["auth"], dependencies=[Depends(auth_limiter)])


@router.get("/verify-email", response_model=MessageResponse)
async def verify_email(
    token: str = Query(..., min_length=1),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Confirm an e-mail address with the token from the sign-up link."""
    try:
        await auth_service.verify_email(token)
    except InvalidVerificationTokenError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return MessageResponse(message="Email verified successfully. You can now log in.")


@router.post("/login", response_model=LoginResponse)
async def login(
    request: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    """Authenticate and get JWT tokens.

    Returns a one hour access token and a one day refresh token. The
    refresh token is stored server-side until logout or rotation.
    """
    try:
        tokens, user = await auth_service.login(request.email, request.password)
    except InvalidCredentialsError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        ) from e
    except EmailNotVerifiedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e)) from e

    return LoginResponse(**tokens, user=UserResponse.model_validate(user))


@router.post("/token/refresh", response_model=TokenResponse)
async def refresh_tokens(
    request: RefreshRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    """Refresh access token using refresh token.

    Returns new access and refresh tokens (token rotation).
    """
    try:
        tokens = await auth_service.refresh(request.refresh_token)
    except InvalidRefreshTokenError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e)) from e
    return TokenResponse(**tokens)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    body: LogoutRequest,
    request: Request,
    current_user: SessionUser = Depends(require_user),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Log out the current user.

    Blacklists the presented access token for the rest of its lifetime and
    deletes the refresh token record.
    """
    access_token = get_bearer_token(request)
    try:
        await auth_service.logout(access_token, body.refresh_token)
    except (InvalidRefreshTokenError, InvalidCredentialsError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: SessionUser = Depends(require_user),
    auth_service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    """Get the current user's information."""
    user = await auth_service.get_user_by_id(current_user.id)
    if user is None or user.is_deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return UserResponse.model_validate(user)
