"""Pydantic schemas for authentication API."""

from pydantic import BaseModel, EmailStr, Field

from wellmesh.models.user import Role
from wellmesh.schemas.user import UserResponse


class SessionUser(BaseModel):
    """Identity decoded from a verified access token."""

    id: int
    role: Role


class LoginRequest(BaseModel):
    """Request for login."""

    email: EmailStr
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    """Access/refresh token pair."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(description="Access token expiry in seconds")


class LoginResponse(TokenResponse):
    """Tokens plus the authenticated user."""

    user: UserResponse


class RefreshRequest(BaseModel):
    """Request for token refresh."""

    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(BaseModel):
    """Request for logout; the access token comes from the Authorization header."""

    refresh_token: str = Field(..., min_length=1)


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str
