"""Pydantic schemas for the users API."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from wellmesh.models.user import Role


class UserCreateRequest(BaseModel):
    """Self sign-up. ``secret_code`` must match the sign-up secret for ``role``."""

    email: EmailStr
    username: str = Field(
        ...,
        min_length=3,
        max_length=100,
        pattern=r"^[a-zA-Z][a-zA-Z0-9_.-]*$",
    )
    password: str = Field(..., min_length=8, max_length=128)
    role: Role
    secret_code: str | None = None
    phone: str | None = Field(None, max_length=50)
    image_url: str | None = Field(None, max_length=500)


class UserUpdateRequest(BaseModel):
    """Partial profile update. Only admins may change ``role``."""

    username: str | None = Field(
        None,
        min_length=3,
        max_length=100,
        pattern=r"^[a-zA-Z][a-zA-Z0-9_.-]*$",
    )
    phone: str | None = Field(None, max_length=50)
    image_url: str | None = Field(None, max_length=500)
    role: Role | None = None


class UserResponse(BaseModel):
    """Public view of a user."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    role: Role
    phone: str | None = None
    image_url: str | None = None
    is_verified: bool
    created_at: datetime | None = None


class UserListResponse(BaseModel):
    """One page of users."""

    total: int
    page: int
    total_pages: int
    users: list[UserResponse]


class SignupResponse(BaseModel):
    """Result of a successful sign-up."""

    message: str
    verify_url: str | None = Field(
        None, description="Returned only in debug mode; normally delivered by e-mail"
    )
