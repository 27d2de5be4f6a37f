from wellmesh.schemas.auth import (
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    SessionUser,
    TokenResponse,
)
from wellmesh.schemas.user import (
    SignupResponse,
    UserCreateRequest,
    UserListResponse,
    UserResponse,
    UserUpdateRequest,
)

__all__ = [
    "LoginRequest",
    "LoginResponse",
    "LogoutRequest",
    "MessageResponse",
    "RefreshRequest",
    "SessionUser",
    "SignupResponse",
    "TokenResponse",
    "UserCreateRequest",
    "UserListResponse",
    "UserResponse",
    "UserUpdateRequest",
]
