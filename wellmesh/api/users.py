"""User management API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from wellmesh.core.config import settings
from wellmesh.middleware.rate_limit import rate_limiter
from wellmesh.middleware.session import auth_service, require_admin
from wellmesh.models.user import Role
from wellmesh.schemas.auth import MessageResponse, SessionUser
from wellmesh.schemas.user import (
    SignupResponse,
    UserCreateRequest,
    UserListResponse,
    UserResponse,
    UserUpdateRequest,
)
from wellmesh.services.auth import (
    AuthService,
    RegistrationError,
    UserConflictError,
    get_auth_service,
)
from wellmesh.services.users import (
    RoleChangeForbiddenError,
    UserNotFoundError,
    UserService,
    get_user_service,
)

logger = logging.getLogger(__name__)

api_limiter = rate_limiter(settings.api_rate_limit, settings.rate_limit_window_seconds)

router = APIRouter(prefix="/users", tags=["users"], dependencies=[Depends(api_limiter)])

require_admin_or_manager = auth_service(allowed_roles=[Role.ADMIN, Role.MANAGER])
require_owner = auth_service(id_lock=True)


@router.post("/create", response_model=SignupResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    request: UserCreateRequest,
    auth: AuthService = Depends(get_auth_service),
) -> SignupResponse:
    """Sign up with the secret code for the requested role.

    The account stays unverified until the e-mailed link is followed.
    """
    try:
        _, verify_url = await auth.register(
            email=request.email,
            username=request.username,
            password=request.password,
            role=request.role,
            secret_code=request.secret_code,
            phone=request.phone,
            image_url=request.image_url,
        )
    except UserConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except RegistrationError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e)) from e

    return SignupResponse(
        message="User created. Please verify your email address.",
        verify_url=verify_url if settings.debug else None,
    )


@router.get("/", response_model=UserListResponse)
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    role: Role | None = None,
    search: str | None = Query(None, max_length=100),
    current_user: SessionUser = Depends(require_admin_or_manager),
    service: UserService = Depends(get_user_service),
) -> UserListResponse:
    """List users, newest first. Admins and managers only."""
    return await service.list_users(page=page, limit=limit, role=role, search=search)


@router.get("/{id}", response_model=UserResponse)
async def get_user(
    id: int,
    current_user: SessionUser = Depends(require_owner),
    service: UserService = Depends(get_user_service),
) -> UserResponse:
    """Get one user. Users may only read themselves unless they are admins."""
    try:
        return await service.get_user(id)
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


@router.put("/update/{id}", response_model=UserResponse)
async def update_user(
    id: int,
    request: UserUpdateRequest,
    current_user: SessionUser = Depends(require_owner),
    service: UserService = Depends(get_user_service),
) -> UserResponse:
    """Update a profile. Only admins may change roles."""
    try:
        return await service.update_user(id, request, current_user)
    except RoleChangeForbiddenError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e)) from e
    except UserConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


@router.put("/remove/{id}", response_model=MessageResponse)
async def remove_user(
    id: int,
    current_user: SessionUser = Depends(require_admin),
    service: UserService = Depends(get_user_service),
) -> MessageResponse:
    """Soft-delete a user (admin only)."""
    try:
        await service.remove_user(id)
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return MessageResponse(message="User removed successfully")
