"""WellMesh API Router - aggregates all API routes."""

from fastapi import APIRouter

from wellmesh.api import auth, users

# Main API router - all routes will be prefixed with /api/wellmesh
api_router = APIRouter(prefix="/api/wellmesh")

api_router.include_router(auth.router)
api_router.include_router(users.router)

__all__ = ["api_router"]
