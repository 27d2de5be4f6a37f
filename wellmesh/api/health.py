"""Health check endpoint with database and key-value store connectivity checks."""

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from wellmesh.core import check_db_connection, settings
from wellmesh.core.kv_store import KeyValueStore, get_kv_store

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    cache: str = "disconnected"


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        status.HTTP_200_OK: {"description": "Service is healthy"},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"description": "Service is unhealthy"},
    },
)
async def health_check(
    response: Response,
    store: KeyValueStore = Depends(get_kv_store),
) -> HealthResponse:
    """
    Health check endpoint.

    Returns 503 if the database is unavailable. A lost key-value store is
    reported but does not fail the check; the rate limiter keeps serving
    under its fail-open policy.
    """
    db_healthy = await check_db_connection()
    cache_healthy = await store.ping()

    # Set appropriate status code for container orchestration
    if not db_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="healthy" if db_healthy else "unhealthy",
        version=settings.app_version,
        database="connected" if db_healthy else "disconnected",
        cache="connected" if cache_healthy else "disconnected",
    )
