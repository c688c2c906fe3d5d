"""Health and readiness endpoints."""

from fastapi import APIRouter, status
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from therapy_booking.config import settings
from therapy_booking.core.redis_client import check_redis_connection
from therapy_booking.database import check_database_connection
from therapy_booking.dependencies import DatabaseSession
from therapy_booking.models.time_slots import time_slots

router = APIRouter()


class HealthResponse(BaseModel):
    """Liveness response."""

    status: str
    version: str
    environment: str


class DetailedHealthResponse(HealthResponse):
    """Readiness response with dependency and catalog state."""

    database: str
    redis: str
    cache_enabled: bool
    catalog_slots: int | None = None


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Basic health check",
)
async def health_check() -> HealthResponse:
    """Liveness probe; does not touch dependencies."""
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Detailed health check",
)
async def detailed_health_check(db: DatabaseSession) -> DetailedHealthResponse:
    """
    Readiness probe.

    The service is ``degraded`` when the database is down, when an enabled
    Redis cannot be reached, or when the time slot catalog is empty and
    nothing can be booked. A disabled cache does not degrade the service.
    """
    db_healthy = await check_database_connection()
    redis_healthy = await check_redis_connection()
    if not settings.redis_enabled:
        redis_state = "disabled"
    else:
        redis_state = "healthy" if redis_healthy else "unhealthy"

    catalog_slots = None
    if db_healthy:
        try:
            result = await db.execute(select(func.count()).select_from(time_slots))
            catalog_slots = result.scalar_one()
        except SQLAlchemyError:
            db_healthy = False

    ready = (
        db_healthy
        and (redis_healthy or not settings.redis_enabled)
        and bool(catalog_slots)
    )

    return DetailedHealthResponse(
        status="healthy" if ready else "degraded",
        version=settings.app_version,
        environment=settings.environment,
        database="healthy" if db_healthy else "unhealthy",
        redis=redis_state,
        cache_enabled=settings.redis_enabled,
        catalog_slots=catalog_slots,
    )


@router.get(
    "/ping",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Simple ping",
)
async def ping() -> dict[str, str]:
    """Simple ping endpoint."""
    return {"message": "pong"}
