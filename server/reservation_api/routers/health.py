"""Health, readiness and service information endpoints."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..core.config import Settings
from ..core.dependencies import SettingsDependency
from ..schemas.health import HealthResponse, HealthStatus, ReadinessChecks, ReadinessResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

SERVICE_NAME = "vehicle-reservation-api"
SERVICE_VERSION = "1.0.0"


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Liveness check; does not touch dependencies."""
    return HealthResponse(
        status=HealthStatus.HEALTHY,
        timestamp=datetime.now(timezone.utc),
        version=SERVICE_VERSION
    )


@router.get("/ready")
async def readiness_check(request: Request) -> JSONResponse:
    """Readiness check: the database must answer a trivial query."""
    storage = request.app.state.storage
    try:
        async with storage.session() as session:
            await session.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        logger.warning("Readiness check failed", extra={"error": str(e)})
        database = "unavailable"

    ready = database == "ok"
    body = ReadinessResponse(
        status=HealthStatus.READY if ready else HealthStatus.NOT_READY,
        service=SERVICE_NAME,
        checks=ReadinessChecks(database=database, workers=request.app.state.worker_manager.get_worker_status()),
    )
    return JSONResponse(status_code=200 if ready else 503, content=body.model_dump(mode="json"))


@router.get("/info")
async def service_info(settings: Settings = SettingsDependency) -> dict:
    """Service information."""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "description": "Vehicle reservations with no double booking, a payment ledger and provider webhooks",
        "environment": settings.environment,
        "currency": settings.currency,
        "booking_rules": {
            "min_rental_days": settings.min_rental_days,
            "max_rental_days": settings.max_rental_days,
            "advance_booking_days": settings.advance_booking_days,
            "cancellation_window_hours": settings.cancellation_window_hours,
        },
        "endpoints": {
            "health": "/health",
            "readiness": "/ready",
            "metrics": "/metrics",
            "docs": "/docs" if settings.debug else None,
        },
    }
