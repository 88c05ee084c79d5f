"""Liveness and readiness payloads."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    READY = "ready"
    NOT_READY = "not_ready"


class HealthResponse(BaseModel):
    """``GET /health``: the process is up; no dependency is consulted."""

    status: HealthStatus
    timestamp: datetime = Field(..., description="Server time, UTC")
    version: str = "1.0.0"


class ReadinessChecks(BaseModel):
    database: str = Field(..., description="``ok`` or ``unavailable``")
    workers: dict[str, bool] = Field(default_factory=dict, description="Running flag per background worker")


class ReadinessResponse(BaseModel):
    """``GET /ready``: answered with 503 while the database is unreachable."""

    status: HealthStatus
    service: str
    checks: ReadinessChecks
