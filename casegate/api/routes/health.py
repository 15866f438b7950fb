"""
Health Check Routes

Endpoints for service health monitoring.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel

import casegate
from casegate.api.dependencies import Services
from casegate.scheduler import directory_is_stale

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime
    version: str
    environment: str
    directory_size: int
    last_sync: Optional[datetime]
    next_sync: Optional[datetime]
    syncing: bool
    stale: bool
    active_threads: int


@router.get("", response_model=HealthResponse)
@router.get("/", response_model=HealthResponse, include_in_schema=False)
async def health_check(services: Services) -> HealthResponse:
    """
    Directory and thread status.

    Degraded when the directory has never been synced or is older than the
    stale threshold.
    """
    settings = services.settings
    now = datetime.now(timezone.utc)
    stale = directory_is_stale(
        services.directory,
        timedelta(days=settings.directory_stale_days),
        now=now,
    )

    return HealthResponse(
        status="degraded" if stale else "healthy",
        timestamp=now,
        version=casegate.__version__,
        environment=settings.environment.value,
        directory_size=len(services.directory),
        last_sync=services.directory.last_sync,
        next_sync=services.jobs.next_sync,
        syncing=services.directory.syncing,
        stale=stale,
        active_threads=services.threads.active_threads,
    )


@router.get("/live")
async def liveness() -> dict:
    """Kubernetes liveness probe."""
    return {"status": "alive"}
