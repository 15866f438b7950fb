"""
Admin Routes

Force a directory sync and inspect the directory. Guarded by a shared secret
sent in the ``X-Admin-Secret`` header.
"""

import hmac
from datetime import datetime
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel

from casegate.api.dependencies import Services
from casegate.errors import Forbidden, Unauthorized
from casegate.security.synchronizer import SyncStatus

router = APIRouter()


class SyncResponse(BaseModel):
    """Outcome of a forced sync."""
    status: SyncStatus
    started_at: datetime
    finished_at: Optional[datetime]
    cases_scanned: int
    identities: int
    failed_cases: list[str]


def require_admin_secret(
    services: Services,
    x_admin_secret: Optional[str] = Header(default=None),
) -> None:
    """Constant-time check of the admin secret."""
    expected = services.settings.admin_sync_secret
    if not expected:
        raise Forbidden("Admin endpoints are disabled")
    if not x_admin_secret:
        raise Unauthorized("Missing admin secret")
    if not hmac.compare_digest(x_admin_secret.encode(), expected.encode()):
        raise Unauthorized("Invalid admin secret")


AdminGuard = Annotated[None, Depends(require_admin_secret)]


@router.post("/sync", response_model=SyncResponse)
async def force_sync(_: AdminGuard, services: Services) -> SyncResponse:
    """
    Rebuild the directory now.

    Collapses into the running sync when one is in progress.
    """
    report = await services.synchronizer.sync()
    return SyncResponse(**report.model_dump())


@router.get("/directory")
async def directory_stats(_: AdminGuard, services: Services) -> dict[str, Any]:
    """Directory statistics and the identities holding the most cases."""
    stats = services.directory.stats()
    stats["syncing"] = services.directory.syncing
    return stats


@router.get("/security-events")
async def security_events(
    _: AdminGuard,
    services: Services,
    limit: int = Query(default=100, ge=1, le=1000),
) -> list[dict[str, Any]]:
    """Recent denials, failed logins, kill-switch refusals and rate limiting."""
    return [
        entry.to_log_dict()
        for entry in services.audit.audit_log.get_security_events(limit=limit)
    ]
