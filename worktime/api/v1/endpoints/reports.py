"""
Reporting, audit trail and health endpoints.

Everything here is read-only.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from worktime.api.v1.deps import get_db, get_principal
from worktime.core.config import settings
from worktime.schemas.reports import (AuditLogRead, HealthResponse,
                                      OvertimeRow, ProjectHoursRow)
from worktime.services import audit, reports
from worktime.services.identity import Principal

router = APIRouter(tags=["reports"])
logger = logging.getLogger(__name__)


@router.get("/reports/project-hours", response_model=list[ProjectHoursRow])
async def project_hours(
    start: int = Query(...),
    end: int = Query(...),
    user_id: int | None = None,
    db: AsyncSession = Depends(get_db),
    principal: Principal | None = Depends(get_principal),
):
    """Hours logged against each project between *start* and *end* (epoch ms)."""
    return await reports.project_hours(db, principal, start=start, end=end, user_id=user_id)


@router.get("/reports/overtime", response_model=list[OvertimeRow])
async def overtime(
    start: int = Query(...),
    end: int = Query(...),
    user_id: int | None = None,
    db: AsyncSession = Depends(get_db),
    principal: Principal | None = Depends(get_principal),
):
    """User-days with overtime under the stored daily and weekly rules."""
    return await reports.overtime(db, principal, start=start, end=end, user_id=user_id)


@router.get("/audit-logs", response_model=list[AuditLogRead])
async def audit_logs(
    actor_id: int | None = None,
    target_type: str | None = None,
    target_id: str | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    principal: Principal | None = Depends(get_principal),
):
    """Most recent audit entries first (admin only)."""
    return await audit.list_entries(
        db,
        principal,
        actor_id=actor_id,
        target_type=target_type,
        target_id=target_id,
        limit=limit,
    )


@router.get("/health", response_model=HealthResponse)
async def health(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    """Public health check — DB and Redis connectivity."""
    result = HealthResponse(db=False, redis=False)
    try:
        await db.execute(text("SELECT 1"))
        result.db = True
    except Exception as exc:
        logger.warning("Health check: database unreachable: %s", exc)

    try:
        import redis.asyncio as aioredis

        r = aioredis.from_url(settings.REDIS_URL)
        await r.ping()
        await r.aclose()
        result.redis = True
    except Exception as exc:
        logger.warning("Health check: redis unreachable: %s", exc)

    return result
