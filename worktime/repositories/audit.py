"""Audit log read queries. Writes go through ``services.audit.record``."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from worktime.models.audit_log import AuditLogEntry


class AuditRepository:
    def __init__(self, db: AsyncSession):
        self._db = db

    async def list(
        self,
        *,
        actor_id: int | None = None,
        target_type: str | None = None,
        target_id: str | None = None,
        limit: int = 100,
    ) -> list[AuditLogEntry]:
        query = select(AuditLogEntry)
        if actor_id is not None:
            query = query.where(AuditLogEntry.actor_id == actor_id)
        if target_type is not None:
            query = query.where(AuditLogEntry.target_type == target_type)
        if target_id is not None:
            query = query.where(AuditLogEntry.target_id == target_id)
        query = query.order_by(AuditLogEntry.at.desc(), AuditLogEntry.id.desc()).limit(limit)
        result = await self._db.execute(query)
        return list(result.scalars().all())
