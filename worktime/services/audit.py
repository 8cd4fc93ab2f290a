"""
Audit trail sink.

``record`` only stages the row on the caller's session; it is committed (or
rolled back) together with the mutation it describes.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from worktime.models.audit_log import AuditLogEntry
from worktime.repositories.audit import AuditRepository
from worktime.services.identity import ADMIN, Principal, require_role

logger = logging.getLogger(__name__)


def record(
    db: AsyncSession,
    *,
    actor_id: int,
    action: str,
    target_type: str,
    target_id: int | str,
    at: int,
    metadata: dict[str, Any] | None = None,
) -> AuditLogEntry:
    entry = AuditLogEntry(
        actor_id=actor_id,
        action=action,
        target_type=target_type,
        target_id=str(target_id),
        meta=metadata or {},
        at=at,
    )
    db.add(entry)
    logger.debug("Audit %s by %s on %s:%s", action, actor_id, target_type, target_id)
    return entry


async def list_entries(
    db: AsyncSession,
    caller: Principal | None,
    *,
    actor_id: int | None = None,
    target_type: str | None = None,
    target_id: int | str | None = None,
    limit: int = 100,
) -> list[AuditLogEntry]:
    require_role(caller, (ADMIN,))
    return await AuditRepository(db).list(
        actor_id=actor_id,
        target_type=target_type,
        target_id=None if target_id is None else str(target_id),
        limit=max(1, min(limit, 500)),
    )
