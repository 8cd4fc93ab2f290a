"""
Attendance repository: the indexed queries the session engine needs.
"""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from worktime.core.exceptions import ActiveSessionExists
from worktime.models.attendance import (OPEN_SESSION_INDEX, AttendanceSession,
                                        TimeEntry)


def _is_open_session_clash(exc: IntegrityError) -> bool:
    # SQLite names the indexed column, Postgres names the index
    message = str(exc.orig)
    return OPEN_SESSION_INDEX in message or (
        "UNIQUE" in message and "attendance_sessions.user_id" in message
    )


class AttendanceRepository:
    def __init__(self, db: AsyncSession):
        self._db = db

    async def get(self, session_id: int, *, for_update: bool = False) -> AttendanceSession | None:
        query = select(AttendanceSession).where(AttendanceSession.id == session_id)
        if for_update:
            query = query.with_for_update()
        result = await self._db.execute(query)
        return result.scalar_one_or_none()

    async def get_open_for_user(
        self, user_id: int, *, for_update: bool = False
    ) -> AttendanceSession | None:
        query = select(AttendanceSession).where(
            AttendanceSession.user_id == user_id,
            AttendanceSession.clock_out_at.is_(None),
        )
        if for_update:
            query = query.with_for_update()
        result = await self._db.execute(query)
        return result.scalar_one_or_none()

    async def insert_open(self, session: AttendanceSession) -> AttendanceSession:
        """Insert a new open session.

        The partial unique index rejects a second open session for the same
        user even when two clock-ins race past the read check.
        """
        self._db.add(session)
        try:
            await self._db.flush()
        except IntegrityError as exc:
            if _is_open_session_clash(exc):
                raise ActiveSessionExists() from exc
            raise
        return session

    async def close(
        self,
        session: AttendanceSession,
        *,
        clock_out_at: int,
        duration_sec: int,
        updated_at: int,
        **extra: object,
    ) -> bool:
        """Set the close fields only if the session is still open."""
        result = await self._db.execute(
            update(AttendanceSession)
            .where(
                AttendanceSession.id == session.id,
                AttendanceSession.clock_out_at.is_(None),
            )
            .values(
                clock_out_at=clock_out_at,
                duration_sec=duration_sec,
                updated_at=updated_at,
                **extra,
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    async def history(
        self,
        user_id: int,
        *,
        start: int | None = None,
        end: int | None = None,
        limit: int = 50,
    ) -> list[AttendanceSession]:
        query = select(AttendanceSession).where(AttendanceSession.user_id == user_id)
        if start is not None:
            query = query.where(AttendanceSession.clock_in_at >= start)
        if end is not None:
            query = query.where(AttendanceSession.clock_in_at <= end)
        query = query.order_by(AttendanceSession.clock_in_at.desc()).limit(limit)
        result = await self._db.execute(query)
        return list(result.scalars().all())

    async def open_started_before(self, cutoff: int) -> list[AttendanceSession]:
        result = await self._db.execute(
            select(AttendanceSession)
            .where(
                AttendanceSession.clock_out_at.is_(None),
                AttendanceSession.clock_in_at < cutoff,
            )
            .order_by(AttendanceSession.clock_in_at.asc())
        )
        return list(result.scalars().all())

    async def closed_between(
        self, start: int, end: int, *, user_id: int | None = None
    ) -> list[AttendanceSession]:
        query = select(AttendanceSession).where(
            AttendanceSession.clock_out_at.is_not(None),
            AttendanceSession.clock_in_at >= start,
            AttendanceSession.clock_in_at <= end,
        )
        if user_id is not None:
            query = query.where(AttendanceSession.user_id == user_id)
        result = await self._db.execute(query.order_by(AttendanceSession.clock_in_at.asc()))
        return list(result.scalars().all())

    # ── Time entries ───────────────────────────────────────────────
    def add_time_entry(self, entry: TimeEntry) -> TimeEntry:
        self._db.add(entry)
        return entry

    async def time_entries_between(
        self, start: int, end: int, *, user_id: int | None = None
    ) -> list[TimeEntry]:
        query = select(TimeEntry).where(
            TimeEntry.started_at >= start, TimeEntry.started_at <= end
        )
        if user_id is not None:
            query = query.where(TimeEntry.user_id == user_id)
        result = await self._db.execute(query.order_by(TimeEntry.started_at.asc()))
        return list(result.scalars().all())
