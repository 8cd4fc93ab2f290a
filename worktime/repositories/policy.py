"""Attendance policy (geofences, overtime rules) singleton repository."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from worktime.models.attendance_policy import AttendancePolicy


class PolicyRepository:
    def __init__(self, db: AsyncSession):
        self._db = db

    async def get(self) -> AttendancePolicy | None:
        result = await self._db.execute(select(AttendancePolicy).limit(1))
        return result.scalar_one_or_none()

    async def _get_or_create(self, *, now: int) -> AttendancePolicy:
        policy = await self.get()
        if policy is None:
            policy = AttendancePolicy(id=1, geofences=[], updated_at=now)
            self._db.add(policy)
        return policy

    async def geofences(self) -> list[dict]:
        policy = await self.get()
        if policy is None or not policy.geofences:
            return []
        return list(policy.geofences)

    async def save_geofences(self, geofences: list[dict], *, now: int) -> AttendancePolicy:
        policy = await self._get_or_create(now=now)
        policy.geofences = geofences
        policy.updated_at = now
        await self._db.flush()
        return policy

    async def save_overtime_rules(
        self,
        *,
        daily_threshold_hours: float,
        weekly_threshold_hours: float,
        multiplier: float,
        now: int,
    ) -> AttendancePolicy:
        policy = await self._get_or_create(now=now)
        policy.overtime_daily_threshold_hours = daily_threshold_hours
        policy.overtime_weekly_threshold_hours = weekly_threshold_hours
        policy.overtime_multiplier = multiplier
        policy.updated_at = now
        await self._db.flush()
        return policy
