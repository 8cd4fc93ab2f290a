"""
Attendance policy management: geofences, overtime rules and ad-hoc
location checks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from worktime.core.clock import Clock, system_clock
from worktime.core.config import settings
from worktime.core.exceptions import InvalidInput
from worktime.db.session import transaction
from worktime.models.attendance_policy import AttendancePolicy
from worktime.repositories.policy import PolicyRepository
from worktime.services import audit
from worktime.services.geofence import GeofenceMatch, GeoPoint, Region, locate
from worktime.services.identity import ADMIN, ANY_ROLE, Principal, require_role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OvertimeSplit:
    regular_hours: float
    overtime_hours: float
    overtime_pay_hours: float


@dataclass(frozen=True)
class OvertimeRules:
    daily_threshold_hours: float
    weekly_threshold_hours: float
    multiplier: float

    @classmethod
    def defaults(cls) -> OvertimeRules:
        return cls(
            daily_threshold_hours=settings.OVERTIME_DAILY_THRESHOLD_HOURS,
            weekly_threshold_hours=settings.OVERTIME_WEEKLY_THRESHOLD_HOURS,
            multiplier=settings.OVERTIME_MULTIPLIER,
        )

    @classmethod
    def from_policy(cls, policy: AttendancePolicy | None) -> OvertimeRules:
        """Stored rules, with unset columns taken from the configured defaults."""
        base = cls.defaults()
        if policy is None:
            return base
        return cls(
            daily_threshold_hours=_or(policy.overtime_daily_threshold_hours, base.daily_threshold_hours),
            weekly_threshold_hours=_or(policy.overtime_weekly_threshold_hours, base.weekly_threshold_hours),
            multiplier=_or(policy.overtime_multiplier, base.multiplier),
        )

    def calculate(
        self, daily_hours: float, weekly_hours: float, *, weekly_prior_hours: float = 0.0
    ) -> OvertimeSplit:
        """Split one day's hours into regular and overtime.

        Overtime is the larger of the hours past the daily threshold and the
        hours past the weekly threshold.  ``weekly_hours`` is the week's total
        including this day; ``weekly_prior_hours`` is the total before it, so
        weekly overtime already counted on an earlier day is not counted again.
        """
        daily_ot = max(0.0, daily_hours - self.daily_threshold_hours)
        weekly_ot = max(0.0, weekly_hours - self.weekly_threshold_hours) - max(
            0.0, weekly_prior_hours - self.weekly_threshold_hours
        )
        overtime = max(daily_ot, weekly_ot)
        return OvertimeSplit(
            regular_hours=max(0.0, daily_hours - overtime),
            overtime_hours=overtime,
            overtime_pay_hours=overtime * self.multiplier,
        )


def _or(value: float | None, default: float) -> float:
    return default if value is None else value


async def load_overtime_rules(db: AsyncSession) -> OvertimeRules:
    return OvertimeRules.from_policy(await PolicyRepository(db).get())


class PolicyService:
    def __init__(self, db: AsyncSession, clock: Clock = system_clock):
        self._db = db
        self._clock = clock
        self._policy = PolicyRepository(db)

    async def geofences(self, caller: Principal | None) -> list[Region]:
        require_role(caller, ANY_ROLE)
        return [Region.from_dict(raw) for raw in await self._policy.geofences()]

    async def update_geofences(self, caller: Principal | None, regions: list[Region]) -> list[Region]:
        principal = require_role(caller, (ADMIN,))
        names = [r.name for r in regions]
        if len(set(names)) != len(names):
            raise InvalidInput("Geofence names must be unique")
        for region in regions:
            if region.radius_m <= 0:
                raise InvalidInput(f"Geofence '{region.name}' must have a positive radius")
            if not (-90 <= region.center.lat <= 90 and -180 <= region.center.lng <= 180):
                raise InvalidInput(f"Geofence '{region.name}' has an invalid center")

        raw = [
            {
                "name": r.name,
                "center": {"lat": r.center.lat, "lng": r.center.lng},
                "radius_m": r.radius_m,
            }
            for r in regions
        ]
        async with transaction(self._db):
            now = self._clock()
            policy = await self._policy.save_geofences(raw, now=now)
            audit.record(
                self._db,
                actor_id=principal.id,
                action="update_geofence_settings",
                target_type="attendance_policy",
                target_id=policy.id,
                at=now,
                metadata={"geofences": raw},
            )

        logger.info("Geofences updated by %d (%d region(s))", principal.id, len(raw))
        return regions

    async def overtime_rules(self, caller: Principal | None) -> OvertimeRules:
        require_role(caller, ANY_ROLE)
        return await load_overtime_rules(self._db)

    async def update_overtime_rules(
        self,
        caller: Principal | None,
        *,
        daily_threshold_hours: float | None = None,
        weekly_threshold_hours: float | None = None,
        multiplier: float | None = None,
    ) -> OvertimeRules:
        """Change any subset of the rules; omitted values keep their current setting."""
        principal = require_role(caller, (ADMIN,))
        if daily_threshold_hours is not None and not 0 < daily_threshold_hours <= 24:
            raise InvalidInput("Daily threshold must be between 0 and 24 hours")
        if weekly_threshold_hours is not None and not 0 < weekly_threshold_hours <= 168:
            raise InvalidInput("Weekly threshold must be between 0 and 168 hours")
        if multiplier is not None and multiplier < 1:
            raise InvalidInput("Overtime multiplier must be at least 1")

        async with transaction(self._db):
            now = self._clock()
            current = await load_overtime_rules(self._db)
            rules = OvertimeRules(
                daily_threshold_hours=_or(daily_threshold_hours, current.daily_threshold_hours),
                weekly_threshold_hours=_or(weekly_threshold_hours, current.weekly_threshold_hours),
                multiplier=_or(multiplier, current.multiplier),
            )
            policy = await self._policy.save_overtime_rules(
                daily_threshold_hours=rules.daily_threshold_hours,
                weekly_threshold_hours=rules.weekly_threshold_hours,
                multiplier=rules.multiplier,
                now=now,
            )
            audit.record(
                self._db,
                actor_id=principal.id,
                action="update_overtime_rules",
                target_type="attendance_policy",
                target_id=policy.id,
                at=now,
                metadata={
                    "daily_threshold_hours": rules.daily_threshold_hours,
                    "weekly_threshold_hours": rules.weekly_threshold_hours,
                    "multiplier": rules.multiplier,
                },
            )

        logger.info("Overtime rules updated by %d: %s", principal.id, rules)
        return rules

    async def check_location(self, caller: Principal | None, lat: float, lng: float) -> GeofenceMatch:
        regions = await self.geofences(caller)
        return locate(GeoPoint(lat=lat, lng=lng), regions)
