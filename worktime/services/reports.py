"""
Read-only projections over time entries and closed sessions.

Nothing here mutates state; results are snapshots and may trail concurrent
writes.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from worktime.core.clock import date_of, week_of
from worktime.core.exceptions import InvalidRange
from worktime.repositories.attendance import AttendanceRepository
from worktime.services.identity import (ANY_ROLE, Principal, is_privileged,
                                        require_role,
                                        require_self_or_privileged)
from worktime.services.policy import load_overtime_rules


@dataclass(frozen=True)
class ProjectHours:
    project_id: str | None
    entries: int
    total_hours: float


@dataclass(frozen=True)
class OvertimeDay:
    user_id: int
    date: str
    worked_hours: float
    regular_hours: float
    overtime_hours: float
    multiplier: float
    overtime_pay_hours: float


def _scope(caller: Principal | None, user_id: int | None) -> int | None:
    """Employees are pinned to themselves; privileged callers may see all."""
    principal = require_role(caller, ANY_ROLE)
    if user_id is not None:
        require_self_or_privileged(principal, user_id)
        return user_id
    return None if is_privileged(principal) else principal.id


async def project_hours(
    db: AsyncSession,
    caller: Principal | None,
    *,
    start: int,
    end: int,
    user_id: int | None = None,
) -> list[ProjectHours]:
    if start > end:
        raise InvalidRange("Start must not be after end")
    scoped = _scope(caller, user_id)
    entries = await AttendanceRepository(db).time_entries_between(start, end, user_id=scoped)

    seconds: dict[str | None, int] = defaultdict(int)
    counts: dict[str | None, int] = defaultdict(int)
    for entry in entries:
        seconds[entry.project_id] += entry.duration_sec
        counts[entry.project_id] += 1

    return sorted(
        (
            ProjectHours(project_id=pid, entries=counts[pid], total_hours=round(secs / 3600, 2))
            for pid, secs in seconds.items()
        ),
        key=lambda row: row.total_hours,
        reverse=True,
    )


async def overtime(
    db: AsyncSession,
    caller: Principal | None,
    *,
    start: int,
    end: int,
    user_id: int | None = None,
) -> list[OvertimeDay]:
    """Per user-day overtime under the stored overtime rules.

    Sessions are bucketed by the UTC date of their clock-in.  Weekly totals
    run over ISO weeks and only count days inside the requested range.
    """
    if start > end:
        raise InvalidRange("Start must not be after end")
    scoped = _scope(caller, user_id)
    sessions = await AttendanceRepository(db).closed_between(start, end, user_id=scoped)
    rules = await load_overtime_rules(db)

    worked: dict[tuple[int, str], int] = defaultdict(int)
    weeks: dict[tuple[int, str], tuple[int, int]] = {}
    for session in sessions:
        key = (session.user_id, date_of(session.clock_in_at))
        worked[key] += session.duration_sec or 0
        weeks[key] = week_of(session.clock_in_at)

    week_totals: dict[tuple[int, tuple[int, int]], float] = defaultdict(float)
    rows = []
    for (uid, day), secs in sorted(worked.items()):
        hours = secs / 3600
        week = (uid, weeks[(uid, day)])
        prior = week_totals[week]
        week_totals[week] = prior + hours

        split = rules.calculate(hours, prior + hours, weekly_prior_hours=prior)
        if split.overtime_hours <= 0:
            continue
        rows.append(
            OvertimeDay(
                user_id=uid,
                date=day,
                worked_hours=round(hours, 2),
                regular_hours=round(split.regular_hours, 2),
                overtime_hours=round(split.overtime_hours, 2),
                multiplier=rules.multiplier,
                overtime_pay_hours=round(split.overtime_pay_hours, 2),
            )
        )
    return rows
