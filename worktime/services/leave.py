"""
Leave accounting engine.

Request lifecycle::

    pending ──> approved ──> canceled   (approved only before it starts)
       │  └───> rejected
       └──────> canceled

``rejected`` and ``canceled`` are terminal.  Approval charges the balance
ledger and cancelling an approved request refunds exactly the same amount,
because both sides use ``leave_days``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from worktime.core.clock import MS_PER_DAY, Clock, system_clock, year_of
from worktime.core.config import settings
from worktime.core.exceptions import (AlreadyDecided, AlreadyStarted,
                                      Forbidden, InvalidInput, InvalidRange,
                                      InvalidState, LeaveOverlap, NotFound,
                                      PastDate)
from worktime.db.session import transaction
from worktime.models.leave import (PARTIAL_SIDES, LeaveBalance, LeaveComment,
                                   LeaveRequest)
from worktime.repositories.leave import (ACTIVE_STATUSES, BalanceRepository,
                                         LeaveRepository)
from worktime.services import audit
from worktime.services.identity import (ANY_ROLE, PRIVILEGED, Principal,
                                        is_privileged, require_role,
                                        require_self_or_privileged)

logger = logging.getLogger(__name__)

DECISIONS = ("approved", "rejected")


def leave_days(start_date: int, end_date: int, partial: str | None) -> float:
    """Inclusive day count of a request, less half a day for a partial one."""
    days = math.ceil((end_date - start_date) / MS_PER_DAY) + 1
    return days - 0.5 if partial else float(days)


@dataclass(frozen=True)
class BalanceChange:
    days: float
    used: float
    remaining: float


class LeaveEngine:
    def __init__(self, db: AsyncSession, clock: Clock = system_clock):
        self._db = db
        self._clock = clock
        self._leaves = LeaveRepository(db)
        self._balances = BalanceRepository(db)

    async def _load(self, leave_id: int, *, for_update: bool = False) -> LeaveRequest:
        leave = await self._leaves.get(leave_id, for_update=for_update)
        if leave is None:
            raise NotFound("Leave request not found")
        return leave

    async def _ledger(self, user_id: int, year: int, leave_type: str, now: int) -> LeaveBalance:
        return await self._balances.get_or_create(
            user_id,
            year,
            leave_type,
            accrued=settings.DEFAULT_LEAVE_ACCRUAL_DAYS,
            now=now,
        )

    async def _charge(self, leave: LeaveRequest, year: int, now: int) -> BalanceChange:
        # No availability check: remaining may go negative.
        days = leave_days(leave.start_date, leave.end_date, leave.partial)
        balance = await self._ledger(leave.user_id, year, leave.type, now)
        balance.used += days
        balance.remaining -= days
        balance.updated_at = now
        return BalanceChange(days=days, used=balance.used, remaining=balance.remaining)

    async def _refund(self, leave: LeaveRequest, year: int, now: int) -> BalanceChange:
        days = leave_days(leave.start_date, leave.end_date, leave.partial)
        balance = await self._ledger(leave.user_id, year, leave.type, now)
        balance.used = max(0.0, balance.used - days)
        balance.remaining += days
        balance.updated_at = now
        return BalanceChange(days=days, used=balance.used, remaining=balance.remaining)

    # ── Request ────────────────────────────────────────────────────
    async def request_leave(
        self,
        caller: Principal | None,
        *,
        leave_type: str,
        start_date: int,
        end_date: int,
        reason: str,
        partial: str | None = None,
    ) -> int:
        principal = require_role(caller, ANY_ROLE)
        leave_type = (leave_type or "").strip()
        if not leave_type:
            raise InvalidInput("Leave type is required")
        if partial is not None and partial not in PARTIAL_SIDES:
            raise InvalidInput(f"Partial must be one of: {', '.join(PARTIAL_SIDES)}")
        if start_date > end_date:
            raise InvalidRange("Start date must not be after end date")

        now = self._clock()
        if start_date < now - MS_PER_DAY:
            raise PastDate("Leave cannot start more than one day in the past")

        async with transaction(self._db):
            clash = await self._leaves.find_overlapping(principal.id, start_date, end_date)
            if clash is not None:
                raise LeaveOverlap(f"Leave request overlaps with request #{clash.id}")

            leave = LeaveRequest(
                user_id=principal.id,
                type=leave_type,
                start_date=start_date,
                end_date=end_date,
                partial=partial,
                reason=(reason or "").strip(),
                status="pending",
                comments=[],
                created_at=now,
                updated_at=now,
            )
            await self._leaves.add(leave)
            audit.record(
                self._db,
                actor_id=principal.id,
                action="request_leave",
                target_type="leave_request",
                target_id=leave.id,
                at=now,
                metadata={
                    "type": leave_type,
                    "start_date": start_date,
                    "end_date": end_date,
                    "partial": partial,
                    "days": leave_days(start_date, end_date, partial),
                },
            )

        logger.info("User %d requested %s leave #%d", principal.id, leave_type, leave.id)
        return leave.id

    # ── Decide ─────────────────────────────────────────────────────
    async def update_status(
        self,
        caller: Principal | None,
        *,
        leave_id: int,
        status: str,
        comment: str | None = None,
    ) -> bool:
        principal = require_role(caller, PRIVILEGED)
        if status not in DECISIONS:
            raise InvalidInput(f"Status must be one of: {', '.join(DECISIONS)}")

        async with transaction(self._db):
            leave = await self._load(leave_id, for_update=True)
            if leave.status != "pending":
                raise AlreadyDecided(f"Leave request is already {leave.status}")

            now = self._clock()
            if comment and comment.strip():
                self._leaves.add_comment(leave, user_id=principal.id, text=comment.strip(), at=now)

            extra: dict[str, object] = {"approver_id": principal.id}
            year = year_of(now)
            if status == "approved":
                extra["balance_year"] = year

            moved = await self._leaves.transition(
                leave, expected="pending", status=status, updated_at=now, **extra
            )
            if not moved:
                raise AlreadyDecided()

            metadata: dict[str, object] = {"user_id": leave.user_id, "previous": "pending"}
            if status == "approved":
                change = await self._charge(leave, year, now)
                metadata.update(days=change.days, year=year, remaining=change.remaining)

            audit.record(
                self._db,
                actor_id=principal.id,
                action=f"leave_{status}",
                target_type="leave_request",
                target_id=leave.id,
                at=now,
                metadata=metadata,
            )

        logger.info("Leave #%d %s by %d", leave_id, status, principal.id)
        return True

    # ── Cancel ─────────────────────────────────────────────────────
    async def cancel(
        self,
        caller: Principal | None,
        *,
        leave_id: int,
        reason: str | None = None,
    ) -> bool:
        principal = require_role(caller, ANY_ROLE)

        async with transaction(self._db):
            leave = await self._load(leave_id, for_update=True)
            if leave.user_id != principal.id and not is_privileged(principal):
                raise Forbidden("Only the requester or a manager can cancel this leave")
            if leave.status not in ACTIVE_STATUSES:
                raise InvalidState(f"Cannot cancel a {leave.status} leave request")

            now = self._clock()
            previous = leave.status
            if previous == "approved" and leave.start_date <= now:
                raise AlreadyStarted()

            note = "Canceled"
            if reason and reason.strip():
                note = f"Canceled: {reason.strip()}"
            self._leaves.add_comment(leave, user_id=principal.id, text=note, at=now)

            moved = await self._leaves.transition(
                leave, expected=previous, status="canceled", updated_at=now
            )
            if not moved:
                raise InvalidState("Leave request changed while canceling")

            metadata: dict[str, object] = {"user_id": leave.user_id, "previous": previous}
            if previous == "approved":
                year = leave.balance_year if leave.balance_year is not None else year_of(now)
                change = await self._refund(leave, year, now)
                metadata.update(days_restored=change.days, year=year, remaining=change.remaining)

            audit.record(
                self._db,
                actor_id=principal.id,
                action="leave_canceled",
                target_type="leave_request",
                target_id=leave.id,
                at=now,
                metadata=metadata,
            )

        logger.info("Leave #%d canceled by %d (was %s)", leave_id, principal.id, previous)
        return True

    # ── Comments ───────────────────────────────────────────────────
    async def add_comment(
        self,
        caller: Principal | None,
        *,
        leave_id: int,
        text: str,
    ) -> LeaveComment:
        principal = require_role(caller, ANY_ROLE)
        text = (text or "").strip()
        if not text:
            raise InvalidInput("Comment text must not be empty")

        async with transaction(self._db):
            leave = await self._load(leave_id)
            if leave.user_id != principal.id and not is_privileged(principal):
                raise Forbidden("Only the requester or a manager can comment on this leave")
            now = self._clock()
            comment = self._leaves.add_comment(leave, user_id=principal.id, text=text, at=now)
            audit.record(
                self._db,
                actor_id=principal.id,
                action="leave_comment",
                target_type="leave_request",
                target_id=leave.id,
                at=now,
                metadata={"status": leave.status},
            )
        return comment

    # ── Reads ──────────────────────────────────────────────────────
    async def get(self, caller: Principal | None, leave_id: int) -> LeaveRequest:
        leave = await self._load(leave_id)
        require_self_or_privileged(caller, leave.user_id)
        return leave

    async def list_requests(
        self,
        caller: Principal | None,
        *,
        user_id: int | None = None,
        status: str | None = None,
    ) -> list[LeaveRequest]:
        principal = require_role(caller, ANY_ROLE)
        if not is_privileged(principal):
            if user_id is not None and user_id != principal.id:
                raise Forbidden("You can only list your own leave requests")
            user_id = principal.id
        return await self._leaves.list(user_id=user_id, status=status)

    async def balances(
        self,
        caller: Principal | None,
        *,
        user_id: int | None = None,
        year: int | None = None,
    ) -> list[LeaveBalance]:
        principal = require_role(caller, ANY_ROLE)
        target = principal.id if user_id is None else user_id
        require_self_or_privileged(principal, target)
        if year is None:
            year = year_of(self._clock())
        return await self._balances.list_for_user(target, year=year)
