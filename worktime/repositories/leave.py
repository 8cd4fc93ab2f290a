"""
Leave repositories: requests (with compare-and-swap transitions) and the
per-(user, year, type) balance ledger.
"""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from worktime.models.leave import LeaveBalance, LeaveComment, LeaveRequest

ACTIVE_STATUSES = ("pending", "approved")


class LeaveRepository:
    def __init__(self, db: AsyncSession):
        self._db = db

    async def get(self, leave_id: int, *, for_update: bool = False) -> LeaveRequest | None:
        query = select(LeaveRequest).where(LeaveRequest.id == leave_id).execution_options(
            populate_existing=True
        )
        if for_update:
            query = query.with_for_update()
        result = await self._db.execute(query)
        return result.scalar_one_or_none()

    async def add(self, leave: LeaveRequest) -> LeaveRequest:
        self._db.add(leave)
        await self._db.flush()
        return leave

    async def find_overlapping(self, user_id: int, start: int, end: int) -> LeaveRequest | None:
        """An active request of *user_id* whose inclusive range meets [start, end]."""
        result = await self._db.execute(
            select(LeaveRequest)
            .where(
                LeaveRequest.user_id == user_id,
                LeaveRequest.status.in_(ACTIVE_STATUSES),
                LeaveRequest.start_date <= end,
                LeaveRequest.end_date >= start,
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def transition(
        self,
        leave: LeaveRequest,
        *,
        expected: str,
        status: str,
        updated_at: int,
        **extra: object,
    ) -> bool:
        """Move *leave* to *status* only if it is still in *expected*."""
        result = await self._db.execute(
            update(LeaveRequest)
            .where(LeaveRequest.id == leave.id, LeaveRequest.status == expected)
            .values(status=status, updated_at=updated_at, **extra)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    def add_comment(self, leave: LeaveRequest, *, user_id: int, text: str, at: int) -> LeaveComment:
        comment = LeaveComment(user_id=user_id, text=text, at=at)
        leave.comments.append(comment)
        return comment

    async def list(
        self,
        *,
        user_id: int | None = None,
        status: str | None = None,
        limit: int = 200,
    ) -> list[LeaveRequest]:
        query = select(LeaveRequest)
        if user_id is not None:
            query = query.where(LeaveRequest.user_id == user_id)
        if status is not None:
            query = query.where(LeaveRequest.status == status)
        query = query.order_by(LeaveRequest.start_date.desc()).limit(limit)
        result = await self._db.execute(query)
        return list(result.scalars().all())


class BalanceRepository:
    def __init__(self, db: AsyncSession):
        self._db = db

    async def get(
        self, user_id: int, year: int, leave_type: str, *, for_update: bool = False
    ) -> LeaveBalance | None:
        query = select(LeaveBalance).where(
            LeaveBalance.user_id == user_id,
            LeaveBalance.year == year,
            LeaveBalance.type == leave_type,
        )
        if for_update:
            query = query.with_for_update()
        result = await self._db.execute(query)
        return result.scalar_one_or_none()

    async def get_or_create(
        self,
        user_id: int,
        year: int,
        leave_type: str,
        *,
        accrued: float,
        now: int,
    ) -> LeaveBalance:
        """Load the ledger row, lazily creating it with *accrued* days."""
        balance = await self.get(user_id, year, leave_type, for_update=True)
        if balance is not None:
            return balance

        balance = LeaveBalance(
            user_id=user_id,
            year=year,
            type=leave_type,
            accrued=accrued,
            used=0.0,
            remaining=accrued,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._db.begin_nested():
                self._db.add(balance)
        except IntegrityError:
            # A concurrent request created it first; use theirs.
            existing = await self.get(user_id, year, leave_type, for_update=True)
            if existing is None:
                raise
            return existing
        return balance

    async def list_for_user(self, user_id: int, *, year: int | None = None) -> list[LeaveBalance]:
        query = select(LeaveBalance).where(LeaveBalance.user_id == user_id)
        if year is not None:
            query = query.where(LeaveBalance.year == year)
        result = await self._db.execute(query.order_by(LeaveBalance.year, LeaveBalance.type))
        return list(result.scalars().all())
