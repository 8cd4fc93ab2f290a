"""
Leave endpoints: requests, decisions, cancellation, comments and balances.
"""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from worktime.api.v1.deps import get_clock, get_db, get_principal
from worktime.core.clock import Clock
from worktime.schemas.attendance import SuccessResponse
from worktime.schemas.leave import (BalanceRead, LeaveCancel, LeaveCommentCreate,
                                    LeaveCreate, LeaveCreated, LeaveRead,
                                    LeaveStatusUpdate)
from worktime.services.identity import Principal
from worktime.services.leave import LeaveEngine

router = APIRouter(prefix="/leaves", tags=["leaves"])


def _engine(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> LeaveEngine:
    return LeaveEngine(db, clock)


@router.post("", response_model=LeaveCreated, status_code=201)
async def request_leave(
    body: LeaveCreate,
    engine: LeaveEngine = Depends(_engine),
    principal: Principal | None = Depends(get_principal),
) -> LeaveCreated:
    leave_id = await engine.request_leave(
        principal,
        leave_type=body.type,
        start_date=body.start_date,
        end_date=body.end_date,
        reason=body.reason,
        partial=body.partial,
    )
    return LeaveCreated(leave_id=leave_id)


@router.get("", response_model=list[LeaveRead])
async def list_leaves(
    user_id: int | None = None,
    status: Literal["pending", "approved", "rejected", "canceled"] | None = None,
    engine: LeaveEngine = Depends(_engine),
    principal: Principal | None = Depends(get_principal),
):
    return await engine.list_requests(principal, user_id=user_id, status=status)


@router.get("/balances", response_model=list[BalanceRead])
async def leave_balances(
    user_id: int | None = None,
    year: int | None = None,
    engine: LeaveEngine = Depends(_engine),
    principal: Principal | None = Depends(get_principal),
):
    return await engine.balances(principal, user_id=user_id, year=year)


@router.get("/{leave_id}", response_model=LeaveRead)
async def get_leave(
    leave_id: int,
    engine: LeaveEngine = Depends(_engine),
    principal: Principal | None = Depends(get_principal),
):
    return await engine.get(principal, leave_id)


@router.post("/{leave_id}/status", response_model=SuccessResponse)
async def update_leave_status(
    leave_id: int,
    body: LeaveStatusUpdate,
    engine: LeaveEngine = Depends(_engine),
    principal: Principal | None = Depends(get_principal),
) -> SuccessResponse:
    success = await engine.update_status(
        principal, leave_id=leave_id, status=body.status, comment=body.comment
    )
    return SuccessResponse(success=success)


@router.post("/{leave_id}/cancel", response_model=SuccessResponse)
async def cancel_leave(
    leave_id: int,
    body: LeaveCancel | None = None,
    engine: LeaveEngine = Depends(_engine),
    principal: Principal | None = Depends(get_principal),
) -> SuccessResponse:
    success = await engine.cancel(
        principal, leave_id=leave_id, reason=body.reason if body else None
    )
    return SuccessResponse(success=success)


@router.post("/{leave_id}/comments", response_model=SuccessResponse, status_code=201)
async def add_leave_comment(
    leave_id: int,
    body: LeaveCommentCreate,
    engine: LeaveEngine = Depends(_engine),
    principal: Principal | None = Depends(get_principal),
) -> SuccessResponse:
    await engine.add_comment(principal, leave_id=leave_id, text=body.text)
    return SuccessResponse(success=True)
