"""
Attendance endpoints: clock in/out, administrative corrections, history
and biometric enrollment.

All business rules live in ``AttendanceEngine``; handlers only translate
HTTP payloads into engine calls.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from worktime.api.v1.deps import client_verification, get_clock, get_db, get_principal
from worktime.core.clock import Clock
from worktime.schemas.attendance import (ClockInRequest, ClockInResponse,
                                         ClockOutRequest, ClockOutResponse,
                                         EnrollFaceRequest, FixClockOutRequest,
                                         GeoIn, MissedClockOutResponse,
                                         SessionLocation, SessionRead,
                                         SuccessResponse)
from worktime.services.attendance import AttendanceEngine, GeoFix
from worktime.services.identity import Principal

router = APIRouter(prefix="/attendance", tags=["attendance"])


def _geo(geo: GeoIn | None) -> GeoFix | None:
    if geo is None:
        return None
    return GeoFix(lat=geo.lat, lng=geo.lng, acc=geo.acc)


def _engine(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> AttendanceEngine:
    return AttendanceEngine(db, clock)


@router.post("/clock-in", response_model=ClockInResponse, status_code=201)
async def clock_in(
    body: ClockInRequest,
    request: Request,
    engine: AttendanceEngine = Depends(_engine),
    principal: Principal | None = Depends(get_principal),
) -> ClockInResponse:
    session_id = await engine.clock_in(
        principal,
        method=body.method,
        verification=client_verification(request, _geo(body.geo), body.face_embedding),
        project_id=body.project_id,
        task_id=body.task_id,
        notes=body.notes,
    )
    return ClockInResponse(session_id=session_id)


@router.post("/clock-out", response_model=ClockOutResponse)
async def clock_out(
    body: ClockOutRequest,
    request: Request,
    engine: AttendanceEngine = Depends(_engine),
    principal: Principal | None = Depends(get_principal),
) -> ClockOutResponse:
    result = await engine.clock_out(
        principal,
        session_id=body.session_id,
        verification=client_verification(request, _geo(body.geo)),
        notes=body.notes,
    )
    return ClockOutResponse(
        session_id=result.session_id,
        duration_sec=result.duration_sec,
        duration_formatted=result.duration_formatted,
    )


@router.post("/sessions/{session_id}/fix-clock-out", response_model=SuccessResponse)
async def admin_fix_clock_out(
    session_id: int,
    body: FixClockOutRequest,
    engine: AttendanceEngine = Depends(_engine),
    principal: Principal | None = Depends(get_principal),
) -> SuccessResponse:
    success = await engine.admin_fix_clock_out(
        principal, session_id=session_id, clock_out_at=body.clock_out_at, notes=body.notes
    )
    return SuccessResponse(success=success)


@router.post("/missed-clock-outs", response_model=MissedClockOutResponse)
async def mark_missed_clock_outs(
    engine: AttendanceEngine = Depends(_engine),
    principal: Principal | None = Depends(get_principal),
) -> MissedClockOutResponse:
    """Close sessions left open past the cutoff (manager / admin)."""
    closed = await engine.mark_missed_clock_outs(principal)
    return MissedClockOutResponse(closed_session_ids=closed)


@router.get("/current", response_model=SessionRead | None)
async def current_session(
    engine: AttendanceEngine = Depends(_engine),
    principal: Principal | None = Depends(get_principal),
):
    return await engine.current_session(principal)


@router.get("/history", response_model=list[SessionRead])
async def attendance_history(
    user_id: int | None = None,
    start_date: int | None = None,
    end_date: int | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    engine: AttendanceEngine = Depends(_engine),
    principal: Principal | None = Depends(get_principal),
):
    return await engine.history(
        principal, user_id=user_id, start_date=start_date, end_date=end_date, limit=limit
    )


@router.get("/sessions/{session_id}/locations", response_model=list[SessionLocation])
async def session_locations(
    session_id: int,
    engine: AttendanceEngine = Depends(_engine),
    principal: Principal | None = Depends(get_principal),
):
    return await engine.session_locations(principal, session_id)


# ── Biometrics ─────────────────────────────────────────────────────
@router.post("/face", response_model=SuccessResponse)
async def enroll_face(
    body: EnrollFaceRequest,
    engine: AttendanceEngine = Depends(_engine),
    principal: Principal | None = Depends(get_principal),
) -> SuccessResponse:
    success = await engine.enroll_face(principal, embedding=body.embedding, consent=body.consent)
    return SuccessResponse(success=success)


@router.delete("/face", response_model=SuccessResponse)
async def delete_biometric_data(
    engine: AttendanceEngine = Depends(_engine),
    principal: Principal | None = Depends(get_principal),
) -> SuccessResponse:
    success = await engine.delete_biometric_data(principal)
    return SuccessResponse(success=success)
