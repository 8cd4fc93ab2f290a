"""
Attendance policy settings endpoints.

Singleton pattern: the attendance policy row holds the ordered geofence
list and the overtime rules.  GET reads (empty or defaults when unset),
PUT writes (admin only).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from worktime.api.v1.deps import get_clock, get_db, get_principal
from worktime.core.clock import Clock
from worktime.schemas.attendance import (Geofence, GeofenceCenter,
                                         GeofenceSettings,
                                         LocationCheckRequest,
                                         LocationCheckResponse,
                                         OvertimeRulesRead,
                                         OvertimeRulesUpdate)
from worktime.services.attendance import REMOTE
from worktime.services.geofence import GeoPoint, Region
from worktime.services.identity import Principal
from worktime.services.policy import PolicyService

router = APIRouter(prefix="/settings", tags=["settings"])


def _service(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> PolicyService:
    return PolicyService(db, clock)


def _to_schema(regions: list[Region]) -> GeofenceSettings:
    return GeofenceSettings(
        geofences=[
            Geofence(
                name=r.name,
                center=GeofenceCenter(lat=r.center.lat, lng=r.center.lng),
                radius_m=r.radius_m,
            )
            for r in regions
        ]
    )


@router.get("/geofences", response_model=GeofenceSettings)
async def get_geofences(
    service: PolicyService = Depends(_service),
    principal: Principal | None = Depends(get_principal),
) -> GeofenceSettings:
    return _to_schema(await service.geofences(principal))


@router.put("/geofences", response_model=GeofenceSettings)
async def update_geofences(
    body: GeofenceSettings,
    service: PolicyService = Depends(_service),
    principal: Principal | None = Depends(get_principal),
) -> GeofenceSettings:
    regions = [
        Region(
            name=g.name.strip(),
            center=GeoPoint(lat=g.center.lat, lng=g.center.lng),
            radius_m=g.radius_m,
        )
        for g in body.geofences
    ]
    return _to_schema(await service.update_geofences(principal, regions))


@router.post("/geofences/check", response_model=LocationCheckResponse)
async def check_location(
    body: LocationCheckRequest,
    service: PolicyService = Depends(_service),
    principal: Principal | None = Depends(get_principal),
) -> LocationCheckResponse:
    match = await service.check_location(principal, body.lat, body.lng)
    return LocationCheckResponse(
        in_office=match.in_region, location_name=match.region_name or REMOTE
    )


@router.get("/overtime", response_model=OvertimeRulesRead)
async def get_overtime_rules(
    service: PolicyService = Depends(_service),
    principal: Principal | None = Depends(get_principal),
) -> OvertimeRulesRead:
    return OvertimeRulesRead.model_validate(await service.overtime_rules(principal))


@router.put("/overtime", response_model=OvertimeRulesRead)
async def update_overtime_rules(
    body: OvertimeRulesUpdate,
    service: PolicyService = Depends(_service),
    principal: Principal | None = Depends(get_principal),
) -> OvertimeRulesRead:
    rules = await service.update_overtime_rules(principal, **body.model_dump())
    return OvertimeRulesRead.model_validate(rules)
