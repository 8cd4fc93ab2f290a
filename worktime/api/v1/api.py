"""
V1 API router aggregator — wires all endpoint modules together.
"""

from fastapi import APIRouter

from worktime.api.v1.endpoints import attendance, auth, leaves, reports, settings

api_router = APIRouter()

# Auth (login, refresh, user management)
api_router.include_router(auth.router)

# Clock in/out, corrections, biometrics
api_router.include_router(attendance.router)

# Leave requests and balances
api_router.include_router(leaves.router)

# Geofence policy
api_router.include_router(settings.router)

# Reports, audit trail, health
api_router.include_router(reports.router)
