"""Pydantic schemas for attendance sessions, biometrics and geofences."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator


# ── Verification ───────────────────────────────────────────────────
class GeoIn(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    acc: float | None = Field(default=None, ge=0)


class ClockInRequest(BaseModel):
    method: Literal["web", "mobile", "kiosk"] = "web"
    geo: GeoIn | None = None
    face_embedding: list[float] | None = None
    project_id: str | None = Field(default=None, max_length=64)
    task_id: str | None = Field(default=None, max_length=64)
    notes: str | None = Field(default=None, max_length=1000)


class ClockInResponse(BaseModel):
    session_id: int


class ClockOutRequest(BaseModel):
    session_id: int | None = None
    geo: GeoIn | None = None
    notes: str | None = Field(default=None, max_length=1000)


class ClockOutResponse(BaseModel):
    session_id: int
    duration_sec: int
    duration_formatted: str


class FixClockOutRequest(BaseModel):
    clock_out_at: int
    notes: str | None = Field(default=None, max_length=1000)


# ── Sessions ───────────────────────────────────────────────────────
class SessionRead(BaseModel):
    id: int
    user_id: int
    clock_in_at: int
    clock_out_at: int | None
    method: str
    ip: str
    user_agent: str
    face_score: float | None = None
    face_pass: bool | None = None
    in_office: bool | None = None
    location_name: str | None = None
    project_id: str | None = None
    task_id: str | None = None
    notes: str | None = None
    duration_sec: int | None = None
    closed_by_admin_id: int | None = None
    missed_clock_out: bool = False

    model_config = {"from_attributes": True}


class SessionLocation(BaseModel):
    type: str
    timestamp: int
    location: GeoIn


class MissedClockOutResponse(BaseModel):
    closed_session_ids: list[int]


# ── Biometrics ─────────────────────────────────────────────────────
class EnrollFaceRequest(BaseModel):
    embedding: list[float]
    consent: bool

    @field_validator("embedding")
    @classmethod
    def _not_empty(cls, v: list[float]) -> list[float]:
        if not v:
            raise ValueError("Embedding must not be empty")
        return v


# ── Geofences ──────────────────────────────────────────────────────
class GeofenceCenter(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class Geofence(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    center: GeofenceCenter
    radius_m: float = Field(gt=0)


class GeofenceSettings(BaseModel):
    geofences: list[Geofence]


class LocationCheckRequest(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class LocationCheckResponse(BaseModel):
    in_office: bool
    location_name: str


# ── Overtime rules ─────────────────────────────────────────────────
class OvertimeRulesRead(BaseModel):
    daily_threshold_hours: float
    weekly_threshold_hours: float
    multiplier: float

    model_config = {"from_attributes": True}


class OvertimeRulesUpdate(BaseModel):
    daily_threshold_hours: float | None = Field(default=None, gt=0, le=24)
    weekly_threshold_hours: float | None = Field(default=None, gt=0, le=168)
    multiplier: float | None = Field(default=None, ge=1)


# ── Generic ────────────────────────────────────────────────────────
class SuccessResponse(BaseModel):
    success: bool = True


class LogoutResponse(BaseModel):
    message: str
