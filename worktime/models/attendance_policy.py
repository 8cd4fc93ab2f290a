"""
Attendance policy model: singleton table for admin-configured geofences
and overtime rules.

Only one row should ever exist.  Geofences are kept as an ordered JSON list
because evaluation is first-match and the order is meaningful.  Overtime
columns left NULL fall back to the configured defaults.
"""

from __future__ import annotations

from sqlalchemy import JSON, BigInteger, Column, Float, Integer

from worktime.db.base import Base


class AttendancePolicy(Base):
    __tablename__ = "attendance_policies"

    id: int = Column(Integer, primary_key=True, default=1)  # type: ignore[assignment]
    # [{"name": str, "center": {"lat": float, "lng": float}, "radius_m": float}, ...]
    geofences: list[dict] = Column(JSON, nullable=False, default=list)  # type: ignore[assignment]
    overtime_daily_threshold_hours: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    overtime_weekly_threshold_hours: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    overtime_multiplier: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    updated_at: int = Column(BigInteger, nullable=False)  # type: ignore[assignment]
