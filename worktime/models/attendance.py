"""
Attendance session & derived time entry models.

All instants are epoch milliseconds.  ``clock_out_at IS NULL`` marks an open
session; the partial unique index allows at most one of those per user.
"""

from __future__ import annotations

from sqlalchemy import (BigInteger, Boolean, Column, Float, ForeignKey, Index,
                        Integer, String, text)

from worktime.db.base import Base

METHODS = ("web", "mobile", "kiosk")

_OPEN = text("clock_out_at IS NULL")

OPEN_SESSION_INDEX = "uq_attendance_open_session_per_user"


class AttendanceSession(Base):
    __tablename__ = "attendance_sessions"
    __table_args__ = (
        Index(
            OPEN_SESSION_INDEX,
            "user_id",
            unique=True,
            sqlite_where=_OPEN,
            postgresql_where=_OPEN,
        ),
        Index("ix_attendance_user_clock_in", "user_id", "clock_in_at"),
    )

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    user_id: int = Column(Integer, ForeignKey("users.id"), nullable=False)  # type: ignore[assignment]
    clock_in_at: int = Column(BigInteger, nullable=False)  # type: ignore[assignment]
    clock_out_at: int | None = Column(BigInteger, nullable=True)  # type: ignore[assignment]
    method: str = Column(String(10), nullable=False)  # type: ignore[assignment]  # web | mobile | kiosk

    # Verification evidence captured at clock-in
    ip: str = Column(String(64), nullable=False)  # type: ignore[assignment]
    user_agent: str = Column(String(500), nullable=False)  # type: ignore[assignment]
    geo_lat: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    geo_lng: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    geo_acc: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    face_score: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    face_pass: bool | None = Column(Boolean, nullable=True)  # type: ignore[assignment]
    in_office: bool | None = Column(Boolean, nullable=True)  # type: ignore[assignment]
    location_name: str | None = Column(String(200), nullable=True)  # type: ignore[assignment]

    # Clock-out evidence
    out_geo_lat: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    out_geo_lng: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    out_geo_acc: float | None = Column(Float, nullable=True)  # type: ignore[assignment]

    project_id: str | None = Column(String(64), nullable=True)  # type: ignore[assignment]
    task_id: str | None = Column(String(64), nullable=True)  # type: ignore[assignment]
    notes: str | None = Column(String(1000), nullable=True)  # type: ignore[assignment]
    duration_sec: int | None = Column(BigInteger, nullable=True)  # type: ignore[assignment]
    closed_by_admin_id: int | None = Column(Integer, ForeignKey("users.id"), nullable=True)  # type: ignore[assignment]
    missed_clock_out: bool = Column(Boolean, nullable=False, default=False, server_default="false")  # type: ignore[assignment]
    created_at: int = Column(BigInteger, nullable=False)  # type: ignore[assignment]
    updated_at: int = Column(BigInteger, nullable=False)  # type: ignore[assignment]

    @property
    def is_open(self) -> bool:
        return self.clock_out_at is None


class TimeEntry(Base):
    __tablename__ = "time_entries"
    __table_args__ = (
        Index("ix_time_entries_user_started", "user_id", "started_at"),
        Index("ix_time_entries_project", "project_id"),
    )

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    user_id: int = Column(Integer, ForeignKey("users.id"), nullable=False)  # type: ignore[assignment]
    session_id: int = Column(Integer, ForeignKey("attendance_sessions.id"), nullable=False, unique=True)  # type: ignore[assignment]
    project_id: str | None = Column(String(64), nullable=True)  # type: ignore[assignment]
    task_id: str | None = Column(String(64), nullable=True)  # type: ignore[assignment]
    started_at: int = Column(BigInteger, nullable=False)  # type: ignore[assignment]
    ended_at: int = Column(BigInteger, nullable=False)  # type: ignore[assignment]
    duration_sec: int = Column(BigInteger, nullable=False)  # type: ignore[assignment]
    note: str | None = Column(String(1000), nullable=True)  # type: ignore[assignment]
    created_at: int = Column(BigInteger, nullable=False)  # type: ignore[assignment]
