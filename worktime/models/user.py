"""
User model: authentication, role-based access and biometric enrollment.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, BigInteger, Boolean, CheckConstraint, Column, DateTime, Integer, String

from worktime.db.base import Base

ROLES = ("admin", "manager", "employee")


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "face_embedding IS NULL OR face_consent_at IS NOT NULL",
            name="ck_users_face_consent",
        ),
    )

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    email: str = Column(String(320), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    hashed_password: str = Column(String(128), nullable=False)  # type: ignore[assignment]
    full_name: str | None = Column(String(200), nullable=True)  # type: ignore[assignment]
    role: str = Column(  # type: ignore[assignment]
        String(20),
        nullable=False,
        default="employee",
        server_default="employee",
    )  # admin | manager | employee
    is_active: bool = Column(Boolean, default=True, server_default="true")  # type: ignore[assignment]
    # Enrolled face template; never the raw image, never a live sample.
    face_embedding: list[float] | None = Column(JSON(none_as_null=True), nullable=True)  # type: ignore[assignment]
    face_consent_at: int | None = Column(BigInteger, nullable=True)  # type: ignore[assignment]
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def face_enrolled(self) -> bool:
        return self.face_embedding is not None
