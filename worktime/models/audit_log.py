"""
AuditLogEntry model: append-only compliance trail.

Rows are only ever inserted; nothing in the codebase updates or deletes them.
"""

from __future__ import annotations

from sqlalchemy import JSON, BigInteger, Column, Index, Integer, String

from worktime.db.base import Base


class AuditLogEntry(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_actor", "actor_id"),
        Index("ix_audit_target", "target_type", "target_id"),
    )

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    actor_id: int = Column(Integer, nullable=False)  # type: ignore[assignment]
    action: str = Column(String(64), nullable=False)  # type: ignore[assignment]
    target_type: str = Column(String(64), nullable=False)  # type: ignore[assignment]
    target_id: str = Column(String(64), nullable=False)  # type: ignore[assignment]
    # ``metadata`` is reserved on declarative classes
    meta: dict = Column("metadata", JSON, nullable=False, default=dict)  # type: ignore[assignment]
    at: int = Column(BigInteger, nullable=False, index=True)  # type: ignore[assignment]
