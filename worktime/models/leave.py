"""
Leave request, comment and balance ledger models.
"""

from __future__ import annotations

from sqlalchemy import (BigInteger, Column, Float, ForeignKey, Index, Integer,
                        String, UniqueConstraint)
from sqlalchemy.orm import relationship

from worktime.db.base import Base

LEAVE_STATUSES = ("pending", "approved", "rejected", "canceled")
PARTIAL_SIDES = ("AM", "PM")


class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        Index("ix_leave_user_status", "user_id", "status"),
        Index("ix_leave_status", "status"),
    )

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    user_id: int = Column(Integer, ForeignKey("users.id"), nullable=False)  # type: ignore[assignment]
    type: str = Column(String(50), nullable=False)  # type: ignore[assignment]
    start_date: int = Column(BigInteger, nullable=False)  # type: ignore[assignment]
    end_date: int = Column(BigInteger, nullable=False)  # type: ignore[assignment]  # inclusive
    partial: str | None = Column(String(2), nullable=True)  # type: ignore[assignment]  # AM | PM
    reason: str = Column(String(1000), nullable=False)  # type: ignore[assignment]
    status: str = Column(  # type: ignore[assignment]
        String(20), nullable=False, default="pending", server_default="pending"
    )  # pending | approved | rejected | canceled
    approver_id: int | None = Column(Integer, ForeignKey("users.id"), nullable=True)  # type: ignore[assignment]
    # Ledger year charged on approval; cancellation restores the same row.
    balance_year: int | None = Column(Integer, nullable=True)  # type: ignore[assignment]
    created_at: int = Column(BigInteger, nullable=False)  # type: ignore[assignment]
    updated_at: int = Column(BigInteger, nullable=False)  # type: ignore[assignment]

    comments = relationship(
        "LeaveComment",
        back_populates="leave",
        order_by="LeaveComment.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class LeaveComment(Base):
    __tablename__ = "leave_comments"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    leave_id: int = Column(Integer, ForeignKey("leave_requests.id"), nullable=False, index=True)  # type: ignore[assignment]
    user_id: int = Column(Integer, ForeignKey("users.id"), nullable=False)  # type: ignore[assignment]
    text: str = Column(String(2000), nullable=False)  # type: ignore[assignment]
    at: int = Column(BigInteger, nullable=False)  # type: ignore[assignment]

    leave = relationship("LeaveRequest", back_populates="comments")


class LeaveBalance(Base):
    __tablename__ = "leave_balances"
    __table_args__ = (
        UniqueConstraint("user_id", "year", "type", name="uq_leave_balance_user_year_type"),
    )

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    user_id: int = Column(Integer, ForeignKey("users.id"), nullable=False)  # type: ignore[assignment]
    year: int = Column(Integer, nullable=False)  # type: ignore[assignment]
    type: str = Column(String(50), nullable=False)  # type: ignore[assignment]
    accrued: float = Column(Float, nullable=False)  # type: ignore[assignment]
    used: float = Column(Float, nullable=False, default=0.0)  # type: ignore[assignment]
    # Stored, not derived: legacy rows may carry a remaining that differs
    # from accrued - used.
    remaining: float = Column(Float, nullable=False)  # type: ignore[assignment]
    created_at: int = Column(BigInteger, nullable=False)  # type: ignore[assignment]
    updated_at: int = Column(BigInteger, nullable=False)  # type: ignore[assignment]
