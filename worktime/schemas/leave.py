"""Pydantic schemas for leave requests and balances."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class LeaveCreate(BaseModel):
    type: str = Field(min_length=1, max_length=50)
    start_date: int
    end_date: int
    partial: Literal["AM", "PM"] | None = None
    reason: str = Field(default="", max_length=1000)


class LeaveCreated(BaseModel):
    leave_id: int


class LeaveStatusUpdate(BaseModel):
    status: Literal["approved", "rejected"]
    comment: str | None = Field(default=None, max_length=2000)


class LeaveCancel(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class LeaveCommentCreate(BaseModel):
    text: str = Field(min_length=1, max_length=2000)


class LeaveCommentRead(BaseModel):
    user_id: int
    text: str
    at: int

    model_config = {"from_attributes": True}


class LeaveRead(BaseModel):
    id: int
    user_id: int
    type: str
    start_date: int
    end_date: int
    partial: str | None
    reason: str
    status: str
    approver_id: int | None
    comments: list[LeaveCommentRead] = []
    created_at: int
    updated_at: int

    model_config = {"from_attributes": True}


class BalanceRead(BaseModel):
    user_id: int
    year: int
    type: str
    accrued: float
    used: float
    remaining: float

    model_config = {"from_attributes": True}
