"""Pydantic schemas for reports and the audit trail."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ProjectHoursRow(BaseModel):
    project_id: str | None
    entries: int
    total_hours: float

    model_config = {"from_attributes": True}


class OvertimeRow(BaseModel):
    user_id: int
    date: str
    worked_hours: float
    regular_hours: float
    overtime_hours: float
    multiplier: float
    overtime_pay_hours: float

    model_config = {"from_attributes": True}


class AuditLogRead(BaseModel):
    id: int
    actor_id: int
    action: str
    target_type: str
    target_id: str
    metadata: dict[str, Any] = Field(validation_alias="meta")
    at: int

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    db: bool
    redis: bool
