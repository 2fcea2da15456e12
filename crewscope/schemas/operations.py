from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from crewscope.models.operations import TaskStatus


class CrewMemberOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    site_id: int | None
    user_id: int | None
    name: str
    trade: str | None
    is_active: bool


class CrewMemberCreate(BaseModel):
    site_id: int | None = None
    user_id: int | None = None
    name: str = Field(min_length=1, max_length=200)
    trade: str | None = None


class CrewMove(BaseModel):
    to_site_id: int
    effective_date: date | None = None


class TaskOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    site_id: int | None
    title: str
    description: str | None
    status: TaskStatus
    start_date: date | None
    end_date: date | None
    created_by: int | None
    created_at: datetime


class TaskCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    site_id: int | None = None
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    status: TaskStatus = TaskStatus.PLANNED
    start_date: date | None = None
    end_date: date | None = None


class TaskUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    site_id: int | None = None
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    status: TaskStatus | None = None
    start_date: date | None = None
    end_date: date | None = None


class TimeEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    site_id: int
    crew_member_id: int
    work_date: date
    hours: Decimal
    notes: str | None


class TimeEntryCreate(BaseModel):
    site_id: int
    crew_member_id: int
    work_date: date
    hours: Decimal = Field(gt=0, le=24)
    notes: str | None = None


class HolidayOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    site_id: int | None
    name: str
    observed_on: date


class HolidayCreate(BaseModel):
    site_id: int | None = None
    name: str = Field(min_length=1, max_length=200)
    observed_on: date
