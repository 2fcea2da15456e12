from __future__ import annotations

from datetime import date

from pydantic import BaseModel, ConfigDict, Field

from crewscope.models.tenancy import SiteRole, SiteStatus


class PrincipalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    is_admin: bool
    base_role: str | None
    display_name: str | None


class SiteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    name: str
    address: str | None
    status: SiteStatus
    start_date: date | None
    end_date: date | None
    is_system: bool


class SiteCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    name: str = Field(min_length=1, max_length=200)
    address: str | None = None
    status: SiteStatus = SiteStatus.ACTIVE
    start_date: date | None = None
    end_date: date | None = None


class SiteUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    name: str | None = Field(default=None, min_length=1, max_length=200)
    address: str | None = None
    status: SiteStatus | None = None
    start_date: date | None = None
    end_date: date | None = None


class SiteRoleOut(BaseModel):
    site_id: int
    role: str | None


class AssignmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    user_id: int
    site_id: int
    role: SiteRole
    start_date: date
    end_date: date | None
    is_active: bool
    assigned_by: int | None


class AssignmentCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    user_id: int
    site_id: int
    role: SiteRole
    start_date: date | None = None
