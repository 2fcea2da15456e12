from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from crewscope.db.session import get_db
from crewscope.models.operations import Holiday
from crewscope.schemas.operations import HolidayCreate, HolidayOut
from crewscope.security.context import AuthzContext
from crewscope.security.dependencies import get_authz

router = APIRouter(prefix="/holidays", tags=["holidays"])


@router.get("", response_model=list[HolidayOut])
def list_holidays(db: Session = Depends(get_db)) -> list[Holiday]:
    # Organization-wide holidays (no site) are visible to every member.
    return list(db.scalars(select(Holiday).order_by(Holiday.observed_on, Holiday.id)).all())


@router.post("", response_model=HolidayOut, status_code=status.HTTP_201_CREATED)
def create_holiday(
    payload: HolidayCreate,
    authz: AuthzContext = Depends(get_authz),
    db: Session = Depends(get_db),
) -> Holiday:
    holiday = Holiday(organization_id=authz.organization_id, **payload.model_dump())
    db.add(holiday)
    db.commit()
    db.refresh(holiday)
    return holiday
