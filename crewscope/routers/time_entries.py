from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from crewscope.db.session import get_db
from crewscope.models.operations import CrewMember, TimeEntry
from crewscope.schemas.operations import TimeEntryCreate, TimeEntryOut
from crewscope.security.context import AuthzContext
from crewscope.security.dependencies import get_authz

router = APIRouter(prefix="/time-entries", tags=["time_entries"])


@router.get("", response_model=list[TimeEntryOut])
def list_time_entries(
    site_id: int | None = None,
    crew_member_id: int | None = None,
    db: Session = Depends(get_db),
) -> list[TimeEntry]:
    stmt = select(TimeEntry).order_by(TimeEntry.work_date, TimeEntry.id)
    if site_id is not None:
        stmt = stmt.where(TimeEntry.site_id == site_id)
    if crew_member_id is not None:
        stmt = stmt.where(TimeEntry.crew_member_id == crew_member_id)
    return list(db.scalars(stmt).all())


@router.post("", response_model=TimeEntryOut, status_code=status.HTTP_201_CREATED)
def create_time_entry(
    payload: TimeEntryCreate,
    authz: AuthzContext = Depends(get_authz),
    db: Session = Depends(get_db),
) -> TimeEntry:
    member = db.scalars(select(CrewMember).where(CrewMember.id == payload.crew_member_id)).first()
    if member is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Crew member not found")

    entry = TimeEntry(organization_id=authz.organization_id, **payload.model_dump())
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry
