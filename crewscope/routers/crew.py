from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from crewscope.db.session import get_db
from crewscope.models.operations import CrewMember
from crewscope.schemas.operations import CrewMemberCreate, CrewMemberOut, CrewMove
from crewscope.security.context import AuthzContext
from crewscope.security.decorators import admin_only
from crewscope.security.dependencies import get_authz
from crewscope.services import staffing

router = APIRouter(prefix="/crew", tags=["crew"])


@router.get("", response_model=list[CrewMemberOut])
def list_crew(site_id: int | None = None, db: Session = Depends(get_db)) -> list[CrewMember]:
    stmt = select(CrewMember).where(CrewMember.is_active.is_(True)).order_by(CrewMember.name, CrewMember.id)
    if site_id is not None:
        stmt = stmt.where(CrewMember.site_id == site_id)
    return list(db.scalars(stmt).all())


@router.post("", response_model=CrewMemberOut, status_code=status.HTTP_201_CREATED)
def create_crew_member(
    payload: CrewMemberCreate,
    authz: AuthzContext = Depends(get_authz),
    db: Session = Depends(get_db),
) -> CrewMember:
    member = CrewMember(organization_id=authz.organization_id, **payload.model_dump())
    db.add(member)
    db.commit()
    db.refresh(member)
    return member


@router.post("/{crew_member_id}/move", response_model=CrewMemberOut)
@admin_only()
def move_crew_member(
    crew_member_id: int,
    payload: CrewMove,
    authz: AuthzContext = Depends(get_authz),
    db: Session = Depends(get_db),
) -> CrewMember:
    # No config entry required: the decorator marks the route admin-only.
    member = staffing.move_crew_member(
        db,
        authz,
        crew_member_id,
        payload.to_site_id,
        effective_date=payload.effective_date,
    )
    db.commit()
    db.refresh(member)
    return member
