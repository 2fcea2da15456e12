from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from crewscope.db.session import get_db
from crewscope.models.tenancy import SiteAssignment
from crewscope.schemas.tenancy import AssignmentCreate, AssignmentOut
from crewscope.security.context import AuthzContext
from crewscope.security.dependencies import get_authz
from crewscope.services import staffing

router = APIRouter(tags=["site_assignments"])


@router.get("/site-assignments", response_model=list[AssignmentOut])
def list_assignments(active_only: bool = True, db: Session = Depends(get_db)) -> list[SiteAssignment]:
    # Your own rows, plus every row at the sites you manage.
    stmt = select(SiteAssignment).order_by(SiteAssignment.site_id, SiteAssignment.user_id)
    if active_only:
        stmt = stmt.where(SiteAssignment.is_active.is_(True))
    return list(db.scalars(stmt).all())


@router.get("/sites/{site_id}/assignments", response_model=list[AssignmentOut])
def list_site_assignments(site_id: int, db: Session = Depends(get_db)) -> list[SiteAssignment]:
    stmt = (
        select(SiteAssignment)
        .where(SiteAssignment.site_id == site_id, SiteAssignment.is_active.is_(True))
        .order_by(SiteAssignment.user_id)
    )
    return list(db.scalars(stmt).all())


@router.post("/site-assignments", response_model=AssignmentOut)
def assign(
    payload: AssignmentCreate,
    response: Response,
    authz: AuthzContext = Depends(get_authz),
    db: Session = Depends(get_db),
) -> SiteAssignment:
    assignment, created = staffing.assign_user_to_site(
        db,
        authz,
        user_id=payload.user_id,
        site_id=payload.site_id,
        role=payload.role,
        start_date=payload.start_date,
    )
    db.commit()
    db.refresh(assignment)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return assignment


@router.post("/site-assignments/{assignment_id}/end", response_model=AssignmentOut)
def end_assignment(
    assignment_id: int,
    end_date: date | None = None,
    authz: AuthzContext = Depends(get_authz),
    db: Session = Depends(get_db),
) -> SiteAssignment:
    assignment = staffing.end_assignment(db, authz, assignment_id, end_date=end_date)
    db.commit()
    db.refresh(assignment)
    return assignment
