from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from crewscope.db.session import get_db
from crewscope.models.tenancy import Site
from crewscope.schemas.tenancy import SiteCreate, SiteOut, SiteUpdate
from crewscope.security.context import AuthzContext
from crewscope.security.dependencies import get_authz
from crewscope.services import staffing

router = APIRouter(prefix="/sites", tags=["sites"])


def _get_site(db: Session, site_id: int) -> Site:
    site = db.scalars(select(Site).where(Site.id == site_id)).first()
    if site is None:
        # Sites of other organizations, or not assigned to you, look like missing ones.
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Site not found")
    return site


@router.get("", response_model=list[SiteOut])
def list_sites(db: Session = Depends(get_db)) -> list[Site]:
    return list(db.scalars(select(Site).order_by(Site.name, Site.id)).all())


@router.get("/{site_id}", response_model=SiteOut)
def get_site(site_id: int, db: Session = Depends(get_db)) -> Site:
    return _get_site(db, site_id)


@router.post("", response_model=SiteOut, status_code=status.HTTP_201_CREATED)
def create_site(
    payload: SiteCreate,
    authz: AuthzContext = Depends(get_authz),
    db: Session = Depends(get_db),
) -> Site:
    site = Site(organization_id=authz.organization_id, is_system=False, **payload.model_dump())
    db.add(site)
    db.commit()
    db.refresh(site)
    return site


@router.patch("/{site_id}", response_model=SiteOut)
def update_site(site_id: int, payload: SiteUpdate, db: Session = Depends(get_db)) -> Site:
    site = _get_site(db, site_id)
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(site, field, value)
    db.commit()
    db.refresh(site)
    return site


@router.delete("/{site_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_site(
    site_id: int,
    authz: AuthzContext = Depends(get_authz),
    db: Session = Depends(get_db),
) -> Response:
    site = _get_site(db, site_id)
    if site.is_system:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="The system site cannot be deleted")

    staffing.delete_site(db, authz, site)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
