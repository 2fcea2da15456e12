from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from crewscope.db.session import get_db
from crewscope.models.tenancy import Site
from crewscope.schemas.tenancy import PrincipalOut, SiteOut, SiteRoleOut
from crewscope.security.context import Principal
from crewscope.security.dependencies import get_principal
from crewscope.security.resolver import ScopeResolver

router = APIRouter(prefix="/me", tags=["me"])


@router.get("", response_model=PrincipalOut)
def me(principal: Principal = Depends(get_principal)) -> Principal:
    return principal


@router.get("/sites", response_model=list[SiteOut])
def my_sites(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)) -> list[Site]:
    # Accessible scopes for the session scope manager, ordered by name.
    return ScopeResolver(db, principal).accessible_sites()


@router.get("/sites/{site_id}/role", response_model=SiteRoleOut)
def my_role_at(
    site_id: int,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> SiteRoleOut:
    return SiteRoleOut(site_id=site_id, role=ScopeResolver(db, principal).role_at(site_id))
