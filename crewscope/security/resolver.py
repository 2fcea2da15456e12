"""
Scope resolver: who is the principal, and which sites may they operate on.

Every method re-queries the authorization store; nothing is cached between
calls. Queries run with the `skip_authz` execution option because they are the
store's own helpers: the predicate filters are built *from* their answers.
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from crewscope.errors import Unauthenticated
from crewscope.models.tenancy import ADMIN_ROLE, Site, SiteAssignment
from crewscope.security.context import AuthzContext, Principal

logger = logging.getLogger(__name__)

DEFINER = {"skip_authz": True}


class ScopeResolver:
    def __init__(self, db: Session, principal: Principal | None, today: date | None = None):
        self._db = db
        self._principal = principal
        self._today = today

    @property
    def today(self) -> date:
        return self._today or date.today()

    def _require_principal(self) -> Principal:
        if self._principal is None:
            raise Unauthenticated("No signed-in principal")
        return self._principal

    def organization_id(self) -> int:
        return self._require_principal().organization_id

    def is_admin(self) -> bool:
        return bool(self._require_principal().is_admin)

    def _in_effect_assignments(self):
        principal = self._require_principal()
        return (
            select(SiteAssignment.site_id, SiteAssignment.role)
            .join(Site, Site.id == SiteAssignment.site_id)
            .where(
                SiteAssignment.user_id == principal.id,
                SiteAssignment.is_active.is_(True),
                or_(SiteAssignment.end_date.is_(None), SiteAssignment.end_date >= self.today),
                # An assignment can never open a site of another organization.
                Site.organization_id == principal.organization_id,
            )
        )

    def accessible_site_ids(self) -> frozenset[int]:
        if self.is_admin():
            stmt = select(Site.id).where(Site.organization_id == self.organization_id())
            return frozenset(self._db.scalars(stmt.execution_options(**DEFINER)).all())

        rows = self._db.execute(self._in_effect_assignments().execution_options(**DEFINER)).all()
        return frozenset(row.site_id for row in rows)

    def accessible_sites(self) -> list[Site]:
        """Accessible sites as full rows, ordered by name for display."""
        ids = self.accessible_site_ids()
        if not ids:
            return []
        stmt = select(Site).where(Site.id.in_(sorted(ids))).order_by(Site.name, Site.id)
        return list(self._db.scalars(stmt.execution_options(**DEFINER)).all())

    def role_at(self, site_id: int) -> str | None:
        if self.is_admin():
            site_org = self._db.scalar(
                select(Site.organization_id).where(Site.id == site_id).execution_options(**DEFINER)
            )
            return ADMIN_ROLE if site_org == self.organization_id() else None

        stmt = self._in_effect_assignments().where(SiteAssignment.site_id == site_id).limit(1)
        row = self._db.execute(stmt.execution_options(**DEFINER)).first()
        return row.role if row is not None else None

    def has_access(self, site_id: int) -> bool:
        if self.is_admin():
            site_org = self._db.scalar(
                select(Site.organization_id).where(Site.id == site_id).execution_options(**DEFINER)
            )
            if site_org == self.organization_id():
                return True
        return site_id in self.accessible_site_ids()

    def snapshot(self) -> AuthzContext:
        """Evaluate the resolver once and freeze the result for one request."""
        principal = self._require_principal()

        if principal.is_admin:
            site_ids = self.accessible_site_ids()
            site_roles = {site_id: ADMIN_ROLE for site_id in site_ids}
        else:
            rows = self._db.execute(self._in_effect_assignments().execution_options(**DEFINER)).all()
            site_roles = {row.site_id: row.role for row in rows}
            site_ids = frozenset(site_roles)

        logger.debug(
            "Resolved scope user_id=%s org_id=%s admin=%s sites=%s",
            principal.id,
            principal.organization_id,
            principal.is_admin,
            sorted(site_ids),
        )
        return AuthzContext(
            user_id=principal.id,
            organization_id=principal.organization_id,
            is_admin=bool(principal.is_admin),
            accessible_site_ids=frozenset(site_ids),
            site_roles=site_roles,
        )
