"""
Scoped data access for feature code.

Every read names a site (or explicitly asks for organization-wide rows) and
every write gets its organization and site stamped from the scope manager.
The session should itself carry an AuthzContext (see
`crewscope.db.session.attach_authz`); the predicates there stay authoritative,
this layer only keeps well-behaved callers on the right rows.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import ColumnElement, select
from sqlalchemy.orm import Session

from crewscope.client.manager import SessionScopeManager
from crewscope.errors import ScopeNotFound, Unauthenticated
from crewscope.security.policies import DEFAULT_POLICIES, PolicyRegistry, ResourcePolicy

logger = logging.getLogger(__name__)


class _Marker:
    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return self._name


# Rows with no site: organization-wide records.
ORG_WIDE: Any = _Marker("ORG_WIDE")
# The manager's current selection.
CURRENT: Any = _Marker("CURRENT")


class ScopedDataAccess:
    def __init__(self, db: Session, manager: SessionScopeManager, policies: PolicyRegistry | None = None):
        self._db = db
        self._manager = manager
        self._policies = policies or DEFAULT_POLICIES

    def _policy(self, model: type) -> ResourcePolicy:
        policy = self._policies.require(model)
        if policy.site_column is None or policy.site_column == "id":
            raise ValueError(f"{policy.name} is not a site-scoped resource")
        return policy

    def _organization_id(self) -> int:
        principal = self._manager.principal
        if principal is None:
            raise Unauthenticated("Scope manager has no signed-in principal")
        return principal.organization_id

    def _require_accessible(self, site_id: int) -> int:
        if site_id not in self._manager.accessible_site_ids():
            raise ScopeNotFound(site_id)
        return site_id

    def fetch(
        self,
        model: type,
        site_id: int | None,
        *criteria: ColumnElement[bool],
        order_by: Any = None,
    ) -> list[Any]:
        """
        Rows of `model` at `site_id`, or organization-wide rows for `ORG_WIDE`.

        Yields no rows when `site_id` is `None` or the manager has nothing
        selected, whatever site was asked for.
        """

        if site_id is None or self._manager.get_current_scope() is None:
            return []

        policy = self._policy(model)
        site_column = getattr(model, policy.site_column)

        stmt = select(model).where(getattr(model, policy.org_column) == self._organization_id())
        if site_id is ORG_WIDE:
            if not policy.site_nullable:
                raise ValueError(f"{policy.name} has no organization-wide rows")
            stmt = stmt.where(site_column.is_(None))
        else:
            stmt = stmt.where(site_column == self._require_accessible(site_id))

        if criteria:
            stmt = stmt.where(*criteria)
        stmt = stmt.order_by(order_by if order_by is not None else model.id)
        return list(self._db.scalars(stmt).all())

    def fetch_current(self, model: type, *criteria: ColumnElement[bool], order_by: Any = None) -> list[Any]:
        current = self._manager.get_current_scope()
        if current is None:
            return []
        return self.fetch(model, current.id, *criteria, order_by=order_by)

    def create(self, model: type, site_id: Any = CURRENT, **values: Any) -> Any:
        policy = self._policy(model)
        supplied = {policy.org_column, policy.site_column}.intersection(values)
        if supplied:
            raise ValueError(f"Scoping columns are stamped, not supplied: {sorted(supplied)}")

        organization_id = self._organization_id()
        if site_id is CURRENT:
            target = self._manager.require_current_scope().id
        elif site_id is ORG_WIDE:
            if not policy.site_nullable:
                raise ValueError(f"{policy.name} requires a site")
            target = None
        else:
            target = self._require_accessible(site_id)

        obj = model(**values)
        setattr(obj, policy.org_column, organization_id)
        setattr(obj, policy.site_column, target)
        self._db.add(obj)
        self._db.flush()
        logger.debug("Created %s id=%s site_id=%s", policy.name, obj.id, target)
        return obj

    def update(self, obj: Any, **values: Any) -> Any:
        policy = self._policy(type(obj))
        touched = {policy.org_column, policy.site_column}.intersection(values)
        if touched:
            raise ValueError(f"Scoping columns cannot be changed here: {sorted(touched)}")

        for key, value in values.items():
            setattr(obj, key, value)
        self._db.flush()
        return obj

    def delete(self, obj: Any) -> None:
        self._policy(type(obj))
        self._db.delete(obj)
        self._db.flush()
