"""
Row-level access predicates.

One builder, `ResourcePolicy`, parameterized by the organization column and the
(nullable) site column of a resource, yields the four predicates every scoped
resource has:

    read    org == ctx.org AND (admin OR site IS NULL OR site IN accessible)
    create  org == ctx.org AND (admin OR site IS NULL OR has_access(site))
    modify  org == ctx.org AND (admin OR role_at(site) IN modify_roles)
    delete  org == ctx.org AND admin

Each predicate exists twice: as a Python check on a record (used when a flush
writes rows) and, for reads, as a SQL criterion (used when a query selects
rows). Both are derived from the same fields so they cannot drift apart.

Special clauses are OR-ed in per resource (owner of own profile, assignment
visibility by role at the assignment's own site); the organization clause is
AND-ed with everything and is never optional.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from sqlalchemy import ColumnElement, and_, or_

from crewscope.models.operations import ActivityRecord, CrewMember, Holiday, Task, TimeEntry
from crewscope.models.tenancy import Organization, Site, SiteAssignment, SiteRole, User
from crewscope.security.context import AuthzContext

if TYPE_CHECKING:
    from crewscope.security.config import SecurityConfig

logger = logging.getLogger(__name__)


MANAGER_ROLES = frozenset({SiteRole.SITE_MANAGER.value})
CREW_LEAD_ROLES = MANAGER_ROLES | {SiteRole.CREW_LEAD.value}


def _value(record: Any, column: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(column)
    return getattr(record, column, None)


@dataclass(frozen=True)
class ResourcePolicy:
    model: type
    org_column: str = "organization_id"
    site_column: str | None = "site_id"

    modify_roles: frozenset[str] = MANAGER_ROLES
    # None: any principal with access to the target site may create.
    create_roles: frozenset[str] | None = None
    create_requires_admin: bool = False
    # None: visibility follows site accessibility.
    read_roles: frozenset[str] | None = None

    owner_column: str | None = None
    owner_can_read: bool = False
    # Columns an owner may change on their own row without any site role.
    owner_modify_columns: frozenset[str] = field(default_factory=frozenset)

    @property
    def name(self) -> str:
        return self.model.__tablename__

    @property
    def site_nullable(self) -> bool:
        if self.site_column is None:
            return True
        return bool(self.model.__table__.c[self.site_column].nullable)

    # ---- SQL form (reads) -------------------------------------------------------

    def read_criteria(self, ctx: AuthzContext) -> ColumnElement[bool]:
        org_clause = getattr(self.model, self.org_column) == ctx.organization_id
        if ctx.is_admin or self.site_column is None:
            return org_clause

        options: list[ColumnElement[bool]] = []
        if self.owner_can_read and self.owner_column:
            options.append(getattr(self.model, self.owner_column) == ctx.user_id)

        site = getattr(self.model, self.site_column)
        if self.read_roles is not None:
            options.append(site.in_(sorted(ctx.sites_with_role(self.read_roles))))
        else:
            if self.site_nullable:
                options.append(site.is_(None))
            options.append(site.in_(sorted(ctx.accessible_site_ids)))

        return and_(org_clause, or_(*options))

    # ---- Python form (per record) -----------------------------------------------

    def _same_org(self, ctx: AuthzContext, record: Any) -> bool:
        return _value(record, self.org_column) == ctx.organization_id

    def _site(self, record: Any) -> Any:
        if self.site_column is None:
            return None
        return _value(record, self.site_column)

    def _is_owner(self, ctx: AuthzContext, record: Any) -> bool:
        return self.owner_column is not None and _value(record, self.owner_column) == ctx.user_id

    def can_read(self, ctx: AuthzContext, record: Any) -> bool:
        if not self._same_org(ctx, record):
            return False
        if ctx.is_admin or self.site_column is None:
            return True
        if self.owner_can_read and self._is_owner(ctx, record):
            return True

        site_id = self._site(record)
        if self.read_roles is not None:
            return ctx.role_at(site_id) in self.read_roles
        if site_id is None:
            return self.site_nullable
        return ctx.has_access(site_id)

    def can_create(self, ctx: AuthzContext, payload: Any) -> bool:
        if not self._same_org(ctx, payload):
            return False
        if ctx.is_admin:
            return True
        if self.create_requires_admin:
            return False

        site_id = self._site(payload)
        if self.create_roles is not None:
            return ctx.role_at(site_id) in self.create_roles
        if site_id is None:
            return self.site_nullable
        return ctx.has_access(site_id)

    def can_modify(
        self,
        ctx: AuthzContext,
        record: Any,
        *,
        original: Mapping[str, Any] | None = None,
        changed: Iterable[str] = (),
    ) -> bool:
        """
        Check an update. `original` holds the persisted values of the scoping
        columns; both the old and the new row must pass.
        """

        before = dict(original or {})
        states = [record] if not before else [record, before]
        if not all(self._same_org(ctx, state) for state in states):
            return False
        if ctx.is_admin:
            return True

        if self.owner_modify_columns and all(self._is_owner(ctx, state) for state in states):
            if set(changed) <= self.owner_modify_columns:
                return True

        if self.site_column is None:
            return False
        return all(ctx.role_at(self._site(state)) in self.modify_roles for state in states)

    def can_delete(self, ctx: AuthzContext, record: Any) -> bool:
        return self._same_org(ctx, record) and ctx.is_admin

    def scoping_columns(self) -> tuple[str, ...]:
        columns = [self.org_column]
        if self.site_column is not None:
            columns.append(self.site_column)
        if self.owner_column is not None:
            columns.append(self.owner_column)
        return tuple(dict.fromkeys(columns))


class PolicyRegistry:
    """Lookup from mapped class to its `ResourcePolicy`."""

    def __init__(self, policies: Iterable[ResourcePolicy]):
        self._by_model: dict[type, ResourcePolicy] = {p.model: p for p in policies}

    def __iter__(self) -> Iterator[ResourcePolicy]:
        return iter(self._by_model.values())

    def __contains__(self, model: object) -> bool:
        return model in self._by_model

    def for_model(self, model: type) -> ResourcePolicy | None:
        return self._by_model.get(model)

    def require(self, model: type) -> ResourcePolicy:
        policy = self.for_model(model)
        if policy is None:
            raise LookupError(f"No access policy registered for {model.__name__}")
        return policy


def _default_policies() -> list[ResourcePolicy]:
    return [
        ResourcePolicy(
            Organization,
            org_column="id",
            site_column=None,
            modify_roles=frozenset(),
            create_requires_admin=True,
        ),
        ResourcePolicy(
            User,
            site_column=None,
            modify_roles=frozenset(),
            create_requires_admin=True,
            owner_column="id",
            owner_modify_columns=frozenset({"display_name", "email"}),
        ),
        # A site's own id is its site column.
        ResourcePolicy(Site, site_column="id", modify_roles=frozenset(), create_requires_admin=True),
        # Visibility is decided by the assignment's own site, not a joined resource.
        ResourcePolicy(
            SiteAssignment,
            read_roles=MANAGER_ROLES,
            create_roles=MANAGER_ROLES,
            owner_column="user_id",
            owner_can_read=True,
        ),
        ResourcePolicy(CrewMember),
        ResourcePolicy(Task),
        ResourcePolicy(TimeEntry, modify_roles=CREW_LEAD_ROLES),
        ResourcePolicy(ActivityRecord, modify_roles=CREW_LEAD_ROLES),
        ResourcePolicy(Holiday, modify_roles=frozenset(), create_requires_admin=True),
    ]


def build_policies(config: SecurityConfig | None = None) -> PolicyRegistry:
    """
    Build the registry, applying role-list overrides from `security.resources`
    in the YAML config. Column wiring is fixed in code.
    """

    policies = _default_policies()
    if config is None:
        return PolicyRegistry(policies)

    overrides = config.model.resources
    known = {p.name for p in policies}
    unknown = set(overrides).difference(known)
    if unknown:
        raise ValueError(f"security.resources references unknown resources: {sorted(unknown)}")

    adjusted: list[ResourcePolicy] = []
    for policy in policies:
        rule = overrides.get(policy.name)
        if rule is None:
            adjusted.append(policy)
            continue
        changes: dict[str, Any] = {}
        if rule.modify_roles is not None:
            changes["modify_roles"] = frozenset(rule.modify_roles)
        if rule.create_roles is not None:
            changes["create_roles"] = frozenset(rule.create_roles)
        if rule.read_roles is not None:
            changes["read_roles"] = frozenset(rule.read_roles)
        logger.debug("Policy overrides resource=%s changes=%s", policy.name, sorted(changes))
        adjusted.append(replace(policy, **changes))

    return PolicyRegistry(adjusted)


DEFAULT_POLICIES = build_policies()
