from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Principal:
    """
    The authenticated actor, as handed over by the identity collaborator.

    Everything else (accessible sites, roles) is re-derived from this.
    """

    id: int
    organization_id: int
    is_admin: bool = False
    base_role: str | None = None
    display_name: str | None = None


@dataclass(frozen=True)
class AuthzContext:
    """
    Per-request snapshot of the scope resolver's outputs.

    Attached to:
    - request.state (FastAPI request lifetime)
    - Session.info (SQLAlchemy session lifetime), where the predicate filters read it
    """

    user_id: int
    organization_id: int
    is_admin: bool
    accessible_site_ids: frozenset[int]

    # site id -> role in effect today; admins carry the implicit admin role for every org site.
    site_roles: Mapping[int, str] = field(default_factory=dict, hash=False)

    def has_access(self, site_id: int | None) -> bool:
        return site_id is not None and site_id in self.accessible_site_ids

    def role_at(self, site_id: int | None) -> str | None:
        if site_id is None:
            return None
        return self.site_roles.get(site_id)

    def sites_with_role(self, roles: Iterable[str]) -> frozenset[int]:
        wanted = set(roles)
        return frozenset(site_id for site_id, role in self.site_roles.items() if role in wanted)
