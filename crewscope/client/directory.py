"""
Where the scope manager gets its two network-bound answers from: the list of
accessible sites, and the principal's role at one site.

`HttpSiteDirectory` talks to the crewscope HTTP service; `ResolverSiteDirectory`
asks the scope resolver directly, for clients running next to the database.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from typing import Any, Protocol

import requests
from sqlalchemy.orm import sessionmaker

from crewscope.errors import AuthzDenied, NetworkFailure, Unauthenticated
from crewscope.security.context import Principal
from crewscope.security.resolver import ScopeResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SiteRef:
    """Display-ready view of an accessible site."""

    id: int
    organization_id: int
    name: str
    address: str | None = None
    status: str = "active"
    is_system: bool = False

    @classmethod
    def from_row(cls, site: Any) -> SiteRef:
        return cls(
            id=site.id,
            organization_id=site.organization_id,
            name=site.name,
            address=site.address,
            status=site.status,
            is_system=bool(site.is_system),
        )

    @classmethod
    def from_json(cls, payload: dict[str, Any]) -> SiteRef:
        return cls(
            id=int(payload["id"]),
            organization_id=int(payload["organization_id"]),
            name=str(payload["name"]),
            address=payload.get("address"),
            status=str(payload.get("status") or "active"),
            is_system=bool(payload.get("is_system", False)),
        )


class SiteDirectory(Protocol):
    async def fetch_accessible_sites(self, principal: Principal) -> list[SiteRef]: ...

    async def fetch_role_at(self, principal: Principal, site_id: int) -> str | None: ...


class IdentityProvider(Protocol):
    def current_principal(self) -> Principal | None: ...


class StaticIdentity:
    """Identity collaborator holding whoever signed in last."""

    def __init__(self, principal: Principal | None = None) -> None:
        self._principal = principal

    def current_principal(self) -> Principal | None:
        return self._principal

    def sign_in(self, principal: Principal) -> None:
        self._principal = principal

    def sign_out(self) -> None:
        self._principal = None


class ResolverSiteDirectory:
    """
    In-process directory: one short session per call, resolver queries only.

    Work runs in a worker thread so the event loop is never blocked on the
    database. `today` pins the date assignments are evaluated against.
    """

    def __init__(self, session_factory: sessionmaker, today: date | None = None) -> None:
        self._session_factory = session_factory
        self.today = today

    async def fetch_accessible_sites(self, principal: Principal) -> list[SiteRef]:
        return await asyncio.to_thread(self._accessible_sites, principal)

    async def fetch_role_at(self, principal: Principal, site_id: int) -> str | None:
        return await asyncio.to_thread(self._role_at, principal, site_id)

    def _accessible_sites(self, principal: Principal) -> list[SiteRef]:
        with self._session_factory() as db:
            sites = ScopeResolver(db, principal, today=self.today).accessible_sites()
            return [SiteRef.from_row(site) for site in sites]

    def _role_at(self, principal: Principal, site_id: int) -> str | None:
        with self._session_factory() as db:
            return ScopeResolver(db, principal, today=self.today).role_at(site_id)


class HttpSiteDirectory:
    """
    Directory backed by `GET /me/sites` and `GET /me/sites/{id}/role`.

    Transport errors and 5xx answers become `NetworkFailure`; 401 and 403 map
    to `Unauthenticated` and `AuthzDenied`. Nothing is retried here.
    """

    def __init__(
        self,
        base_url: str,
        token_for: Callable[[Principal], str] | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        # Default matches the "dummy" auth provider: the bearer token is the user id.
        self._token_for = token_for or (lambda principal: str(principal.id))
        self._timeout = timeout

    async def fetch_accessible_sites(self, principal: Principal) -> list[SiteRef]:
        body = await asyncio.to_thread(self._get_json, principal, "/me/sites")
        return [SiteRef.from_json(item) for item in body or []]

    async def fetch_role_at(self, principal: Principal, site_id: int) -> str | None:
        body = await asyncio.to_thread(self._get_json, principal, f"/me/sites/{site_id}/role")
        return (body or {}).get("role")

    def _get_json(self, principal: Principal, path: str) -> Any:
        url = f"{self._base_url}{path}"
        headers = {"Authorization": f"Bearer {self._token_for(principal)}"}

        try:
            resp = requests.get(url, headers=headers, timeout=self._timeout)
        except requests.RequestException as exc:
            logger.warning("Site directory request failed path=%s: %s", path, type(exc).__name__)
            raise NetworkFailure(f"GET {path} failed: {type(exc).__name__}") from exc

        if resp.status_code == 401:
            raise Unauthenticated(f"GET {path} rejected the credentials")
        if resp.status_code == 403:
            raise AuthzDenied(resource="sites", action="read")
        if resp.status_code != 200:
            logger.warning("Site directory returned status=%s path=%s", resp.status_code, path)
            raise NetworkFailure(f"GET {path} returned status {resp.status_code}")

        try:
            return resp.json()
        except ValueError as exc:
            raise NetworkFailure(f"GET {path} returned a non-JSON body") from exc
