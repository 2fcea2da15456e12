"""
Session scope manager: the client's "which site am I working on" state.

One instance per signed-in session, constructed explicitly and handed to the
code that needs it. All methods run on one asyncio event loop; the only
suspension points are the two directory calls (accessible sites, role at a
site). Change signals may arrive from other threads through
`request_reconcile`, which hops onto the manager's loop.

Two counters keep late results from landing:

- `_generation` moves on every new selection; a role result for an older
  generation is dropped (last request wins, not last completion).
- `_epoch` moves on sign-out; nothing started before it may touch state after.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from crewscope.client.directory import IdentityProvider, SiteDirectory, SiteRef
from crewscope.client.propagator import ChangePropagator
from crewscope.client.storage import KeyValueStore
from crewscope.errors import ScopeListEmpty, ScopeNotFound, StaleScope, Unauthenticated
from crewscope.models.tenancy import SiteRole
from crewscope.security.config import RolesConfig
from crewscope.security.context import Principal

logger = logging.getLogger(__name__)

_ABANDONED = object()


def selection_key(principal: Principal) -> str:
    return f"crewscope:last_site:{principal.organization_id}:{principal.id}"


class ScopeState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    EMPTY = "empty"
    ACTIVE = "active"
    RECONCILING = "reconciling"


class ChangeReason(str, enum.Enum):
    INITIALIZED = "initialized"
    SWITCHED = "switched"
    RECONCILED = "reconciled"
    SIGNED_OUT = "signed_out"


@dataclass(frozen=True)
class ScopeChange:
    reason: ChangeReason
    previous: SiteRef | None
    current: SiteRef | None
    sites: tuple[SiteRef, ...] = ()
    # Set when the previous selection vanished and was replaced.
    stale: StaleScope | None = field(default=None, compare=False)

    @property
    def is_stale(self) -> bool:
        return self.stale is not None


ScopeListener = Callable[[ScopeChange], None]


class SessionScopeManager:
    def __init__(
        self,
        identity: IdentityProvider,
        directory: SiteDirectory,
        store: KeyValueStore,
        propagator: ChangePropagator | None = None,
        roles: RolesConfig | None = None,
    ) -> None:
        self._identity = identity
        self._directory = directory
        self._store = store
        self._propagator = propagator
        self._roles = roles or RolesConfig()

        self._state = ScopeState.UNINITIALIZED
        self._principal: Principal | None = None
        self._sites: list[SiteRef] = []
        self._current: SiteRef | None = None

        # Most recently completed role resolution, and the site it was for.
        self._role: str | None = None
        self._role_site_id: int | None = None

        # Last value known to be in the persistent slot.
        self._persisted: str | None = None

        self._generation = 0
        self._epoch = 0

        self._loop: asyncio.AbstractEventLoop | None = None
        self._inflight: set[asyncio.Future[Any]] = set()
        self._reconcile_task: asyncio.Task[ScopeChange | None] | None = None
        self._reconcile_requested = False

        self._listeners: list[ScopeListener] = []
        self._unsubscribe_changes: Callable[[], None] | None = None

    # ---- read side ---------------------------------------------------------------

    @property
    def state(self) -> ScopeState:
        return self._state

    @property
    def principal(self) -> Principal | None:
        return self._principal

    @property
    def current_role(self) -> str | None:
        """Role at the current selection, once its resolution has completed."""
        if self._current is None or self._role_site_id != self._current.id:
            return None
        return self._role

    def get_current_scope(self) -> SiteRef | None:
        return self._current

    def list_accessible_scopes(self) -> list[SiteRef]:
        return list(self._sites)

    def accessible_site_ids(self) -> frozenset[int]:
        return frozenset(site.id for site in self._sites)

    def require_current_scope(self) -> SiteRef:
        if self._principal is None:
            raise Unauthenticated("Scope manager has no signed-in principal")
        if self._current is None:
            raise ScopeListEmpty("No accessible sites")
        return self._current

    def can_view_current_scope(self) -> bool:
        return self._current is not None and self._current.id in self.accessible_site_ids()

    def can_manage_current_scope(self) -> bool:
        if not self.can_view_current_scope() or self._principal is None:
            return False
        if self._principal.is_admin:
            return True
        return self.current_role in set(self._roles.manager_roles)

    def should_show_scope_switcher(self) -> bool:
        principal = self._principal
        if principal is None or len(self._sites) <= 1:
            return False
        if principal.is_admin:
            return False
        return (principal.base_role or SiteRole.FIELD_WORKER.value) != self._roles.lowest_role

    def on_scope_change(self, callback: ScopeListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    # ---- lifecycle ---------------------------------------------------------------

    async def initialize(self) -> SiteRef | None:
        """
        Load the accessible sites and pick the selection.

        The persisted id is only a candidate: it is used when it is a member of
        the freshly fetched set, otherwise the first site wins. An empty set
        leaves the manager EMPTY with nothing selected.
        """

        principal = self._identity.current_principal()
        if principal is None:
            raise Unauthenticated("No signed-in principal")

        if self._principal is not None and self._principal != principal:
            self.sign_out()

        self._loop = asyncio.get_running_loop()
        self._principal = principal
        self._state = ScopeState.LOADING
        epoch = self._epoch

        try:
            fetched = await self._guarded(self._directory.fetch_accessible_sites(principal), epoch)
        except BaseException:
            if epoch == self._epoch:
                self._state = ScopeState.UNINITIALIZED
            raise
        if fetched is _ABANDONED or epoch != self._epoch:
            return None

        self._sites = self._own_org_only(principal, fetched)

        stored = self._store.get(selection_key(principal))
        selected = self._find(_parse_site_id(stored))
        if selected is None and stored is not None:
            logger.info("Ignoring persisted site=%s for user_id=%s: not accessible", stored, principal.id)
        if selected is None and self._sites:
            selected = self._sites[0]

        self._generation += 1
        generation = self._generation
        self._current = selected
        self._role = None
        self._role_site_id = None
        self._state = ScopeState.ACTIVE if selected is not None else ScopeState.EMPTY
        self._write_selection(selected, force=True)
        self._subscribe_to_changes(principal)

        logger.info(
            "Scope initialized user_id=%s org_id=%s sites=%s selected=%s",
            principal.id,
            principal.organization_id,
            len(self._sites),
            selected.id if selected else None,
        )
        self._emit(ChangeReason.INITIALIZED, previous=None)

        if selected is not None:
            await self._resolve_role(selected.id, generation, epoch)
        return selected

    def sign_out(self) -> None:
        """
        Tear the session down. Synchronous: the persisted slot is gone when
        this returns, and nothing still in flight will touch state afterwards.
        """

        principal = self._principal
        previous = self._current

        self._epoch += 1
        self._generation += 1

        if self._reconcile_task is not None and not self._reconcile_task.done():
            self._reconcile_task.cancel()
        self._reconcile_task = None
        self._reconcile_requested = False
        for future in list(self._inflight):
            future.cancel()
        self._inflight.clear()

        if self._unsubscribe_changes is not None:
            self._unsubscribe_changes()
            self._unsubscribe_changes = None

        if principal is not None:
            self._store.remove(selection_key(principal))

        self._principal = None
        self._sites = []
        self._current = None
        self._role = None
        self._role_site_id = None
        self._persisted = None
        self._state = ScopeState.UNINITIALIZED

        if principal is not None:
            logger.info("Scope signed out user_id=%s", principal.id)
            self._emit(ChangeReason.SIGNED_OUT, previous=previous)

    # ---- switching ---------------------------------------------------------------

    async def switch_scope(self, site_id: int) -> None:
        """
        Select `site_id`, persist it, then resolve the role there.

        Raises ScopeNotFound, leaving everything untouched, when the site is
        not in the known accessible set. A switch issued while an earlier
        one is still resolving its role supersedes it.
        """

        if self._principal is None:
            raise Unauthenticated("Scope manager has no signed-in principal")

        target = self._find(site_id)
        if target is None:
            raise ScopeNotFound(site_id)

        previous = self._current
        if previous is not None and previous.id == target.id and self._role_site_id == target.id:
            return

        self._generation += 1
        generation = self._generation
        epoch = self._epoch

        self._current = target
        if self._state is not ScopeState.RECONCILING:
            self._state = ScopeState.ACTIVE
        self._write_selection(target)

        if previous is None or previous.id != target.id:
            logger.debug("Scope switched user_id=%s site_id=%s", self._principal.id, target.id)
            self._emit(ChangeReason.SWITCHED, previous=previous)

        await self._resolve_role(target.id, generation, epoch)

    # ---- reconciliation ----------------------------------------------------------

    async def reconcile(self) -> ScopeChange | None:
        """
        Re-fetch the accessible set, repair the selection if it vanished and
        re-resolve the role at the selection.

        Calls made while a reconcile is in flight wait for that one instead of
        starting another fetch. Returns the change that was emitted, if any.
        """

        if self._principal is None:
            raise Unauthenticated("Scope manager has no signed-in principal")

        epoch = self._epoch
        task = self._ensure_reconcile_task()
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled() and epoch != self._epoch:
                return None
            raise

    def request_reconcile(self, organization_id: int | None = None) -> None:
        """
        Change-signal entry point. Safe to call from any thread.

        Bursts collapse: at most one fetch runs at a time, plus one follow-up
        if signals arrived while it was running. Failures are logged and the
        current state is kept.
        """

        loop = self._loop
        if loop is None or loop.is_closed():
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            self._schedule_background_reconcile()
        else:
            loop.call_soon_threadsafe(self._schedule_background_reconcile)

    def _schedule_background_reconcile(self) -> None:
        if self._principal is None or self._state in (ScopeState.UNINITIALIZED, ScopeState.LOADING):
            return
        if self._reconcile_task is not None and not self._reconcile_task.done():
            self._reconcile_requested = True
            return
        task = self._ensure_reconcile_task()
        task.add_done_callback(_log_background_failure)

    def _ensure_reconcile_task(self) -> asyncio.Task[ScopeChange | None]:
        if self._reconcile_task is None or self._reconcile_task.done():
            self._reconcile_task = asyncio.ensure_future(self._run_reconcile(self._epoch))
        return self._reconcile_task

    async def _run_reconcile(self, epoch: int) -> ScopeChange | None:
        result: ScopeChange | None = None
        while True:
            self._reconcile_requested = False
            change = await self._reconcile_once(epoch)
            if change is not None:
                result = change
            if epoch != self._epoch or not self._reconcile_requested:
                return result

    async def _reconcile_once(self, epoch: int) -> ScopeChange | None:
        principal = self._principal
        if principal is None or epoch != self._epoch:
            return None

        self._state = ScopeState.RECONCILING
        try:
            fetched = await self._guarded(self._directory.fetch_accessible_sites(principal), epoch)
        except BaseException:
            if epoch == self._epoch:
                self._state = ScopeState.ACTIVE if self._current is not None else ScopeState.EMPTY
            raise
        if fetched is _ABANDONED or epoch != self._epoch:
            return None

        sites = self._own_org_only(principal, fetched)
        sites_changed = sites != self._sites
        self._sites = sites

        previous = self._current
        stale: StaleScope | None = None
        selection_changed = False

        if previous is not None:
            refreshed = self._find(previous.id)
            if refreshed is None:
                replacement = sites[0] if sites else None
                stale = StaleScope(previous.id, replacement.id if replacement is not None else None)
                logger.info(
                    "Selected site vanished user_id=%s site_id=%s replacement=%s",
                    principal.id,
                    previous.id,
                    replacement.id if replacement is not None else None,
                )
                self._current = replacement
                selection_changed = True
            else:
                self._current = refreshed
        elif sites:
            self._current = sites[0]
            selection_changed = True

        if selection_changed:
            self._generation += 1
            self._role = None
            self._role_site_id = None
            self._write_selection(self._current)

        self._state = ScopeState.ACTIVE if self._current is not None else ScopeState.EMPTY

        change = None
        if selection_changed or sites_changed:
            change = self._emit(ChangeReason.RECONCILED, previous=previous, stale=stale)

        if self._current is not None:
            # The role at a site that stayed accessible may still have changed.
            await self._resolve_role(self._current.id, self._generation, epoch)
        return change

    # ---- internals ---------------------------------------------------------------

    async def _guarded(self, awaitable: Awaitable[Any], epoch: int) -> Any:
        """
        Await a directory call as a tracked task so sign-out can cancel it.
        Returns `_ABANDONED` when it was cancelled by a sign-out.
        """

        task = asyncio.ensure_future(awaitable)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled() and epoch != self._epoch:
                return _ABANDONED
            raise

    async def _resolve_role(self, site_id: int, generation: int, epoch: int) -> None:
        principal = self._principal
        if principal is None:
            return

        role = await self._guarded(self._directory.fetch_role_at(principal, site_id), epoch)
        if role is _ABANDONED or epoch != self._epoch or generation != self._generation:
            logger.debug("Discarding superseded role result site_id=%s", site_id)
            return

        self._role = role
        self._role_site_id = site_id

    def _find(self, site_id: int | None) -> SiteRef | None:
        if site_id is None:
            return None
        for site in self._sites:
            if site.id == site_id:
                return site
        return None

    def _own_org_only(self, principal: Principal, sites: list[SiteRef]) -> list[SiteRef]:
        kept = [site for site in sites if site.organization_id == principal.organization_id]
        if len(kept) != len(sites):
            logger.warning("Dropped %s sites outside org_id=%s", len(sites) - len(kept), principal.organization_id)
        return kept

    def _write_selection(self, site: SiteRef | None, force: bool = False) -> None:
        principal = self._principal
        if principal is None:
            return

        key = selection_key(principal)
        value = str(site.id) if site is not None else None
        if not force and value == self._persisted:
            return

        if value is None:
            self._store.remove(key)
        else:
            self._store.set(key, value)
        self._persisted = value

    def _subscribe_to_changes(self, principal: Principal) -> None:
        if self._propagator is None:
            return
        if self._unsubscribe_changes is not None:
            self._unsubscribe_changes()
        self._unsubscribe_changes = self._propagator.subscribe(principal.organization_id, self.request_reconcile)

    def _emit(
        self,
        reason: ChangeReason,
        previous: SiteRef | None,
        stale: StaleScope | None = None,
    ) -> ScopeChange:
        change = ScopeChange(
            reason=reason,
            previous=previous,
            current=self._current,
            sites=tuple(self._sites),
            stale=stale,
        )
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("Scope listener failed reason=%s", reason.value)
        return change


def _parse_site_id(raw: str | None) -> int | None:
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _log_background_failure(task: asyncio.Task[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Background reconcile failed, keeping current scope: %s", exc)
