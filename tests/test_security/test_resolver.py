"""Tests for the scope resolver against the seeded demo tenants."""
from __future__ import annotations

from datetime import date, timedelta

import pytest
from sqlalchemy import select

from crewscope.errors import Unauthenticated
from crewscope.models.tenancy import ADMIN_ROLE, Site, SiteAssignment, User
from crewscope.security.auth import load_principal
from crewscope.security.resolver import ScopeResolver


def _resolver(db_session, user_id, today=None) -> ScopeResolver:
    return ScopeResolver(db_session, load_principal(db_session, user_id), today=today)


def test_admin_sees_every_site_of_own_organization(db_session, ids):
    resolver = _resolver(db_session, ids["user_alice"])
    assert resolver.accessible_site_ids() == {
        ids["site_harbor"],
        ids["site_riverside"],
        ids["site_unassigned_northwind"],
    }
    assert resolver.is_admin() is True
    assert resolver.organization_id() == ids["org_northwind"]


def test_admin_holds_implicit_role_without_assignments(db_session, ids):
    resolver = _resolver(db_session, ids["user_alice"])
    assert resolver.role_at(ids["site_riverside"]) == ADMIN_ROLE
    assert resolver.has_access(ids["site_riverside"]) is True
    # ... but only inside their organization.
    assert resolver.role_at(ids["site_hilltop"]) is None
    assert resolver.has_access(ids["site_hilltop"]) is False


def test_assignment_grants_site_and_role(db_session, ids):
    resolver = _resolver(db_session, ids["user_mona"])
    assert resolver.accessible_site_ids() == {ids["site_harbor"]}
    assert resolver.role_at(ids["site_harbor"]) == "site_manager"
    assert resolver.role_at(ids["site_riverside"]) is None
    assert resolver.has_access(ids["site_riverside"]) is False


def test_ended_assignment_no_longer_counts(db_session, ids):
    # Carl's Riverside assignment ended yesterday but is still flagged active.
    resolver = _resolver(db_session, ids["user_carl"])
    assert resolver.accessible_site_ids() == {ids["site_harbor"]}
    assert resolver.role_at(ids["site_riverside"]) is None


def test_end_date_is_inclusive(db_session, ids):
    yesterday = date.today() - timedelta(days=1)
    resolver = _resolver(db_session, ids["user_carl"], today=yesterday)
    assert resolver.accessible_site_ids() == {ids["site_harbor"], ids["site_riverside"]}
    assert resolver.role_at(ids["site_riverside"]) == "crew_lead"


def test_inactive_assignment_does_not_count(db_session, ids):
    assignment = db_session.scalars(
        select(SiteAssignment).where(SiteAssignment.user_id == ids["user_fred"])
    ).one()
    assignment.is_active = False
    db_session.flush()

    assert _resolver(db_session, ids["user_fred"]).accessible_site_ids() == frozenset()


def test_accessible_sites_are_ordered_by_name(db_session, ids):
    names = [site.name for site in _resolver(db_session, ids["user_tina"]).accessible_sites()]
    assert names == ["Harbor Tower", "Riverside Clinic"]


def test_snapshot_freezes_roles(db_session, ids):
    authz = _resolver(db_session, ids["user_tina"]).snapshot()
    assert authz.accessible_site_ids == {ids["site_harbor"], ids["site_riverside"]}
    assert authz.role_at(ids["site_harbor"]) == "technical_staff"
    assert authz.sites_with_role({"site_manager"}) == frozenset()
    assert authz.is_admin is False


def test_admin_snapshot_maps_every_site_to_admin_role(db_session, ids):
    authz = _resolver(db_session, ids["user_sam"]).snapshot()
    assert set(authz.site_roles.values()) == {ADMIN_ROLE}
    assert authz.accessible_site_ids == {ids["site_hilltop"], ids["site_unassigned_summit"]}


def test_assignment_never_opens_a_site_of_another_organization(db_session, ids):
    # A corrupt row pointing a Northwind user at a Summit site.
    db_session.add(
        SiteAssignment(
            organization_id=ids["org_northwind"],
            user_id=ids["user_fred"],
            site_id=ids["site_hilltop"],
            role="field_worker",
        )
    )
    db_session.flush()

    resolver = _resolver(db_session, ids["user_fred"])
    assert ids["site_hilltop"] not in resolver.accessible_site_ids()
    assert resolver.has_access(ids["site_hilltop"]) is False


def test_accessible_sites_never_cross_organizations(db_session, ids):
    sites = {site.id: site.organization_id for site in db_session.scalars(select(Site)).all()}
    for user in db_session.scalars(select(User)).all():
        resolver = _resolver(db_session, user.id)
        for site_id in resolver.accessible_site_ids():
            assert sites[site_id] == user.organization_id


def test_has_access_matches_admin_or_in_effect_assignment(db_session, ids):
    today = date.today()
    sites = db_session.scalars(select(Site)).all()
    assignments = db_session.scalars(select(SiteAssignment)).all()

    for user in db_session.scalars(select(User)).all():
        resolver = _resolver(db_session, user.id)
        for site in sites:
            expected = (user.is_admin and site.organization_id == user.organization_id) or any(
                a.user_id == user.id and a.site_id == site.id and a.in_effect(today) for a in assignments
            )
            assert resolver.has_access(site.id) is expected, (user.email, site.name)


def test_missing_principal_is_unauthenticated(db_session):
    resolver = ScopeResolver(db_session, None)
    with pytest.raises(Unauthenticated):
        resolver.organization_id()
    with pytest.raises(Unauthenticated):
        resolver.accessible_site_ids()
