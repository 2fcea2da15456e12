"""
Staffing operations that touch several scoped rows at once.

These functions run on a session under the caller's predicates: they check
cross-organization references and existence themselves, and leave the final
allow/deny of every row they write to the flush-time predicates.
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from crewscope.errors import AuthzDenied, RecordNotFound
from crewscope.models.operations import ActivityRecord, CrewMember, Holiday, Task, TimeEntry
from crewscope.models.tenancy import SYSTEM_SITE_NAME, Site, SiteAssignment, SiteRole, SiteStatus, User
from crewscope.security.context import AuthzContext

logger = logging.getLogger(__name__)


def _get(db: Session, model, record_id: int, label: str):
    record = db.scalars(select(model).where(model.id == record_id)).first()
    if record is None:
        raise RecordNotFound(f"{label} not found")
    return record


def ensure_system_site(db: Session, organization_id: int) -> Site:
    """Return the organization's reserved "Unassigned" site, creating it if needed."""
    site = db.scalars(
        select(Site).where(Site.organization_id == organization_id, Site.is_system.is_(True)).order_by(Site.id).limit(1)
    ).first()
    if site is not None:
        return site

    site = Site(
        organization_id=organization_id,
        name=SYSTEM_SITE_NAME,
        address=None,
        status=SiteStatus.ACTIVE.value,
        is_system=True,
    )
    db.add(site)
    db.flush()
    logger.info("Created system site org_id=%s site_id=%s", organization_id, site.id)
    return site


def park_unassigned_crew(db: Session, organization_id: int) -> int:
    """Move crew members with no site onto the system site. Returns how many moved."""
    site = ensure_system_site(db, organization_id)
    members = db.scalars(
        select(CrewMember).where(CrewMember.organization_id == organization_id, CrewMember.site_id.is_(None))
    ).all()
    for member in members:
        member.site_id = site.id
    db.flush()
    if members:
        logger.info("Parked %s crew members on system site org_id=%s", len(members), organization_id)
    return len(members)


def delete_site(db: Session, authz: AuthzContext, site: Site) -> Site:
    """
    Delete `site` without leaving rows that point at it.

    Crew, tasks, time entries and activity records move to the organization's
    system site; holidays observed only at this site go with it. Site
    assignments are removed by the cascade. Returns the system site.
    """

    if site.is_system:
        raise ValueError("The system site cannot be deleted")

    parking = ensure_system_site(db, site.organization_id)
    moved = 0
    for model in (CrewMember, Task, TimeEntry, ActivityRecord):
        for row in db.scalars(select(model).where(model.site_id == site.id)).all():
            row.site_id = parking.id
            moved += 1
    for holiday in db.scalars(select(Holiday).where(Holiday.site_id == site.id)).all():
        db.delete(holiday)

    db.delete(site)
    db.flush()
    logger.info(
        "Deleted site_id=%s by user_id=%s, moved %s rows to site_id=%s",
        site.id,
        authz.user_id,
        moved,
        parking.id,
    )
    return parking


def assign_user_to_site(
    db: Session,
    authz: AuthzContext,
    user_id: int,
    site_id: int,
    role: SiteRole | str,
    start_date: date | None = None,
) -> tuple[SiteAssignment, bool]:
    """
    Give `user_id` a role at `site_id`.

    An existing active assignment for the pair is updated in place rather than
    duplicated, and reopened if its end date has passed. Returns
    (assignment, created).
    """

    role_value = SiteRole(role).value

    site = _get(db, Site, site_id, "Site")
    if site.organization_id != authz.organization_id:
        raise AuthzDenied("Site not in your organization", resource="site_assignments", action="create")

    user = _get(db, User, user_id, "User")
    if user.organization_id != authz.organization_id:
        raise AuthzDenied("Cannot assign user from another organization", resource="site_assignments", action="create")

    existing = db.scalars(
        select(SiteAssignment).where(
            SiteAssignment.user_id == user_id,
            SiteAssignment.site_id == site_id,
            SiteAssignment.is_active.is_(True),
        )
    ).first()
    if existing is not None:
        today = date.today()
        if not existing.in_effect(today):
            # Still flagged active but past its end date: reopen it.
            existing.end_date = None
            existing.start_date = start_date or today
        existing.role = role_value
        existing.assigned_by = authz.user_id
        db.flush()
        logger.info("Updated assignment id=%s user_id=%s site_id=%s role=%s", existing.id, user_id, site_id, role_value)
        return existing, False

    assignment = SiteAssignment(
        organization_id=authz.organization_id,
        user_id=user_id,
        site_id=site_id,
        role=role_value,
        start_date=start_date or date.today(),
        is_active=True,
        assigned_by=authz.user_id,
    )
    db.add(assignment)
    db.flush()
    logger.info("Created assignment id=%s user_id=%s site_id=%s role=%s", assignment.id, user_id, site_id, role_value)
    return assignment, True


def end_assignment(
    db: Session,
    authz: AuthzContext,
    assignment_id: int,
    end_date: date | None = None,
) -> SiteAssignment:
    assignment = _get(db, SiteAssignment, assignment_id, "Assignment")
    assignment.is_active = False
    assignment.end_date = end_date or date.today()
    db.flush()
    logger.info("Ended assignment id=%s by user_id=%s", assignment.id, authz.user_id)
    return assignment


def move_crew_member(
    db: Session,
    authz: AuthzContext,
    crew_member_id: int,
    to_site_id: int,
    effective_date: date | None = None,
) -> CrewMember:
    """
    Move a crew member to another site of the organization. Admin only.

    A crew member with a login also has their site assignment moved: the
    active one at the old site ends, a field-worker one at the new site starts.
    """

    if not authz.is_admin:
        raise AuthzDenied("Only admins can move crew members between sites", resource="crew_members", action="modify")

    member = _get(db, CrewMember, crew_member_id, "Crew member")
    to_site = _get(db, Site, to_site_id, "Destination site")
    from_site_id = member.site_id
    if from_site_id == to_site.id:
        return member

    effective = effective_date or date.today()

    if member.user_id is not None:
        if from_site_id is not None:
            previous = db.scalars(
                select(SiteAssignment).where(
                    SiteAssignment.user_id == member.user_id,
                    SiteAssignment.site_id == from_site_id,
                    SiteAssignment.is_active.is_(True),
                )
            ).all()
            for assignment in previous:
                assignment.is_active = False
                assignment.end_date = effective

        already = db.scalars(
            select(SiteAssignment).where(
                SiteAssignment.user_id == member.user_id,
                SiteAssignment.site_id == to_site.id,
                SiteAssignment.is_active.is_(True),
            )
        ).first()
        if already is not None and not already.in_effect(effective):
            already.role = SiteRole.FIELD_WORKER.value
            already.start_date = effective
            already.end_date = None
            already.assigned_by = authz.user_id
        elif already is None:
            db.add(
                SiteAssignment(
                    organization_id=authz.organization_id,
                    user_id=member.user_id,
                    site_id=to_site.id,
                    role=SiteRole.FIELD_WORKER.value,
                    start_date=effective,
                    is_active=True,
                    assigned_by=authz.user_id,
                )
            )

    member.site_id = to_site.id
    db.add(
        ActivityRecord(
            organization_id=authz.organization_id,
            site_id=to_site.id,
            actor_id=authz.user_id,
            action="crew_moved",
            detail=f"{member.name}: site {from_site_id} -> {to_site.id}",
        )
    )
    db.flush()
    logger.info(
        "Moved crew member id=%s from site_id=%s to site_id=%s effective=%s",
        member.id,
        from_site_id,
        to_site.id,
        effective,
    )
    return member
