from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session, sessionmaker

from crewscope.db.base import Base
from crewscope.models import operations as _operations  # noqa: F401  (register tables)
from crewscope.models.operations import CrewMember, Holiday, Task, TimeEntry
from crewscope.models.tenancy import SYSTEM_SITE_NAME, Organization, Site, SiteAssignment, SiteRole, User

logger = logging.getLogger(__name__)


def init_db(
    engine: Engine | None = None,
    session_factory: sessionmaker | None = None,
    seed: bool = True,
) -> None:
    """
    Create tables and, unless disabled, seed demo data.

    The seed is small and deterministic: two organizations, a handful of sites
    and one principal per interesting role, so every access rule can be tried
    with `Authorization: Bearer <user id>`.
    """

    if engine is None or session_factory is None:
        from crewscope.db.session import SessionLocal
        from crewscope.db.session import engine as default_engine

        engine = engine or default_engine
        session_factory = session_factory or SessionLocal

    Base.metadata.create_all(bind=engine)
    if not seed:
        return

    with session_factory() as db:
        if _has_seed_data(db):
            return
        seed_demo_data(db)
        db.commit()
        logger.info("Seeded demo data")


def _has_seed_data(db: Session) -> bool:
    return db.execute(select(Organization.id).limit(1)).first() is not None


def seed_demo_data(db: Session, today: date | None = None) -> dict[str, int]:
    """
    Insert the demo tenants. Returns the ids of the named rows so tests can
    refer to them without hard-coding autoincrement values.
    """

    today = today or date.today()

    northwind = Organization(name="Northwind Builders", slug="northwind")
    summit = Organization(name="Summit Construction", slug="summit")
    db.add_all([northwind, summit])
    db.flush()

    harbor = Site(organization_id=northwind.id, name="Harbor Tower", address="1 Pier Road", start_date=today)
    riverside = Site(organization_id=northwind.id, name="Riverside Clinic", address="42 River Street")
    parking_nw = Site(organization_id=northwind.id, name=SYSTEM_SITE_NAME, is_system=True)
    hilltop = Site(organization_id=summit.id, name="Hilltop School", address="7 Ridge Lane")
    parking_su = Site(organization_id=summit.id, name=SYSTEM_SITE_NAME, is_system=True)
    db.add_all([harbor, riverside, parking_nw, hilltop, parking_su])
    db.flush()

    alice = User(organization_id=northwind.id, email="alice@northwind.example", display_name="Alice Admin", is_admin=True)
    mona = User(
        organization_id=northwind.id,
        email="mona@northwind.example",
        display_name="Mona Manager",
        base_role=SiteRole.SITE_MANAGER.value,
    )
    carl = User(
        organization_id=northwind.id,
        email="carl@northwind.example",
        display_name="Carl Crewlead",
        base_role=SiteRole.CREW_LEAD.value,
    )
    fred = User(
        organization_id=northwind.id,
        email="fred@northwind.example",
        display_name="Fred Fieldworker",
        base_role=SiteRole.FIELD_WORKER.value,
    )
    tina = User(
        organization_id=northwind.id,
        email="tina@northwind.example",
        display_name="Tina Technical",
        base_role=SiteRole.TECHNICAL_STAFF.value,
    )
    sam = User(organization_id=summit.id, email="sam@summit.example", display_name="Sam Summit", is_admin=True)
    db.add_all([alice, mona, carl, fred, tina, sam])
    db.flush()

    def assign(user: User, site: Site, role: SiteRole, **extra) -> SiteAssignment:
        return SiteAssignment(
            organization_id=site.organization_id,
            user_id=user.id,
            site_id=site.id,
            role=role.value,
            start_date=extra.pop("start_date", today - timedelta(days=30)),
            assigned_by=alice.id,
            **extra,
        )

    db.add_all(
        [
            assign(mona, harbor, SiteRole.SITE_MANAGER),
            assign(carl, harbor, SiteRole.CREW_LEAD),
            assign(fred, riverside, SiteRole.FIELD_WORKER),
            assign(tina, harbor, SiteRole.TECHNICAL_STAFF),
            assign(tina, riverside, SiteRole.TECHNICAL_STAFF),
            # Finished engagement: still active, but past its end date.
            assign(carl, riverside, SiteRole.CREW_LEAD, end_date=today - timedelta(days=1)),
        ]
    )

    crew_harbor = CrewMember(organization_id=northwind.id, site_id=harbor.id, user_id=carl.id, name="Carl Crewlead", trade="carpenter")
    crew_harbor_2 = CrewMember(organization_id=northwind.id, site_id=harbor.id, name="Hank Hammer", trade="carpenter")
    crew_river = CrewMember(organization_id=northwind.id, site_id=riverside.id, user_id=fred.id, name="Fred Fieldworker", trade="mason")
    crew_summit = CrewMember(organization_id=summit.id, site_id=hilltop.id, name="Sue Steel", trade="welder")
    db.add_all([crew_harbor, crew_harbor_2, crew_river, crew_summit])
    db.flush()

    db.add_all(
        [
            Task(organization_id=northwind.id, site_id=harbor.id, title="Pour level 3 slab", created_by=mona.id),
            Task(organization_id=northwind.id, site_id=riverside.id, title="Brick east facade", created_by=alice.id),
            Task(organization_id=northwind.id, site_id=None, title="Quarterly safety briefing", created_by=alice.id),
            Task(organization_id=summit.id, site_id=hilltop.id, title="Weld roof trusses", created_by=sam.id),
            TimeEntry(
                organization_id=northwind.id,
                site_id=harbor.id,
                crew_member_id=crew_harbor_2.id,
                work_date=today,
                hours=Decimal("8.00"),
            ),
            TimeEntry(
                organization_id=northwind.id,
                site_id=riverside.id,
                crew_member_id=crew_river.id,
                work_date=today,
                hours=Decimal("7.50"),
            ),
            Holiday(organization_id=northwind.id, site_id=None, name="New Year", observed_on=date(today.year, 1, 1)),
            Holiday(organization_id=northwind.id, site_id=harbor.id, name="Harbor festival", observed_on=date(today.year, 8, 15)),
            Holiday(organization_id=summit.id, site_id=None, name="Founders day", observed_on=date(today.year, 5, 2)),
        ]
    )
    db.flush()

    return {
        "org_northwind": northwind.id,
        "org_summit": summit.id,
        "site_harbor": harbor.id,
        "site_riverside": riverside.id,
        "site_unassigned_northwind": parking_nw.id,
        "site_hilltop": hilltop.id,
        "site_unassigned_summit": parking_su.id,
        "user_alice": alice.id,
        "user_mona": mona.id,
        "user_carl": carl.id,
        "user_fred": fred.id,
        "user_tina": tina.id,
        "user_sam": sam.id,
        "crew_carl": crew_harbor.id,
        "crew_hank": crew_harbor_2.id,
        "crew_fred": crew_river.id,
        "crew_sue": crew_summit.id,
    }
