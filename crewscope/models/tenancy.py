from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import Boolean, CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crewscope.db.base import Base


# Implicit role an organization admin holds on every site of its organization.
ADMIN_ROLE = "admin"

SYSTEM_SITE_NAME = "Unassigned"


class SiteRole(str, enum.Enum):
    SITE_MANAGER = "site_manager"
    TECHNICAL_STAFF = "technical_staff"
    CREW_LEAD = "crew_lead"
    FIELD_WORKER = "field_worker"


class SiteStatus(str, enum.Enum):
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"


def _in_list(column: str, enum_cls: type[enum.Enum]) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    sites: Mapped[list["Site"]] = relationship(back_populates="organization")
    users: Mapped[list["User"]] = relationship(back_populates="organization")


class Site(Base):
    __tablename__ = "sites"
    __table_args__ = (CheckConstraint(_in_list("status", SiteStatus), name="ck_sites_status"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=SiteStatus.ACTIVE.value, nullable=False, index=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Reserved per-organization site that parks crew members without a project.
    # It is an ordinary site for every access rule.
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    organization: Mapped[Organization] = relationship(back_populates="sites")
    assignments: Mapped[list["SiteAssignment"]] = relationship(back_populates="site", cascade="all, delete-orphan")


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False, index=True)

    email: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)

    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Organization-wide baseline role; site-level rights come from SiteAssignment rows.
    base_role: Mapped[str | None] = mapped_column(String(30), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    organization: Mapped[Organization] = relationship(back_populates="users")
    assignments: Mapped[list["SiteAssignment"]] = relationship(
        back_populates="user",
        foreign_keys="SiteAssignment.user_id",
    )


class SiteAssignment(Base):
    __tablename__ = "site_assignments"
    __table_args__ = (
        CheckConstraint(_in_list("role", SiteRole), name="ck_site_assignments_role"),
        # At most one active assignment per (user, site).
        Index(
            "uq_site_assignments_active_user_site",
            "user_id",
            "site_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Denormalized from the site so the organization clause needs no join.
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False, index=True)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    site_id: Mapped[int] = mapped_column(ForeignKey("sites.id"), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(30), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, default=date.today, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    assigned_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    user: Mapped[User] = relationship(back_populates="assignments", foreign_keys=[user_id])
    site: Mapped[Site] = relationship(back_populates="assignments")

    def in_effect(self, today: date) -> bool:
        return bool(self.is_active) and (self.end_date is None or self.end_date >= today)
