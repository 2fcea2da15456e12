"""
Store-side source of change signals.

A flush that touches sites or site assignments records the affected
organization ids on the session; a successful commit publishes them to the
session's change propagator. Rolled-back work publishes nothing.
"""

from __future__ import annotations

import logging

from sqlalchemy import event
from sqlalchemy.orm import Session

from crewscope.client.propagator import ChangePropagator
from crewscope.models.tenancy import Site, SiteAssignment

logger = logging.getLogger(__name__)

_PENDING_KEY = "crewscope.changed_orgs"
_WATCHED = (Site, SiteAssignment)


def attach_propagator(db: Session, propagator: ChangePropagator) -> Session:
    db.info["propagator"] = propagator
    return db


@event.listens_for(Session, "after_flush")
def _collect_changed_orgs(session: Session, flush_context) -> None:
    if session.info.get("propagator") is None:
        return

    pending: set[int] = session.info.setdefault(_PENDING_KEY, set())
    for obj in (*session.new, *session.dirty, *session.deleted):
        if isinstance(obj, _WATCHED) and obj.organization_id is not None:
            pending.add(obj.organization_id)


@event.listens_for(Session, "after_commit")
def _publish_changed_orgs(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, None)
    propagator = session.info.get("propagator")
    if not pending or propagator is None:
        return

    for organization_id in sorted(pending):
        logger.debug("Publishing scope change org_id=%s", organization_id)
        propagator.publish(organization_id)


@event.listens_for(Session, "after_rollback")
def _discard_changed_orgs(session: Session) -> None:
    session.info.pop(_PENDING_KEY, None)
