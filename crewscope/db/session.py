from __future__ import annotations

from collections.abc import Generator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from crewscope.security.context import AuthzContext
from crewscope.security.policies import PolicyRegistry
from crewscope.settings import get_settings


_settings = get_settings()

engine = create_engine(
    _settings.resolved_db_url(),
    connect_args={"check_same_thread": False} if _settings.resolved_db_url().startswith("sqlite") else {},
)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, class_=Session)


def attach_authz(db: Session, authz: AuthzContext, policies: PolicyRegistry | None = None) -> Session:
    """
    Put a session under a principal's predicates.

    From here on every select on `db` is row-scoped and every flush is checked
    (see crewscope/db/filters.py).
    """

    db.info["authz"] = authz
    if policies is not None:
        db.info["policies"] = policies
    return db


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Main DB dependency.

    Route handlers write plain `select(Model)` queries; scoping is applied by
    the session events in crewscope/db/filters.py, which read
    `Session.info["authz"]` set here from the request.
    """

    state = request.app.state
    factory = getattr(state, "session_factory", None) or SessionLocal
    db = factory()
    try:
        authz = getattr(getattr(request, "state", None), "authz", None)
        if authz is not None:
            attach_authz(db, authz, getattr(state, "policies", None))
        propagator = getattr(state, "change_propagator", None)
        if propagator is not None:
            db.info["propagator"] = propagator
        yield db
    finally:
        db.close()
