"""
Pytest fixtures for the test suite.

Data-layer tests use an in-memory SQLite engine and a session that rolls back
after each test, so tests do not affect each other. API and client tests that
open several sessions (or threads) get their own engine with committed seed
data instead.
"""
from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crewscope.db import filters as _filters  # noqa: F401  (register predicate hooks)
from crewscope.db import notify as _notify  # noqa: F401  (register change-signal hooks)
from crewscope.db.base import Base
from crewscope.db.init_db import seed_demo_data
from crewscope.db.session import attach_authz
from crewscope.security.auth import load_principal
from crewscope.security.context import AuthzContext, Principal
from crewscope.security.resolver import ScopeResolver


TEST_DB_URL = "sqlite://"
REPO_ROOT = Path(__file__).resolve().parents[1]


def _memory_engine():
    # One shared connection, so every session and worker thread sees the same database.
    return create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )


@pytest.fixture
def engine():
    """Create a fresh in-memory SQLite engine for each test."""
    eng = _memory_engine()
    yield eng
    eng.dispose()


@pytest.fixture
def tables(engine):
    """Create all ORM tables on the test engine."""
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def db_session(tables):
    """
    Provide a Session bound to the test DB; roll back after each test.

    The transaction is rolled back so the next test gets a clean state.
    """
    connection = tables.connect()
    transaction = connection.begin()
    TestSession = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        class_=Session,
    )
    session = TestSession()
    yield session
    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def ids(db_session) -> dict[str, int]:
    """Seed the demo tenants into `db_session` and return their ids."""
    return seed_demo_data(db_session)


@pytest.fixture
def as_user(db_session):
    """
    Put `db_session` under a user's predicates.

        authz = as_user(ids["user_mona"])
    """

    def _as_user(user_id: int, today=None) -> AuthzContext:
        principal = load_principal(db_session, user_id)
        authz = ScopeResolver(db_session, principal, today=today).snapshot()
        attach_authz(db_session, authz)
        return authz

    return _as_user


@pytest.fixture
def session_factory(tables):
    """Sessionmaker over a seeded, committed database."""
    factory = sessionmaker(bind=tables, autocommit=False, autoflush=False, class_=Session)
    return factory


@pytest.fixture
def seeded_ids(session_factory) -> dict[str, int]:
    with session_factory() as db:
        seeded = seed_demo_data(db)
        db.commit()
    return seeded


@pytest.fixture
def principal_for(session_factory):
    def _principal_for(user_id: int) -> Principal:
        with session_factory() as db:
            return load_principal(db, user_id)

    return _principal_for


@pytest.fixture
def scoped_session(session_factory, principal_for):
    """Open a session under a user's predicates; closed after the test."""
    opened: list[Session] = []

    def _scoped_session(user_id: int, today=None) -> Session:
        principal = principal_for(user_id)
        db = session_factory()
        attach_authz(db, ScopeResolver(db, principal, today=today).snapshot())
        opened.append(db)
        return db

    yield _scoped_session
    for db in opened:
        db.close()


@pytest.fixture
def app_factory(session_factory, seeded_ids):
    from crewscope.main import create_app
    from crewscope.security.config import load_security_config
    from crewscope.settings import Settings

    def _app_factory(security_config=None, **kwargs):
        settings = Settings(jwt_secret="test-secret", seed_demo_data=False)
        config = security_config or load_security_config(REPO_ROOT / "config" / "security_config.yaml")
        return create_app(settings=settings, session_factory=session_factory, security_config=config, **kwargs)

    return _app_factory


@pytest.fixture
def client(app_factory):
    with TestClient(app_factory()) as test_client:
        yield test_client
