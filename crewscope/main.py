from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from crewscope.client.propagator import ChangePropagator
from crewscope.db import filters as _filters  # noqa: F401  (register SQLAlchemy predicate hooks)
from crewscope.db import notify as _notify  # noqa: F401  (register change-signal hooks)
from crewscope.db.init_db import init_db
from crewscope.errors import AuthzDenied, RecordNotFound, Unauthenticated
from crewscope.logging_config import configure_app_logging
from crewscope.routers import assignments, crew, health, holidays, me, sites, tasks, time_entries
from crewscope.security.config import SecurityConfig, load_security_config
from crewscope.security.dependencies import enforce_security
from crewscope.security.policies import build_policies
from crewscope.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    session_factory: sessionmaker | None = None,
    security_config: SecurityConfig | None = None,
    change_propagator: ChangePropagator | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    if security_config is None:
        security_config = load_security_config(settings.resolved_security_config_path())
        logger.info("Loaded security config: %s", settings.resolved_security_config_path())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_app_logging(settings.log_level)
        logger.info("App startup beginning")

        # An injected session factory means the caller owns the schema.
        if session_factory is None:
            init_db(seed=settings.seed_demo_data)
            logger.info("Database initialized (tables ensured + seed if enabled)")

        yield

    # Global dependency: every route is authenticated and scoped unless marked public.
    app = FastAPI(title="crewscope", dependencies=[Depends(enforce_security)], lifespan=lifespan)

    app.state.security_config = security_config
    app.state.policies = build_policies(security_config)
    app.state.session_factory = session_factory
    app.state.jwt_secret = settings.jwt_secret
    app.state.change_propagator = change_propagator or ChangePropagator()

    _register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(me.router)
    app.include_router(sites.router)
    app.include_router(assignments.router)
    app.include_router(crew.router)
    app.include_router(tasks.router)
    app.include_router(time_entries.router)
    app.include_router(holidays.router)

    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AuthzDenied)
    async def _authz_denied(request: Request, exc: AuthzDenied) -> JSONResponse:
        # Generic body: the reason a predicate failed is not disclosed.
        return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"detail": "Forbidden"})

    @app.exception_handler(Unauthenticated)
    async def _unauthenticated(request: Request, exc: Unauthenticated) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"detail": "Authentication required"})

    @app.exception_handler(RecordNotFound)
    async def _not_found(request: Request, exc: RecordNotFound) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    @app.exception_handler(IntegrityError)
    async def _conflict(request: Request, exc: IntegrityError) -> JSONResponse:
        logger.info("Integrity error path=%s: %s", request.url.path, exc.orig)
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": "Conflict"})


app = create_app()
