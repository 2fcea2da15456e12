from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from crewscope.db.session import attach_authz, get_db
from crewscope.security.auth import extract_user_id, load_principal
from crewscope.security.config import SecurityConfig
from crewscope.security.context import AuthzContext, Principal
from crewscope.security.resolver import ScopeResolver

logger = logging.getLogger(__name__)


def get_security_config(request: Request) -> SecurityConfig:
    config = getattr(request.app.state, "security_config", None)
    if config is None:
        raise RuntimeError("Security config not loaded. Was the app built with create_app()?")
    return config


def get_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return principal


def get_authz(request: Request) -> AuthzContext:
    authz = getattr(request.state, "authz", None)
    if authz is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return authz


def enforce_security(
    request: Request,
    config: SecurityConfig = Depends(get_security_config),
    db: Session = Depends(get_db, use_cache=False),
) -> None:
    """
    Global security dependency.

    Runs after routing, so decorator metadata on the endpoint is visible. On
    success the request carries a `Principal` and a fresh `AuthzContext`; the
    route's own DB session picks the latter up (crewscope/db/session.py).
    """

    rule = config.match(request.url.path, request.method.upper())

    endpoint = request.scope.get("endpoint")
    decorator_admin_only = bool(getattr(endpoint, "__security_admin_only__", False)) if endpoint else False
    decorator_public = bool(getattr(endpoint, "__security_public__", False)) if endpoint else False

    admin_only = rule.admin_only or decorator_admin_only
    auth_required = admin_only or (rule.auth_required and not decorator_public)
    if not auth_required:
        return

    jwt_secret = getattr(request.app.state, "jwt_secret", None)
    user_id = extract_user_id(request, config, jwt_secret)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user id")

    principal = load_principal(db, user_id)
    request.state.principal = principal

    if admin_only and not principal.is_admin:
        logger.info("Admin-only route refused user_id=%s path=%s", principal.id, request.url.path)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    authz = ScopeResolver(db, principal).snapshot()
    request.state.authz = authz
    # FastAPI may hand this same session to the route, so scope it too.
    attach_authz(db, authz, getattr(request.app.state, "policies", None))
