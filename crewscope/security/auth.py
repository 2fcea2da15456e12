from __future__ import annotations

import logging

import jwt
from fastapi import HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from crewscope.models.tenancy import User
from crewscope.security.config import SecurityConfig
from crewscope.security.context import Principal

logger = logging.getLogger(__name__)


def extract_user_id(request: Request, config: SecurityConfig, jwt_secret: str | None = None) -> int | None:
    """
    Read the bearer token and turn it into a user id.

    - Input: `Authorization: Bearer <token>`
    - provider "dummy": `<token>` is the integer user id
    - provider "jwt": `<token>` is a signed JWT whose `sub` claim is the user id
    """

    header_name = config.auth.authorization_header
    bearer_prefix = config.auth.bearer_prefix

    raw = request.headers.get(header_name)
    if not raw:
        logger.info("Missing Authorization header (auth required) path=%s method=%s", request.url.path, request.method)
        return None

    prefix = f"{bearer_prefix} "
    if not raw.startswith(prefix):
        logger.warning("Invalid Authorization header format path=%s method=%s", request.url.path, request.method)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header_name}. Expected '{bearer_prefix} <token>'.",
        )

    token = raw[len(prefix) :].strip()
    if not token:
        logger.warning("Empty bearer token path=%s method=%s", request.url.path, request.method)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header_name}. Missing token after '{bearer_prefix}'.",
        )

    if config.auth.provider == "jwt":
        return _user_id_from_jwt(token, config, jwt_secret)

    try:
        return int(token)
    except ValueError as exc:
        logger.warning("Bearer token not an int (dummy provider expects user_id) path=%s", request.url.path)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid bearer token (expected integer user id).",
        ) from exc


def _user_id_from_jwt(token: str, config: SecurityConfig, secret: str | None) -> int:
    if not secret:
        raise RuntimeError("security.auth.provider is 'jwt' but CREWSCOPE_JWT_SECRET is not set")

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[config.auth.jwt_algorithm],
            audience=config.auth.jwt_audience,
            options={"verify_aud": config.auth.jwt_audience is not None, "require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as exc:
        logger.info("Token expired")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired") from exc
    except jwt.InvalidTokenError as exc:
        logger.info("Token invalid: %s", type(exc).__name__)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    try:
        return int(payload["sub"])
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject") from exc


def load_principal(db: Session, user_id: int) -> Principal:
    user = db.execute(
        select(User).where(User.id == user_id).execution_options(skip_authz=True)
    ).scalar_one_or_none()

    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or inactive user")

    return Principal(
        id=user.id,
        organization_id=user.organization_id,
        is_admin=user.is_admin,
        base_role=user.base_role,
        display_name=user.display_name,
    )
