from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import event, false, inspect
from sqlalchemy.orm import Session, with_loader_criteria

from crewscope.db.base import Base
from crewscope.errors import AuthzDenied
from crewscope.security.policies import DEFAULT_POLICIES, PolicyRegistry, ResourcePolicy

logger = logging.getLogger(__name__)


def _policies_for(session: Session) -> PolicyRegistry:
    return session.info.get("policies") or DEFAULT_POLICIES


@event.listens_for(Session, "do_orm_execute")
def _apply_read_predicates(execute_state) -> None:
    """
    Transparent row scoping for reads.

    Any ORM select issued on a session that carries `Session.info["authz"]`
    gets the read predicate of every governed entity attached, so
        db.scalars(select(Task)).all()
    only ever returns rows the principal may see. Refreshing columns of an
    already-loaded row is left alone.
    """

    if not execute_state.is_select or execute_state.is_column_load:
        return
    if execute_state.execution_options.get("skip_authz"):
        return

    authz = execute_state.session.info.get("authz")
    if authz is None:
        return

    # Plain expressions rather than lambdas: the criteria close over the whole
    # context, which the lambda cache cannot track.
    policies = _policies_for(execute_state.session)
    options = [with_loader_criteria(policy.model, policy.read_criteria(authz)) for policy in policies]
    # Mapped classes with no policy return no rows.
    options.extend(
        with_loader_criteria(mapper.class_, false())
        for mapper in Base.registry.mappers
        if mapper.class_ not in policies
    )
    execute_state.statement = execute_state.statement.options(*options)


def _original_and_changed(obj: Any, policy: ResourcePolicy) -> tuple[dict[str, Any], set[str]]:
    state = inspect(obj)
    changed: set[str] = set()
    for attr in state.mapper.column_attrs:
        if state.attrs[attr.key].history.has_changes():
            changed.add(attr.key)

    original: dict[str, Any] = {}
    for column in policy.scoping_columns():
        history = state.attrs[column].history
        original[column] = history.deleted[0] if history.deleted else getattr(obj, column)
    return original, changed


def _deny(authz, policy: ResourcePolicy | None, obj: Any, action: str) -> AuthzDenied:
    resource = policy.name if policy is not None else type(obj).__name__
    logger.info(
        "Write denied user_id=%s org_id=%s resource=%s action=%s",
        authz.user_id,
        authz.organization_id,
        resource,
        action,
    )
    return AuthzDenied(resource=resource, action=action)


@event.listens_for(Session, "before_flush")
def _check_write_predicates(session: Session, flush_context, instances) -> None:
    """
    Every pending insert, update and delete must satisfy its predicate.

    Rows of a mapped class with no registered policy are refused outright.
    """

    authz = session.info.get("authz")
    if authz is None:
        return

    policies = _policies_for(session)

    for obj in session.new:
        policy = policies.for_model(type(obj))
        if policy is None or not policy.can_create(authz, obj):
            raise _deny(authz, policy, obj, "create")

    for obj in session.dirty:
        if not session.is_modified(obj):
            continue
        policy = policies.for_model(type(obj))
        if policy is None:
            raise _deny(authz, policy, obj, "modify")
        original, changed = _original_and_changed(obj, policy)
        if not policy.can_modify(authz, obj, original=original, changed=changed):
            raise _deny(authz, policy, obj, "modify")

    for obj in session.deleted:
        policy = policies.for_model(type(obj))
        if policy is None or not policy.can_delete(authz, obj):
            raise _deny(authz, policy, obj, "delete")
