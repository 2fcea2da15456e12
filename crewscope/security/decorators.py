from __future__ import annotations

from collections.abc import Callable


def admin_only() -> Callable:
    """
    Mark an endpoint as organization-admin only.

    The decorator does not check anything itself; it attaches metadata that the
    global security dependency reads after routing.
    """

    def decorator(fn: Callable) -> Callable:
        setattr(fn, "__security_admin_only__", True)
        return fn

    return decorator


def public() -> Callable:
    """Mark an endpoint as reachable without a principal."""

    def decorator(fn: Callable) -> Callable:
        setattr(fn, "__security_public__", True)
        return fn

    return decorator
