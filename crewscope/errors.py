"""Error taxonomy shared by the authorization boundary and the scope manager."""

from __future__ import annotations


class ScopeError(Exception):
    """Base class for every scope / access-control failure."""


class Unauthenticated(ScopeError):
    """No principal is signed in."""


class AuthzDenied(ScopeError):
    """A policy predicate rejected the operation."""

    def __init__(self, message: str = "Forbidden", *, resource: str | None = None, action: str | None = None):
        super().__init__(message)
        self.resource = resource
        self.action = action


class ScopeNotFound(ScopeError):
    """The requested site id is not in the principal's accessible set."""

    def __init__(self, site_id: object):
        super().__init__(f"Site {site_id!r} is not an accessible scope")
        self.site_id = site_id


class ScopeListEmpty(ScopeError):
    """The principal has no accessible sites at all."""


class NetworkFailure(ScopeError):
    """A fetch or role resolution failed in transit. Safe to retry manually."""


class StaleScope(ScopeError):
    """A previously valid selection was invalidated by deletion or revocation."""

    def __init__(self, site_id: object, replacement: object | None):
        super().__init__(f"Site {site_id!r} is no longer accessible; switched to {replacement!r}")
        self.site_id = site_id
        self.replacement = replacement


class RecordNotFound(LookupError):
    """The record does not exist or is not visible to the principal."""
