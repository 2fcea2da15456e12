"""
Client-side scope handling: the session scope manager and its collaborators.

Nothing here is a security boundary; the server-side predicates are. This
package keeps a well-behaved client on valid sites and reacts to changes.
"""

from .data_access import CURRENT, ORG_WIDE, ScopedDataAccess
from .directory import HttpSiteDirectory, IdentityProvider, ResolverSiteDirectory, SiteDirectory, SiteRef, StaticIdentity
from .manager import ChangeReason, ScopeChange, ScopeState, SessionScopeManager, selection_key
from .propagator import ChangePropagator
from .storage import JsonFileStore, KeyValueStore, MemoryStore

__all__ = [
    "CURRENT",
    "ORG_WIDE",
    "ChangePropagator",
    "ChangeReason",
    "HttpSiteDirectory",
    "IdentityProvider",
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "ResolverSiteDirectory",
    "ScopeChange",
    "ScopeState",
    "ScopedDataAccess",
    "SessionScopeManager",
    "SiteDirectory",
    "SiteRef",
    "StaticIdentity",
    "selection_key",
]
