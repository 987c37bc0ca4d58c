"""
Ambient, nestable session scopes.
"""

from .ambient import AmbientContextSuppressor, AmbientSessionLocator, ScopeCarrier, ambient_scope
from .errors import (
    ReadOnlyScopeViolationError,
    ScopeAlreadyCompletedError,
    ScopeConfigurationError,
    ScopeDisposedError,
    ScopeError,
    ScopeOrderingError,
    ScopeRefreshError,
    SessionNotRegisteredError,
)
from .factory import SessionScopeFactory
from .registry import SessionLike, SessionRegistry
from .scope import JoinMode, ReadOnlySessionScope, SessionScope
from .session_factory import RegisteredSessionFactory, SessionFactory, TypeMap

__all__ = [
    "AmbientContextSuppressor",
    "AmbientSessionLocator",
    "JoinMode",
    "ReadOnlyScopeViolationError",
    "ReadOnlySessionScope",
    "RegisteredSessionFactory",
    "ScopeAlreadyCompletedError",
    "ScopeCarrier",
    "ScopeConfigurationError",
    "ScopeDisposedError",
    "ScopeError",
    "ScopeOrderingError",
    "ScopeRefreshError",
    "SessionFactory",
    "SessionLike",
    "SessionNotRegisteredError",
    "SessionRegistry",
    "SessionScope",
    "SessionScopeFactory",
    "TypeMap",
    "ambient_scope",
]
