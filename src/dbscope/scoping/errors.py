"""
Error hierarchy for ambient session scopes.
"""

from __future__ import annotations


class ScopeError(RuntimeError):
    """Base error for scope, registry and session-factory failures."""


class ScopeDisposedError(ScopeError):
    """Raised when a disposed scope or session registry is used."""


class ScopeAlreadyCompletedError(ScopeError):
    """Raised when a scope or registry is finalized more than once."""


class ScopeConfigurationError(ScopeError, ValueError):
    """Raised when scope options contradict each other."""


class ReadOnlyScopeViolationError(ScopeError):
    """Raised when a read-write scope tries to join a read-only ambient scope."""


class SessionNotRegisteredError(ScopeError, LookupError):
    """Raised when no construction function is registered for a session type."""


class ScopeRefreshError(ScopeError):
    """Raised when an entity passed for refresh carries no usable key metadata."""


class ScopeOrderingError(ScopeError):
    """
    Raised when scopes are disposed out of creation order.

    This signals a corrupted nesting invariant for every scope still alive in
    the flow and is not meant to be caught.
    """
