"""
dbscope public package initialization.

Ambient session scopes live in :mod:`dbscope.scoping`; the small SQLite-backed
session layer they manage lives in :mod:`dbscope.persistence`.
"""

from .core.fields import (
    AutoField,
    BooleanField,
    DateTimeField,
    FloatField,
    IntegerField,
    StringField,
)  # noqa: F401
from .core.model import Model, ModelConfigurationError  # noqa: F401
from .adapters import ConnectionConfig  # noqa: F401
from .dialects import IsolationLevel  # noqa: F401
from .persistence import ConcurrencyConflictError, EntityState, Session  # noqa: F401
from .schema import SchemaBuilder  # noqa: F401
from .scoping import (
    AmbientContextSuppressor,
    AmbientSessionLocator,
    JoinMode,
    ReadOnlySessionScope,
    RegisteredSessionFactory,
    ScopeError,
    SessionRegistry,
    SessionScope,
    SessionScopeFactory,
)  # noqa: F401

__all__ = [
    "Model",
    "AutoField",
    "BooleanField",
    "DateTimeField",
    "FloatField",
    "IntegerField",
    "StringField",
    "ModelConfigurationError",
    "ConnectionConfig",
    "IsolationLevel",
    "Session",
    "EntityState",
    "ConcurrencyConflictError",
    "SchemaBuilder",
    "SessionScope",
    "ReadOnlySessionScope",
    "SessionScopeFactory",
    "SessionRegistry",
    "JoinMode",
    "AmbientSessionLocator",
    "AmbientContextSuppressor",
    "RegisteredSessionFactory",
    "ScopeError",
]
