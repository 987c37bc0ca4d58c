"""
Persistence layer components: sessions, change tracking, transactions.
"""

from .change_tracker import ChangeTracker, EntityEntry, EntityState
from .errors import (
    ConcurrencyConflictError,
    EntityLookupError,
    SessionClosedError,
    SessionError,
    TransactionError,
)
from .session import Session
from .transaction import Transaction

__all__ = [
    "ChangeTracker",
    "ConcurrencyConflictError",
    "EntityEntry",
    "EntityLookupError",
    "EntityState",
    "Session",
    "SessionClosedError",
    "SessionError",
    "Transaction",
    "TransactionError",
]
