"""
Session-layer error hierarchy.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from .change_tracker import EntityEntry


class SessionError(RuntimeError):
    """Base error raised by :class:`~dbscope.persistence.Session`."""


class SessionClosedError(SessionError):
    """Raised when a closed session is used."""


class TransactionError(SessionError):
    """Raised for invalid transaction state transitions."""


class EntityLookupError(SessionError, LookupError):
    """Raised when a query expected exactly one entity and found none or several."""


class ConcurrencyConflictError(SessionError):
    """
    Raised when an optimistic concurrency check fails while saving changes.

    ``entries`` holds the entries whose UPDATE or DELETE matched no row. The
    session never retries; callers refresh ``entry.original_values`` from
    ``entry.get_database_values()`` (or reload the entity) and save again.
    """

    def __init__(self, message: str, entries: Iterable["EntityEntry"]) -> None:
        super().__init__(message)
        self.entries: list["EntityEntry"] = list(entries)
