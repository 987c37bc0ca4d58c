"""
Lazily populated, type-keyed collection of sessions owned by a root scope.

The registry creates at most one session per session type, optionally opens
an explicit transaction on each, and commits or rolls back every session it
created. Commits are best-effort and not atomic across sessions: a failure on
one session does not stop the others, and sessions that already committed
stay committed. Spanning sessions atomically would need a distributed
transaction coordinator and is intentionally not attempted.
"""

from __future__ import annotations

import asyncio
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Protocol, Type, TypeVar

from ..dialects.base import IsolationLevel
from ..utils import get_logger
from .errors import ScopeAlreadyCompletedError, ScopeDisposedError
from .session_factory import SessionFactory


class TransactionLike(Protocol):
    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def close(self) -> None: ...


class EntryLike(Protocol):
    instance: Any

    @property
    def is_unchanged(self) -> bool: ...

    @property
    def model(self) -> type: ...

    @property
    def key(self) -> tuple: ...

    def reload(self) -> None: ...

    async def reload_async(self) -> None: ...


class SessionLike(Protocol):
    """
    Capabilities a session type must offer to be managed by a registry.
    """

    auto_detect_changes: bool

    def save_changes(self) -> int: ...

    async def save_changes_async(self, cancel_event: Optional[asyncio.Event] = None) -> int: ...

    def begin_transaction(self, isolation_level: Optional[IsolationLevel] = None) -> TransactionLike: ...

    def entry(self, instance: Any) -> EntryLike: ...

    def entries(self) -> Iterable[EntryLike]: ...

    def close(self) -> None: ...


TSession = TypeVar("TSession")

_COMPLETED_MESSAGE = (
    "commit() or rollback() can only be called once on a SessionRegistry. Every session it "
    "manages has already been saved or rolled back; create a new scope for further changes."
)


class SessionRegistry:
    """
    Session collection of one business transaction.
    """

    def __init__(
        self,
        read_only: bool = False,
        isolation_level: Optional[IsolationLevel] = None,
        session_factory: Optional[SessionFactory] = None,
    ) -> None:
        self._read_only = read_only
        self._isolation_level = isolation_level
        self._session_factory = session_factory
        self._sessions: Dict[type, Any] = {}
        self._transactions: Dict[Any, TransactionLike] = {}
        self._completed = False
        self._disposed = False
        self.logger = get_logger("scoping.registry")

    def __repr__(self) -> str:
        names = ", ".join(t.__name__ for t in self._sessions)
        mode = "read-only" if self._read_only else "read-write"
        return f"<SessionRegistry {mode} [{names}]>"

    def __contains__(self, session_type: object) -> bool:
        return session_type in self._sessions

    @property
    def read_only(self) -> bool:
        return self._read_only

    @property
    def isolation_level(self) -> Optional[IsolationLevel]:
        return self._isolation_level

    @property
    def completed(self) -> bool:
        return self._completed

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def initialized_sessions(self) -> Mapping[type, Any]:
        return MappingProxyType(self._sessions)

    # ------------------------------------------------------------------ #
    def get(self, session_type: Type[TSession]) -> TSession:
        """
        Return the session of ``session_type``, creating it on first request.
        """
        if self._disposed:
            raise ScopeDisposedError("SessionRegistry has been disposed.")

        session = self._sessions.get(session_type)
        if session is None:
            session = self._create_session(session_type)
            self._sessions[session_type] = session

            if self._read_only:
                session.auto_detect_changes = False

            if self._isolation_level is not None:
                self._transactions[session] = session.begin_transaction(self._isolation_level)

            self.logger.debug(
                "Created %s (read_only=%s, isolation_level=%s)",
                session_type.__name__,
                self._read_only,
                self._isolation_level,
            )
        return session

    def _create_session(self, session_type: Type[TSession]) -> TSession:
        if self._session_factory is not None:
            return self._session_factory.create_session(session_type)
        return session_type()

    # ------------------------------------------------------------------ #
    def commit(self) -> int:
        """
        Save and commit every session; return the total of affected records.

        Every session is attempted even after a failure; the first failure is
        re-raised once all have been tried and the registry stays incomplete.
        """
        self._ensure_can_complete()

        first_error: Optional[Exception] = None
        affected = 0
        for session in list(self._sessions.values()):
            try:
                if not self._read_only:
                    affected += session.save_changes()
                self._commit_transaction(session)
            except Exception as exc:
                self.logger.warning("Commit failed for %s", type(session).__name__, exc_info=True)
                if first_error is None:
                    first_error = exc

        if first_error is not None:
            raise first_error
        self._completed = True
        return affected

    async def commit_async(self, cancel_event: Optional[asyncio.Event] = None) -> int:
        """
        Asynchronous :meth:`commit`. ``cancel_event`` is forwarded to each session's save.

        Cancellation stops the loop; sessions committed before it stay committed.
        """
        self._ensure_can_complete()

        first_error: Optional[Exception] = None
        affected = 0
        for session in list(self._sessions.values()):
            try:
                if not self._read_only:
                    affected += await session.save_changes_async(cancel_event)
                self._commit_transaction(session)
            except Exception as exc:
                self.logger.warning("Commit failed for %s", type(session).__name__, exc_info=True)
                if first_error is None:
                    first_error = exc

        if first_error is not None:
            raise first_error
        self._completed = True
        return affected

    def rollback(self) -> None:
        """
        Roll back every explicit transaction.

        Sessions without a transaction never wrote anything, so nothing is done for them.
        """
        self._ensure_can_complete()

        first_error: Optional[Exception] = None
        for session in list(self._sessions.values()):
            transaction = self._transactions.get(session)
            if transaction is None:
                continue
            try:
                transaction.rollback()
                transaction.close()
            except Exception as exc:
                self.logger.warning("Rollback failed for %s", type(session).__name__, exc_info=True)
                if first_error is None:
                    first_error = exc

        self._transactions.clear()
        self._completed = True
        if first_error is not None:
            raise first_error

    def dispose(self) -> None:
        """
        Complete if needed and close every session. Never raises.
        """
        if self._disposed:
            return

        if not self._completed:
            try:
                if self._read_only:
                    self.commit()
                else:
                    self.rollback()
            except Exception:
                self.logger.warning("Completing registry during dispose failed", exc_info=True)

        for session in list(self._sessions.values()):
            try:
                session.close()
            except Exception:
                self.logger.warning("Closing %s failed", type(session).__name__, exc_info=True)

        self._sessions.clear()
        self._transactions.clear()
        self._disposed = True

    # ------------------------------------------------------------------ #
    def _commit_transaction(self, session: Any) -> None:
        transaction = self._transactions.get(session)
        if transaction is None:
            return
        transaction.commit()
        transaction.close()
        del self._transactions[session]

    def _ensure_can_complete(self) -> None:
        if self._disposed:
            raise ScopeDisposedError("SessionRegistry has been disposed.")
        if self._completed:
            raise ScopeAlreadyCompletedError(_COMPLETED_MESSAGE)
