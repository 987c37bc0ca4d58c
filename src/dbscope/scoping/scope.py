"""
Business-transaction scopes that make their sessions ambient for the current flow.
"""

from __future__ import annotations

import asyncio
import enum
import weakref
from typing import Any, Iterable, List, Optional, Tuple, Type, TypeVar

from ..dialects.base import IsolationLevel
from ..utils import get_logger
from .ambient import ScopeCarrier, ambient_scope
from .errors import (
    ReadOnlyScopeViolationError,
    ScopeAlreadyCompletedError,
    ScopeConfigurationError,
    ScopeDisposedError,
    ScopeOrderingError,
    ScopeRefreshError,
)
from .registry import EntryLike, SessionRegistry
from .session_factory import SessionFactory

logger = get_logger("scoping.scope")

TSession = TypeVar("TSession")


class JoinMode(enum.Enum):
    JOIN_EXISTING = "join_existing"
    FORCE_CREATE_NEW = "force_create_new"


class SessionScope:
    """
    Boundary of one business transaction.

    A scope created while another one is ambient joins it by default: both
    resolve the same session per type and only the outermost scope persists.
    ``JoinMode.FORCE_CREATE_NEW`` starts an independent registry instead.
    Scopes must be disposed in the reverse order of their creation.
    """

    def __init__(
        self,
        join_mode: JoinMode = JoinMode.JOIN_EXISTING,
        read_only: bool = False,
        isolation_level: Optional[IsolationLevel] = None,
        session_factory: Optional[SessionFactory] = None,
        *,
        carrier: ScopeCarrier = ambient_scope,
    ) -> None:
        if isolation_level is not None and join_mode is JoinMode.JOIN_EXISTING:
            raise ScopeConfigurationError(
                "Cannot join an ambient scope when an explicit isolation level is requested; "
                "use JoinMode.FORCE_CREATE_NEW to start a new transaction."
            )

        self._carrier = carrier
        self._read_only = read_only
        self._completed = False
        self._disposed = False

        parent = carrier.current()
        self._parent_ref = weakref.ref(parent) if parent is not None else None

        if parent is not None and join_mode is JoinMode.JOIN_EXISTING:
            if parent.read_only and not read_only:
                raise ReadOnlyScopeViolationError(
                    "Cannot nest a read-write scope within a read-only scope."
                )
            self._nested = True
            self._registry = parent.sessions
        else:
            self._nested = False
            self._registry = SessionRegistry(read_only, isolation_level, session_factory)

        carrier.install(self)
        logger.debug(
            "Scope opened (nested=%s, read_only=%s, isolation_level=%s)",
            self._nested,
            read_only,
            isolation_level,
        )

    def __repr__(self) -> str:
        flags = [
            "nested" if self._nested else "root",
            "read-only" if self._read_only else "read-write",
        ]
        if self._completed:
            flags.append("completed")
        if self._disposed:
            flags.append("disposed")
        return f"<SessionScope {' '.join(flags)}>"

    # ------------------------------------------------------------------ #
    @property
    def sessions(self) -> SessionRegistry:
        return self._registry

    def get(self, session_type: Type[TSession]) -> TSession:
        return self._registry.get(session_type)

    @property
    def parent(self) -> Optional["SessionScope"]:
        """The scope that was ambient at construction, while it is still alive."""
        if self._parent_ref is None:
            return None
        return self._parent_ref()

    @property
    def nested(self) -> bool:
        return self._nested

    @property
    def read_only(self) -> bool:
        return self._read_only

    @property
    def completed(self) -> bool:
        return self._completed

    @property
    def disposed(self) -> bool:
        return self._disposed

    # ------------------------------------------------------------------ #
    def save_changes(self) -> int:
        """
        Persist every session of the scope and return the affected-record count.

        A nested scope persists nothing and returns 0; the outermost scope
        does the work when it is saved. If the commit fails the scope stays
        open, so a caller that resolved the failure may call again.
        """
        self._ensure_can_save()
        affected = 0 if self._nested else self._registry.commit()
        self._completed = True
        return affected

    async def save_changes_async(self, cancel_event: Optional[asyncio.Event] = None) -> int:
        self._ensure_can_save()
        affected = 0 if self._nested else await self._registry.commit_async(cancel_event)
        self._completed = True
        return affected

    def _ensure_can_save(self) -> None:
        if self._disposed:
            raise ScopeDisposedError("SessionScope has been disposed.")
        if self._completed:
            raise ScopeAlreadyCompletedError(
                "save_changes() can only be called once per scope; create a new scope "
                "for further changes."
            )

    # ------------------------------------------------------------------ #
    def refresh_entities_in_parent_scope(self, entities: Optional[Iterable[Any]]) -> None:
        """
        Reload, in the parent scope's sessions, the entities this scope just changed.

        Only parent entries in the unchanged state are reloaded, so pending
        edits made in the parent are never overwritten.
        """
        for entry in self._parent_entries_to_refresh(entities):
            entry.reload()

    async def refresh_entities_in_parent_scope_async(self, entities: Optional[Iterable[Any]]) -> None:
        for entry in self._parent_entries_to_refresh(entities):
            await entry.reload_async()

    def _parent_entries_to_refresh(self, entities: Optional[Iterable[Any]]) -> List[EntryLike]:
        if entities is None or self._nested:
            return []
        parent = self.parent
        if parent is None:
            return []

        entities = list(entities)
        parent_sessions = parent.sessions.initialized_sessions
        to_refresh: List[EntryLike] = []
        for session_type, session in self._registry.initialized_sessions.items():
            parent_session = parent_sessions.get(session_type)
            if parent_session is None:
                continue
            parent_entries = list(parent_session.entries())
            for entity in entities:
                model, key = self._entity_identity(session, entity)
                matches = [
                    entry
                    for entry in parent_entries
                    if type(entry.instance) is model and entry.key == key
                ]
                if len(matches) > 1:
                    raise ScopeRefreshError(
                        f"{len(matches)} entries in the parent {session_type.__name__} "
                        f"match {model.__name__} {key}."
                    )
                if matches and matches[0].is_unchanged:
                    to_refresh.append(matches[0])
        return to_refresh

    @staticmethod
    def _entity_identity(session: Any, entity: Any) -> Tuple[type, tuple]:
        entry = session.entry(entity)
        try:
            key = entry.key
        except AttributeError as exc:
            raise ScopeRefreshError(f"{type(entity).__name__} carries no primary key metadata.") from exc
        if not key:
            raise ScopeRefreshError(f"{type(entity).__name__} declares no primary key.")
        return entry.model, key

    # ------------------------------------------------------------------ #
    def dispose(self) -> None:
        if self._disposed:
            return

        if not self._nested:
            # completes (commit if read-only, rollback otherwise) before closing
            self._registry.dispose()
        self._disposed = True

        current = self._carrier.current()
        if current is not self:
            logger.critical(
                "Ambient scope mismatch on dispose: expected %r, found %r. Scopes were "
                "disposed out of order or the ambient scope was replaced.",
                self,
                current,
            )
            raise ScopeOrderingError(
                "Scopes must be disposed in the reverse order of their creation. A scope "
                "being disposed is not the ambient scope of the current flow."
            )

        parent = self.parent
        if parent is None:
            self._carrier.clear()
            if self._parent_ref is not None:
                logger.warning(
                    "Parent scope was garbage-collected before this scope was disposed. "
                    "Fork parallel work inside suppress_ambient_context()."
                )
        elif parent.disposed:
            logger.warning(
                "Parent scope %r was disposed before its child. The child most likely ran in "
                "a concurrent flow forked without suppress_ambient_context(); the two flows "
                "shared sessions, which is not safe.",
                parent,
            )
            self._carrier.clear()
        else:
            self._carrier.install(parent)
        logger.debug("Scope disposed (nested=%s)", self._nested)

    def __enter__(self) -> "SessionScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    async def __aenter__(self) -> "SessionScope":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.dispose()


class ReadOnlySessionScope:
    """
    Scope for read-only work. It offers no way to save changes.

    Change detection is switched off for the sessions it creates; explicit
    transactions are committed when the scope is disposed.
    """

    def __init__(
        self,
        join_mode: JoinMode = JoinMode.JOIN_EXISTING,
        isolation_level: Optional[IsolationLevel] = None,
        session_factory: Optional[SessionFactory] = None,
        *,
        carrier: ScopeCarrier = ambient_scope,
    ) -> None:
        self._scope = SessionScope(
            join_mode=join_mode,
            read_only=True,
            isolation_level=isolation_level,
            session_factory=session_factory,
            carrier=carrier,
        )

    def __repr__(self) -> str:
        return f"<ReadOnlySessionScope {self._scope!r}>"

    @property
    def sessions(self) -> SessionRegistry:
        return self._scope.sessions

    def get(self, session_type: Type[TSession]) -> TSession:
        return self._scope.get(session_type)

    @property
    def disposed(self) -> bool:
        return self._scope.disposed

    def dispose(self) -> None:
        self._scope.dispose()

    def __enter__(self) -> "ReadOnlySessionScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    async def __aenter__(self) -> "ReadOnlySessionScope":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.dispose()
