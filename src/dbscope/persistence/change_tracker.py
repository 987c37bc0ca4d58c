"""
Change tracking: per-session entity entries and the identity map behind them.
"""

from __future__ import annotations

import enum
from threading import RLock
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple, Type

from ..core.model import KeyValues, Model

if TYPE_CHECKING:
    from .session import Session


class EntityState(enum.Enum):
    DETACHED = "detached"
    UNCHANGED = "unchanged"
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


class EntityEntry:
    """
    Tracking information for one entity instance within a session.

    An entry is also returned for instances the session does not track; its
    state is then ``DETACHED`` and it still exposes model and key metadata.
    """

    def __init__(self, session: "Session", instance: Model, state: EntityState) -> None:
        self.session = session
        self.instance = instance
        self.state = state

    def __repr__(self) -> str:
        return f"<EntityEntry {self.model.__name__} {self.key} {self.state.name}>"

    @property
    def model(self) -> Type[Model]:
        return type(self.instance)

    @property
    def key(self) -> KeyValues:
        return self.model._meta.primary_key_values(self.instance)

    @property
    def is_unchanged(self) -> bool:
        return self.state is EntityState.UNCHANGED

    @property
    def original_values(self) -> Dict[str, Any]:
        """
        Values as last read from or written to the database. Mutable.
        """
        return self.instance._initial_state

    @property
    def current_values(self) -> Dict[str, Any]:
        return dict(self.instance._field_values)

    def detect_changes(self) -> None:
        if self.state is EntityState.UNCHANGED and self.instance.is_dirty():
            self.state = EntityState.MODIFIED
        elif self.state is EntityState.MODIFIED and not self.instance.is_dirty():
            self.state = EntityState.UNCHANGED

    def accept_changes(self) -> None:
        self.instance._initial_state = dict(self.instance._field_values)
        self.state = EntityState.UNCHANGED

    def get_database_values(self) -> Optional[Dict[str, Any]]:
        return self.session.get_database_values(self.instance)

    def reload(self) -> None:
        self.session.reload(self.instance)

    async def reload_async(self) -> None:
        await self.session.reload_async(self.instance)


_PENDING_ORDER = (EntityState.ADDED, EntityState.MODIFIED, EntityState.DELETED)


class ChangeTracker:
    """
    Holds one entry per tracked instance, indexed by identity and by (model, key).
    """

    def __init__(self) -> None:
        self.auto_detect_changes = True
        self._entries: Dict[int, EntityEntry] = {}
        self._identity: Dict[Tuple[Type[Model], KeyValues], EntityEntry] = {}
        self._lock = RLock()

    @staticmethod
    def _identity_key(entry: EntityEntry) -> Tuple[Type[Model], KeyValues] | None:
        key = entry.key
        if not key or any(value is None for _, value in key):
            return None
        return (entry.model, key)

    def track(self, session: "Session", instance: Model, state: EntityState) -> EntityEntry:
        with self._lock:
            entry = self._entries.get(id(instance))
            if entry is None:
                entry = EntityEntry(session, instance, state)
                self._entries[id(instance)] = entry
            else:
                entry.state = state
            self._index(entry)
            return entry

    def _index(self, entry: EntityEntry) -> None:
        identity = self._identity_key(entry)
        if identity is not None:
            self._identity[identity] = entry

    def reindex(self, entry: EntityEntry) -> None:
        with self._lock:
            self._index(entry)

    def untrack(self, instance: Model) -> None:
        with self._lock:
            entry = self._entries.pop(id(instance), None)
            if entry is None:
                return
            identity = self._identity_key(entry)
            if identity is not None and self._identity.get(identity) is entry:
                del self._identity[identity]

    def entry_for(self, instance: Model) -> EntityEntry | None:
        with self._lock:
            return self._entries.get(id(instance))

    def find(self, model: Type[Model], key: KeyValues) -> EntityEntry | None:
        with self._lock:
            return self._identity.get((model, key))

    def entries(self) -> List[EntityEntry]:
        with self._lock:
            return list(self._entries.values())

    def detect_changes(self) -> None:
        for entry in self.entries():
            entry.detect_changes()

    def pending(self) -> List[EntityEntry]:
        entries = self.entries()
        return [entry for state in _PENDING_ORDER for entry in entries if entry.state is state]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._identity.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, instance: Model) -> bool:
        with self._lock:
            return id(instance) in self._entries
