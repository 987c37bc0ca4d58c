"""
Ambient scope storage and the helpers that read or hide it.

The ambient scope lives in a :class:`contextvars.ContextVar`. It therefore
follows a logical flow across ``await`` points, and every asyncio task (or
``contextvars.copy_context().run`` call) starts with a *copy* of the slot
taken when it was created. A task forked from inside a scope sees that scope
as ambient and, if it joins it, shares its sessions with the parent flow.
Sessions are not safe for concurrent use, so wrap the fork in
:class:`AmbientContextSuppressor` (``factory.suppress_ambient_context()``).
Plain ``threading.Thread`` targets start with an empty context.
"""

from __future__ import annotations

from contextvars import ContextVar
from typing import TYPE_CHECKING, Optional, Type, TypeVar

from ..utils import get_logger

if TYPE_CHECKING:
    from .scope import SessionScope

logger = get_logger("scoping.ambient")

TSession = TypeVar("TSession")


class ScopeCarrier:
    """
    Single-slot, per-flow holder of the ambient scope.

    Only :class:`~dbscope.scoping.SessionScope` and
    :class:`AmbientContextSuppressor` write to it.
    """

    def __init__(self, name: str) -> None:
        self._slot: ContextVar[Optional["SessionScope"]] = ContextVar(name, default=None)

    def current(self) -> Optional["SessionScope"]:
        return self._slot.get()

    def install(self, scope: "SessionScope") -> None:
        if scope is None:
            raise ValueError("scope must not be None; use clear() to remove the ambient scope.")
        if self._slot.get() is scope:
            return
        self._slot.set(scope)

    def clear(self) -> None:
        self._slot.set(None)


ambient_scope = ScopeCarrier("dbscope_ambient_scope")


class AmbientContextSuppressor:
    """
    Hides the ambient scope until :meth:`dispose` restores it.
    """

    def __init__(self, carrier: ScopeCarrier = ambient_scope) -> None:
        self._carrier = carrier
        self._saved_scope = carrier.current()
        self._disposed = False
        carrier.clear()
        logger.debug("Ambient scope suppressed (had scope: %s)", self._saved_scope is not None)

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        if self._disposed:
            return
        if self._saved_scope is not None:
            self._carrier.install(self._saved_scope)
            self._saved_scope = None
        self._disposed = True

    def __enter__(self) -> "AmbientContextSuppressor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    async def __aenter__(self) -> "AmbientContextSuppressor":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.dispose()


class AmbientSessionLocator:
    """
    Read-only access to the sessions of whatever scope is ambient.
    """

    def __init__(self, carrier: ScopeCarrier = ambient_scope) -> None:
        self._carrier = carrier

    def get(self, session_type: Type[TSession]) -> Optional[TSession]:
        """
        Ambient session of ``session_type``, created on demand, or ``None`` outside any scope.
        """
        scope = self._carrier.current()
        if scope is None:
            return None
        return scope.sessions.get(session_type)
