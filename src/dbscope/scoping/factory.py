"""
Factory for the supported scope configurations.
"""

from __future__ import annotations

from typing import Optional

from ..dialects.base import IsolationLevel
from .ambient import AmbientContextSuppressor, ScopeCarrier, ambient_scope
from .scope import JoinMode, ReadOnlySessionScope, SessionScope
from .session_factory import SessionFactory


class SessionScopeFactory:
    """
    Creates scopes that share one session factory.

    Without a session factory, registries construct each session type with
    no arguments. Scopes and suppressors made here all use ``carrier`` as
    their ambient slot.
    """

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        *,
        carrier: ScopeCarrier = ambient_scope,
    ) -> None:
        self.session_factory = session_factory
        self.carrier = carrier

    def create(self, join_mode: JoinMode = JoinMode.JOIN_EXISTING) -> SessionScope:
        return SessionScope(
            join_mode=join_mode,
            read_only=False,
            session_factory=self.session_factory,
            carrier=self.carrier,
        )

    def create_read_only(self, join_mode: JoinMode = JoinMode.JOIN_EXISTING) -> ReadOnlySessionScope:
        return ReadOnlySessionScope(join_mode=join_mode, session_factory=self.session_factory, carrier=self.carrier)

    def create_with_transaction(self, isolation_level: IsolationLevel) -> SessionScope:
        """
        New root scope whose sessions each open a transaction at ``isolation_level``.
        """
        return SessionScope(
            join_mode=JoinMode.FORCE_CREATE_NEW,
            read_only=False,
            isolation_level=isolation_level,
            session_factory=self.session_factory,
            carrier=self.carrier,
        )

    def create_read_only_with_transaction(self, isolation_level: IsolationLevel) -> ReadOnlySessionScope:
        return ReadOnlySessionScope(
            join_mode=JoinMode.FORCE_CREATE_NEW,
            isolation_level=isolation_level,
            session_factory=self.session_factory,
            carrier=self.carrier,
        )

    def suppress_ambient_context(self) -> AmbientContextSuppressor:
        """
        Hide the ambient scope, e.g. before forking work into parallel tasks.

        Use as a context manager; the previous scope is restored on exit.
        """
        return AmbientContextSuppressor(self.carrier)
