"""
Session construction: the factory protocol consumed by registries and a
registration-based implementation for sessions without a no-argument constructor.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Protocol, Type, TypeVar

from ..utils import get_logger
from .errors import SessionNotRegisteredError

T = TypeVar("T")
TSession = TypeVar("TSession")


class SessionFactory(Protocol):
    """
    Creates a new session instance of the requested type.
    """

    def create_session(self, session_type: Type[TSession]) -> TSession: ...


class TypeMap:
    """
    Maps a type to a zero-argument function returning an instance of that type.
    """

    def __init__(self) -> None:
        self._functions: Dict[type, Callable[[], Any]] = {}

    def add(self, key: Type[T], func: Callable[[], T]) -> None:
        if key in self._functions:
            raise ValueError(f"A function is already registered for {key.__name__}.")
        self._functions[key] = func

    def try_get(self, key: Type[T]) -> Optional[Callable[[], T]]:
        return self._functions.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._functions

    def __len__(self) -> int:
        return len(self._functions)


class RegisteredSessionFactory:
    """
    Session factory backed by construction functions registered at startup.

    Intended to be built once and shared, typically wired as an application
    singleton and handed to :class:`~dbscope.scoping.SessionScopeFactory`.
    """

    def __init__(self) -> None:
        self._functions = TypeMap()
        self.logger = get_logger("scoping.session_factory")

    def register_session_type(
        self, session_type: Type[TSession], create_session_func: Callable[[], TSession]
    ) -> None:
        if create_session_func is None:
            raise ValueError("create_session_func must not be None.")
        self._functions.add(session_type, create_session_func)
        self.logger.debug("Registered session type %s", session_type.__name__)

    def create_session(self, session_type: Type[TSession]) -> TSession:
        create_session_func = self._functions.try_get(session_type)
        if create_session_func is None:
            raise SessionNotRegisteredError(
                f"{session_type.__name__} was not registered with this {type(self).__name__}. "
                "Make sure you call register_session_type() for it."
            )
        return create_session_func()

    def is_registered(self, session_type: type) -> bool:
        return session_type in self._functions
