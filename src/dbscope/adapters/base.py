"""
Adapter contract and connection configuration.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from ..dialects.base import Dialect, IsolationLevel


class AdapterError(RuntimeError):
    """Base error for adapter-related failures."""


class AdapterConfigurationError(AdapterError):
    """Invalid or missing connection configuration."""


class AdapterConnectionError(AdapterError):
    """Opening or using the connection failed."""


class AdapterExecutionError(AdapterError):
    """A statement failed to execute."""


class AdapterTransactionError(AdapterError):
    """BEGIN, COMMIT or ROLLBACK failed or was issued in the wrong state."""


_SQLITE_PREFIX = "sqlite:///"


@dataclass
class ConnectionConfig:
    """
    Where and how a session connects.

    ``source`` names the origin of the URL (e.g. an environment variable) and
    only shows up in diagnostics.
    """

    url: str
    timeout: float | None = None
    options: dict[str, Any] | None = None
    source: str | None = None

    @classmethod
    def from_env(cls, env_var: str, **kwargs: Any) -> "ConnectionConfig":
        value = os.getenv(env_var)
        if not value:
            raise AdapterConfigurationError(f"Environment variable {env_var} is not set")
        return cls(url=value, source=env_var, **kwargs)

    @property
    def database(self) -> str:
        """
        Path (or ``:memory:`` / ``file:`` URI) handed to the driver.
        """
        if self.url.startswith(_SQLITE_PREFIX):
            return self.url[len(_SQLITE_PREFIX) :]
        return self.url

    def descriptive_label(self) -> str:
        return f"{self.source} ({self.url})" if self.source else self.url


class DatabaseAdapter(Protocol):
    """
    Connection-level operations a :class:`~dbscope.persistence.Session` relies on.

    Connections run in autocommit mode; :meth:`begin`, :meth:`commit` and
    :meth:`rollback` delimit transactions explicitly, and the last two are
    no-ops when no transaction is open.
    """

    dialect: Dialect

    def connect(self, config: ConnectionConfig) -> Any: ...

    def close(self) -> None: ...

    @property
    def in_transaction(self) -> bool: ...

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> Any: ...

    def begin(self, isolation_level: IsolationLevel | None = None) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def savepoint(self, name: str) -> None: ...

    def rollback_to_savepoint(self, name: str) -> None: ...

    def release_savepoint(self, name: str) -> None: ...


    def last_insert_id(self, cursor: Any, table: str, pk_column: str) -> Any: ...
