"""
Dialect strategy interfaces describing SQL compilation behaviors.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Protocol


class IsolationLevel(str, enum.Enum):
    """
    Transaction isolation levels a session may be asked to begin with.
    """

    READ_UNCOMMITTED = "read_uncommitted"
    READ_COMMITTED = "read_committed"
    REPEATABLE_READ = "repeatable_read"
    SERIALIZABLE = "serializable"
    SNAPSHOT = "snapshot"


@dataclass(frozen=True)
class DialectCapabilities:
    """
    Feature flags describing backend capabilities.
    """

    supports_savepoints: bool = True


class Dialect(Protocol):
    """
    Strategy interface consumed across session, schema, and adapter layers.
    """

    @property
    def capabilities(self) -> DialectCapabilities: ...

    def quote_identifier(self, identifier: str) -> str: ...

    def format_table(self, table_name: str) -> str: ...

    def parameter_placeholder(self, position: int | None = None) -> str: ...

    def render_column_definition(self, column: str, column_type: str, *, nullable: bool) -> str: ...

    def begin_statements(self, isolation_level: IsolationLevel | None = None) -> list[str]: ...

    def savepoint_statement(self, name: str) -> str: ...

    def rollback_to_savepoint_statements(self, name: str) -> list[str]: ...

    def release_savepoint_statement(self, name: str) -> str: ...
