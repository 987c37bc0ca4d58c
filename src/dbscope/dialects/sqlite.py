"""
SQLite dialect implementation.
"""

from __future__ import annotations

from typing import Final

from .base import DialectCapabilities, IsolationLevel


class SQLiteDialect:
    """
    SQLite dialect using qmark placeholders.

    SQLite has a single serializable isolation level. Requested levels are
    mapped onto the locking mode used to open the transaction; only
    ``READ_UNCOMMITTED`` changes visibility, and only for shared-cache
    connections.
    """

    capabilities: Final[DialectCapabilities] = DialectCapabilities(supports_savepoints=True)

    _BEGIN_BY_LEVEL: Final[dict[IsolationLevel, str]] = {
        IsolationLevel.READ_UNCOMMITTED: "BEGIN DEFERRED",
        IsolationLevel.READ_COMMITTED: "BEGIN DEFERRED",
        IsolationLevel.REPEATABLE_READ: "BEGIN IMMEDIATE",
        IsolationLevel.SNAPSHOT: "BEGIN IMMEDIATE",
        IsolationLevel.SERIALIZABLE: "BEGIN EXCLUSIVE",
    }

    def quote_identifier(self, identifier: str) -> str:
        escaped = identifier.replace('"', '""')
        return f'"{escaped}"'

    def format_table(self, table_name: str) -> str:
        return self.quote_identifier(table_name)

    def parameter_placeholder(self, position: int | None = None) -> str:
        return "?"

    def render_column_definition(self, column: str, column_type: str, *, nullable: bool) -> str:
        null_clause = "" if nullable else " NOT NULL"
        return f"{self.quote_identifier(column)} {column_type}{null_clause}"

    def begin_statements(self, isolation_level: IsolationLevel | None = None) -> list[str]:
        if isolation_level is None:
            return ["BEGIN"]
        level = IsolationLevel(isolation_level)
        read_uncommitted = 1 if level is IsolationLevel.READ_UNCOMMITTED else 0
        return [f"PRAGMA read_uncommitted = {read_uncommitted}", self._BEGIN_BY_LEVEL[level]]

    def savepoint_statement(self, name: str) -> str:
        return f"SAVEPOINT {self.quote_identifier(name)}"

    def rollback_to_savepoint_statements(self, name: str) -> list[str]:
        # ROLLBACK TO leaves the savepoint on the stack
        quoted = self.quote_identifier(name)
        return [f"ROLLBACK TO SAVEPOINT {quoted}", f"RELEASE SAVEPOINT {quoted}"]

    def release_savepoint_statement(self, name: str) -> str:
        return f"RELEASE SAVEPOINT {self.quote_identifier(name)}"
