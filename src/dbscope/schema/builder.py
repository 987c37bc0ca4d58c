"""
DDL generation from model metadata.
"""

from __future__ import annotations

from typing import Optional

from ..core.fields import Field
from ..core.model import Model
from ..dialects.base import Dialect
from ..utils import get_logger


class SchemaBuilder:
    """
    Renders CREATE/DROP TABLE statements for a dialect.

    Only what sessions need to round-trip their models is emitted: column
    types, NOT NULL, UNIQUE, defaults and the single or composite key.
    """

    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect
        self.logger = get_logger("schema.builder")

    def create_table_sql(self, model: type[Model]) -> str:
        meta = model._meta
        parts = [self._column_sql(field, inline_key=not meta.has_composite_key) for field in meta.get_fields()]
        if meta.has_composite_key:
            key_columns = ", ".join(self.dialect.quote_identifier(f.column_name()) for f in meta.primary_keys)
            parts.append(f"PRIMARY KEY ({key_columns})")
        return f"CREATE TABLE IF NOT EXISTS {self.dialect.format_table(meta.table_name)} ({', '.join(parts)})"

    def drop_table_sql(self, model: type[Model]) -> str:
        table_name = self.dialect.format_table(model._meta.table_name)
        self.logger.warning(
            "DROP TABLE generated for %s; confirm destructive operation before applying.",
            table_name,
        )
        return f"DROP TABLE IF EXISTS {table_name}"

    def _column_sql(self, field: Field, *, inline_key: bool) -> str:
        sql = self.dialect.render_column_definition(
            field.column_name(),
            field.db_type,
            nullable=field.nullable and not field.primary_key,
        )
        if field.primary_key and inline_key:
            sql += " PRIMARY KEY"
        if field.unique and not field.primary_key:
            sql += " UNIQUE"
        default = self._default_clause(field)
        if default:
            sql += f" {default}"
        return sql

    @staticmethod
    def _default_clause(field: Field) -> Optional[str]:
        if field.db_default is not None:
            return f"DEFAULT {field.db_default}"
        value = field.default
        if value is None or callable(value):
            return None
        if isinstance(value, bool):
            return f"DEFAULT {int(value)}"
        if isinstance(value, str):
            return "DEFAULT '{}'".format(value.replace("'", "''"))
        return f"DEFAULT {value}"
