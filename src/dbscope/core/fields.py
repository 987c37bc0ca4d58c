"""
Column descriptors for dbscope models.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Optional

if TYPE_CHECKING:
    from .model import Model


class FieldError(Exception):
    """Internal exception for field configuration issues."""


class Field:
    """
    Descriptor storing one column value in ``instance._field_values``.

    Besides conversion between Python and database values, a field records
    what the session layer needs to know about it: column name, whether it is
    part of the (possibly composite) key, and whether it is an optimistic
    concurrency token checked on UPDATE and DELETE.
    """

    column_type: ClassVar[str] = "TEXT"
    _counter: ClassVar[int] = 0

    def __init__(
        self,
        *,
        primary_key: bool = False,
        unique: bool = False,
        nullable: bool = True,
        default: Any = None,
        db_type: Optional[str] = None,
        db_column: Optional[str] = None,
        db_default: Any = None,
        concurrency_check: bool = False,
    ) -> None:
        self.primary_key = primary_key
        self.unique = unique
        self.nullable = nullable
        self.default = default
        self.db_type = db_type or self.column_type
        self.db_column = db_column
        self.db_default = db_default
        self.concurrency_check = concurrency_check

        self.model: type["Model"] | None = None
        self.name: str | None = None
        # declaration order decides column order and composite key order
        self.creation_counter = Field._counter
        Field._counter += 1

    def __repr__(self) -> str:
        owner = self.model.__name__ if self.model else "?"
        return f"<{type(self).__name__} {owner}.{self.name}>"

    def __get__(self, instance: Optional["Model"], owner: type | None = None) -> Any:
        if instance is None:
            return self
        name = self.require_name()
        values = instance._field_values
        if name not in values:
            default = self.get_default()
            if default is None:
                return None
            values[name] = default
        return values[name]

    def __set__(self, instance: "Model", value: Any) -> None:
        name = self.require_name()
        if value is None and not (self.nullable or self.primary_key):
            raise ValueError(f"Field '{name}' cannot be None")
        instance._field_values[name] = None if value is None else self.to_python(value)

    def contribute_to_class(self, model: type["Model"], name: str) -> None:
        self.model = model
        self.name = name
        if self.db_column is None:
            self.db_column = name
        setattr(model, name, self)

    def require_name(self) -> str:
        if self.name is None:
            raise FieldError("Field is not bound to a model yet.")
        return self.name

    def column_name(self) -> str:
        return self.db_column or self.require_name()

    @property
    def has_default(self) -> bool:
        return self.default is not None

    def get_default(self) -> Any:
        return self.default() if callable(self.default) else self.default

    def to_python(self, value: Any) -> Any:
        return value

    def to_db(self, value: Any) -> Any:
        return value


class _CoercingField(Field):
    """Field converting non-null values with a single callable."""

    coerce: ClassVar[Callable[[Any], Any]]

    def to_python(self, value: Any) -> Any:
        if value is None:
            return None
        try:
            return type(self).coerce(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid value {value!r} for {type(self).__name__} '{self.name}'") from exc


class IntegerField(_CoercingField):
    column_type = "INTEGER"
    coerce = int


class AutoField(IntegerField):
    """
    Database-generated integer key, added to models that declare no key.
    """

    def __init__(self) -> None:
        super().__init__(primary_key=True, nullable=False)


class FloatField(_CoercingField):
    column_type = "REAL"
    coerce = float


_TRUE_STRINGS = frozenset({"true", "t", "1", "yes"})
_FALSE_STRINGS = frozenset({"false", "f", "0", "no"})


class BooleanField(Field):
    """Stored as 0/1."""

    column_type = "BOOLEAN"

    def __init__(self, *, default: Any = False, nullable: bool = False, **kwargs: Any) -> None:
        super().__init__(default=default, nullable=nullable, **kwargs)

    def to_python(self, value: Any) -> bool | None:
        if value is None or isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return bool(value)
        if isinstance(value, str) and value.lower() in _TRUE_STRINGS | _FALSE_STRINGS:
            return value.lower() in _TRUE_STRINGS
        raise ValueError(f"Invalid boolean value {value!r} for '{self.name}'")

    def to_db(self, value: Any) -> int | None:
        return None if value is None else int(bool(value))


class StringField(Field):
    def __init__(self, *, max_length: int = 255, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.max_length = max_length

    def to_python(self, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value)
        if self.max_length and len(text) > self.max_length:
            raise ValueError(f"Value for field '{self.name}' exceeds max_length {self.max_length}")
        return text


class DateTimeField(Field):
    """
    Datetime stored as ISO-8601 text. ``auto_now_add`` stamps new instances in UTC.
    """

    def __init__(self, *, auto_now_add: bool = False, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.auto_now_add = auto_now_add

    @property
    def has_default(self) -> bool:
        return self.auto_now_add or super().has_default

    def get_default(self) -> Any:
        if self.auto_now_add:
            return datetime.now(timezone.utc)
        return super().get_default()

    def to_python(self, value: Any) -> datetime | None:
        if value is None or isinstance(value, datetime):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Expected datetime for field '{self.name}', received {value!r}")
        try:
            return datetime.fromisoformat(value)
        except ValueError as exc:
            raise ValueError(f"Invalid datetime value {value!r} for field '{self.name}'") from exc

    def to_db(self, value: Any) -> str | None:
        return None if value is None else value.isoformat()
