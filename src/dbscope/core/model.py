"""
Model base class and the metadata the session layer reads from it.
"""

from __future__ import annotations

import re
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type

from .fields import AutoField, Field


class ModelConfigurationError(Exception):
    """Raised when a model class is misconfigured."""


KeyValues = Tuple[Tuple[str, Any], ...]

_WORD_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def default_table_name(model_name: str) -> str:
    """
    ``CourseUser`` -> ``course_user``; ``HTTPLog`` -> ``http_log``.
    """
    return _WORD_BOUNDARY_RE.sub("_", model_name).lower()


@dataclass
class ModelOptions:
    """
    Per-model metadata built once by :class:`ModelMeta`.

    ``primary_keys`` keeps key fields in declaration order so that composite
    keys always compare position by position.
    """

    model: Type["Model"]
    table_name: str
    fields: "OrderedDict[str, Field]" = field(default_factory=OrderedDict)
    primary_keys: Tuple[Field, ...] = ()

    def add_field(self, field_obj: Field) -> None:
        name = field_obj.require_name()
        if name in self.fields:
            raise ModelConfigurationError(f"Duplicate field name '{name}' on model '{self.model.__name__}'")
        self.fields[name] = field_obj
        if field_obj.primary_key:
            self.primary_keys += (field_obj,)

    @property
    def primary_key(self) -> Optional[Field]:
        """The single key field, or ``None`` for composite keys."""
        return self.primary_keys[0] if len(self.primary_keys) == 1 else None

    @property
    def has_composite_key(self) -> bool:
        return len(self.primary_keys) > 1

    def get_field(self, name: str) -> Field:
        try:
            return self.fields[name]
        except KeyError as exc:
            raise KeyError(f"Unknown field '{name}' on model '{self.model.__name__}'") from exc

    def get_fields(self) -> Iterable[Field]:
        return self.fields.values()

    def concurrency_fields(self) -> Tuple[Field, ...]:
        return tuple(f for f in self.fields.values() if f.concurrency_check)

    def primary_key_values(self, instance: "Model") -> KeyValues:
        """
        Ordered ``(field name, value)`` pairs identifying ``instance``.
        """
        return tuple((f.name, instance._field_values.get(f.name)) for f in self.primary_keys)

    def key_from_filters(self, filters: Dict[str, Any]) -> KeyValues | None:
        """
        Key pairs built from keyword filters, or ``None`` unless they name exactly the key fields.
        """
        if not self.primary_keys or set(filters) != {f.name for f in self.primary_keys}:
            return None
        return tuple((f.name, f.to_python(filters[f.name])) for f in self.primary_keys)


class ModelMeta(type):
    """
    Collects declared fields into ``cls._meta``; adds an ``id`` AutoField when no key is declared.
    """

    def __new__(mcls, name: str, bases: tuple[type, ...], attrs: Dict[str, Any]) -> "ModelMeta":
        declared = sorted(
            ((attr, value) for attr, value in attrs.items() if isinstance(value, Field)),
            key=lambda item: item[1].creation_counter,
        )
        for attr, _ in declared:
            del attrs[attr]

        cls = super().__new__(mcls, name, bases, attrs)
        if not any(isinstance(base, ModelMeta) for base in bases):
            return cls

        meta_options = attrs.get("Meta")
        table_name = getattr(meta_options, "table", None) or default_table_name(name)
        options = ModelOptions(model=cls, table_name=table_name)

        if not any(f.primary_key for _, f in declared):
            if any(attr == "id" for attr, _ in declared):
                raise ModelConfigurationError(
                    f"Model '{name}' defines a field named 'id' but no primary key. "
                    "Either set primary_key=True on that field or use a different name."
                )
            declared.insert(0, ("id", AutoField()))

        for attr, field_obj in declared:
            field_obj.contribute_to_class(cls, attr)
            options.add_field(field_obj)

        cls._meta = options
        return cls


class Model(metaclass=ModelMeta):
    """
    Plain data container; persistence goes through :class:`~dbscope.persistence.Session`.

    ``_initial_state`` holds the values last read from or written to the
    database and doubles as the original values used for concurrency checks.
    """

    _meta: ModelOptions

    def __init__(self, **kwargs: Any) -> None:
        self._field_values: Dict[str, Any] = {}

        unknown = set(kwargs) - set(self._meta.fields)
        if unknown:
            raise TypeError(f"{type(self).__name__} got unexpected field(s): {', '.join(sorted(unknown))}")

        for name, field_obj in self._meta.fields.items():
            if name in kwargs:
                setattr(self, name, kwargs[name])
            elif field_obj.has_default:
                default = field_obj.get_default()
                if default is not None:
                    setattr(self, name, default)

        self._initial_state: Dict[str, Any] = dict(self._field_values)

    def __repr__(self) -> str:
        shown = ", ".join(f"{name}={value!r}" for name, value in self._field_values.items())
        return f"<{type(self).__name__} {shown}>"

    @property
    def pk(self) -> Any:
        """
        Primary key value; a tuple of values for composite keys.
        """
        values = tuple(value for _, value in self._meta.primary_key_values(self))
        return values[0] if len(values) == 1 else values

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self._meta.fields}

    def changed_fields(self) -> List[str]:
        return [
            name
            for name in self._meta.fields
            if name in self._field_values and self._field_values[name] != self._initial_state.get(name)
        ]

    def is_dirty(self) -> bool:
        return bool(self.changed_fields())
