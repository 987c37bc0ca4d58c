"""
Core building blocks for dbscope models and metadata handling.
"""

from .fields import (
    AutoField,
    BooleanField,
    DateTimeField,
    Field,
    FieldError,
    FloatField,
    IntegerField,
    StringField,
)
from .model import KeyValues, Model, ModelConfigurationError, ModelMeta, ModelOptions

__all__ = [
    "AutoField",
    "BooleanField",
    "DateTimeField",
    "Field",
    "FieldError",
    "FloatField",
    "IntegerField",
    "KeyValues",
    "Model",
    "ModelConfigurationError",
    "ModelMeta",
    "ModelOptions",
    "StringField",
]
