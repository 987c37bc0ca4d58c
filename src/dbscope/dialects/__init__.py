"""
Dialect strategy registry.
"""

from .base import Dialect, DialectCapabilities, IsolationLevel
from .sqlite import SQLiteDialect

__all__ = ["Dialect", "DialectCapabilities", "IsolationLevel", "SQLiteDialect"]
