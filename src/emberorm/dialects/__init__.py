"""
Dialect strategy registry.
"""

from .base import AnsiDialect, Dialect, DialectCapabilities
from .postgres import PostgresDialect
from .sqlite import SQLiteDialect

__all__ = ["AnsiDialect", "Dialect", "DialectCapabilities", "SQLiteDialect", "PostgresDialect"]
