"""
SQLite dialect.

SQLite locks the whole database on write, so there are no row-lock hints
and pessimistic reads render without a clause.
"""

from __future__ import annotations

from .base import AnsiDialect, DialectCapabilities


class SQLiteDialect(AnsiDialect):
    name = "sqlite"
    capabilities = DialectCapabilities()

    def auto_increment_type(self, column_type: str) -> str:
        # INTEGER PRIMARY KEY aliases the rowid
        return "INTEGER"
