"""
PostgreSQL dialect.
"""

from __future__ import annotations

from .base import AnsiDialect, DialectCapabilities


class PostgresDialect(AnsiDialect):
    name = "postgresql"
    param_style = "pyformat"
    placeholder = "%s"
    capabilities = DialectCapabilities(
        supports_returning=True,
        supports_row_locks=True,
        supports_schema_namespaces=True,
    )
    row_lock_clauses = {
        "pessimistic_read": "FOR SHARE",
        "pessimistic_write": "FOR UPDATE",
    }

    def auto_increment_type(self, column_type: str) -> str:
        return "BIGSERIAL" if column_type.upper() == "BIGINT" else "SERIAL"
