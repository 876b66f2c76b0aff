"""
SQL dialects: identifier quoting, placeholders, row-lock hints and the
column DDL the schema builder emits.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar, Dict, Protocol

if TYPE_CHECKING:
    from ..persistence.locking import LockMode


@dataclass(frozen=True)
class DialectCapabilities:
    supports_returning: bool = False
    supports_savepoints: bool = True
    supports_row_locks: bool = False
    supports_schema_namespaces: bool = False


class Dialect(Protocol):
    """
    What the SQL driver, transaction manager and schema builder need to know
    about a backend.
    """

    name: str
    param_style: str
    capabilities: DialectCapabilities

    def quote_identifier(self, identifier: str) -> str: ...

    def format_table(self, table_name: str) -> str: ...

    def parameter_placeholder(self, position: int | None = None) -> str: ...

    def lock_clause(self, mode: "LockMode | None") -> str: ...

    def auto_increment_type(self, column_type: str) -> str: ...

    def render_column_definition(self, column: str, column_type: str, *, nullable: bool) -> str: ...


class AnsiDialect(Dialect):
    """
    Double-quoted identifiers and a lock hint table keyed by lock mode
    value. Backends override the class attributes and the key type.
    """

    name: ClassVar[str] = "ansi"
    param_style: ClassVar[str] = "qmark"
    placeholder: ClassVar[str] = "?"
    capabilities: ClassVar[DialectCapabilities] = DialectCapabilities()
    row_lock_clauses: ClassVar[Dict[str, str]] = {}

    def quote_identifier(self, identifier: str) -> str:
        return '"' + identifier.replace('"', '""') + '"'

    def format_table(self, table_name: str) -> str:
        if not self.capabilities.supports_schema_namespaces:
            return self.quote_identifier(table_name)
        return ".".join(self.quote_identifier(part) for part in table_name.split(".", 1))

    def parameter_placeholder(self, position: int | None = None) -> str:
        return self.placeholder

    def lock_clause(self, mode: "LockMode | None") -> str:
        if mode is None:
            return ""
        return self.row_lock_clauses.get(mode.value, "")

    def auto_increment_type(self, column_type: str) -> str:
        return column_type

    def render_column_definition(self, column: str, column_type: str, *, nullable: bool) -> str:
        parts = [self.quote_identifier(column), column_type]
        if not nullable:
            parts.append("NOT NULL")
        return " ".join(parts)
