"""
DDL generation from model metadata.

Owning to-one relations become integer columns with a FOREIGN KEY
constraint; owning many-to-many relations get a two-column pivot table
whose composite key keeps each link unique.
"""

from __future__ import annotations

from typing import List, Optional

from ..core.fields import Field
from ..core.model import Model
from ..core.relations import ManyToManyField
from ..dialects.base import Dialect
from ..utils import get_logger


class SchemaBuilder:
    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect
        self.logger = get_logger("schema.builder")

    # ---- tables ------------------------------------------------------ #
    def create_table_sql(self, model: type[Model]) -> str:
        meta = model._meta
        single_pk = not meta.composite_pk
        parts = [self._column_sql(field, single_pk) for field in meta.get_fields()]
        parts.extend(self._foreign_key_sql(model))
        if not single_pk:
            keys = ", ".join(self._quoted_column(field) for field in meta.primary_keys)
            parts.append(f"PRIMARY KEY ({keys})")
        return f"CREATE TABLE IF NOT EXISTS {self.dialect.format_table(meta.table)} ({', '.join(parts)})"

    def drop_table_sql(self, model: type[Model]) -> str:
        table = self.dialect.format_table(model._meta.table)
        self.logger.warning("DROP TABLE generated for %s", table)
        return f"DROP TABLE IF EXISTS {table}"

    # ---- pivots ------------------------------------------------------ #
    def create_many_to_many_sql(self, model: type[Model]) -> List[str]:
        return [self._pivot_sql(model, relation) for relation in self._owned_pivots(model)]

    def drop_many_to_many_sql(self, model: type[Model]) -> List[str]:
        return [
            f"DROP TABLE IF EXISTS {self.dialect.format_table(relation.through_table())}"
            for relation in self._owned_pivots(model)
        ]

    @staticmethod
    def _owned_pivots(model: type[Model]) -> List[ManyToManyField]:
        return [relation for relation in dict.fromkeys(model._meta.many_to_many) if relation.owner]

    def _pivot_sql(self, model: type[Model], relation: ManyToManyField) -> str:
        quote = self.dialect.quote_identifier
        remote = relation.require_remote_model()
        owner_column = quote(relation.owner_column())
        target_column = quote(relation.target_column())
        columns = [
            f"{owner_column} INTEGER NOT NULL REFERENCES {self._table_ref(model)}",
            f"{target_column} INTEGER NOT NULL REFERENCES {self._table_ref(remote)}",
            f"PRIMARY KEY ({owner_column}, {target_column})",
        ]
        table = self.dialect.format_table(relation.through_table())
        return f"CREATE TABLE IF NOT EXISTS {table} ({', '.join(columns)})"

    # ---- pieces ------------------------------------------------------ #
    def _column_sql(self, field: Field, single_pk: bool) -> str:
        if not field.db_type:
            raise ValueError(f"Field '{field.name}' missing db_type for schema generation.")
        column_type = field.db_type
        if single_pk and field.primary_key and not field.has_default:
            column_type = self.dialect.auto_increment_type(column_type)
        sql = self.dialect.render_column_definition(
            field.column_name(), column_type, nullable=field.nullable and not field.primary_key
        )
        if single_pk and field.primary_key:
            sql += " PRIMARY KEY"
        elif field.unique and not field.primary_key:
            sql += " UNIQUE"
        default = self._default_sql(field)
        return f"{sql} DEFAULT {default}" if default is not None else sql

    def _foreign_key_sql(self, model: type[Model]) -> List[str]:
        return [
            f"FOREIGN KEY ({self.dialect.quote_identifier(relation.column_name())}) "
            f"REFERENCES {self._table_ref(relation.require_remote_model())}"
            for relation in model._meta.relations.values()
            if relation.is_owning_to_one
        ]

    def _table_ref(self, model: type[Model]) -> str:
        """``"table" ("pk")`` for a REFERENCES clause."""
        return f"{self.dialect.format_table(model._meta.table)} ({self._quoted_column(model._meta.primary_key)})"

    def _quoted_column(self, field: Field) -> str:
        return self.dialect.quote_identifier(field.column_name())

    def _default_sql(self, field: Field) -> Optional[str]:
        if field.db_default is not None:
            return str(field.db_default)
        value = field.default
        if value is None or callable(value):
            return None
        if isinstance(value, bool):
            if self.dialect.name == "sqlite":
                return "1" if value else "0"
            return "TRUE" if value else "FALSE"
        if isinstance(value, str):
            return "'" + value.replace("'", "''") + "'"
        return str(value)
