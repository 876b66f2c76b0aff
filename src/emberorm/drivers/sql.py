"""
SQL storage driver built on the database adapters and dialects.

Writes are rendered per change set with the adapter's parameter style. When
a write happens outside any open transaction the driver commits right
away, mirroring autocommit behaviour for stores that need an explicit
commit.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Generator, List, Mapping, Optional, Tuple, Type

from ..adapters.base import ConnectionConfig, DatabaseAdapter
from ..adapters.postgres import PostgresAdapter
from ..adapters.sqlite import SQLiteAdapter
from ..core.relations import RelationKind, relation_registry
from ..persistence.changeset import ChangeSet, ChangeSetType
from ..persistence.errors import OptimisticLockError
from ..persistence.transaction import Transaction, TransactionManager
from ..schema.builder import SchemaBuilder
from ..utils import get_logger
from .base import DriverError, StorageDriver, normalize_criteria

Row = Dict[str, Any]


def adapter_for_url(url: str) -> DatabaseAdapter:
    """
    Pick the adapter matching the DSN scheme.
    """
    scheme = url.split(":", 1)[0].lower()
    if scheme == "sqlite":
        return SQLiteAdapter()
    if scheme in {"postgres", "postgresql"}:
        return PostgresAdapter()
    raise DriverError(f"No adapter registered for scheme '{scheme}'")


class SQLDriver(StorageDriver):
    """
    Storage driver writing change sets through a :class:`DatabaseAdapter`.
    """

    def __init__(
        self,
        adapter: DatabaseAdapter,
        *,
        connection_config: ConnectionConfig | None = None,
        dsn: str | None = None,
    ) -> None:
        if connection_config is not None and dsn is not None:
            raise ValueError("Provide either connection_config or dsn, not both.")
        if dsn is not None:
            connection_config = ConnectionConfig.from_dsn(dsn)

        self.adapter = adapter
        self.dialect = adapter.dialect
        self.connection_config = connection_config
        self.logger = get_logger("drivers.sql")
        if connection_config is not None:
            self.adapter.connect(connection_config)
            self.logger.debug("SQL driver connected to %s", connection_config.descriptive_label())
        self.transactions = TransactionManager(adapter, self.dialect)

    @classmethod
    def from_dsn(cls, dsn: str) -> "SQLDriver":
        return cls(adapter_for_url(dsn), dsn=dsn)

    # ------------------------------------------------------------------ #
    # Schema
    # ------------------------------------------------------------------ #
    def create_schema(self, *models: Type) -> None:
        """
        Create tables (and pivot tables) for ``models`` if they are missing.
        """
        builder = SchemaBuilder(self.dialect)
        statements = [builder.create_table_sql(model) for model in models]
        for model in models:
            statements.extend(builder.create_many_to_many_sql(model))
        for sql in statements:
            self.adapter.execute(sql)
        self.adapter.commit()

    def drop_schema(self, *models: Type) -> None:
        """
        Drop the tables of ``models`` and their pivot tables, pivots first.
        """
        builder = SchemaBuilder(self.dialect)
        statements = [sql for model in models for sql in builder.drop_many_to_many_sql(model)]
        statements.extend(builder.drop_table_sql(model) for model in models)
        for sql in statements:
            self.adapter.execute(sql)
        self.adapter.commit()

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #
    def persist_change_set(self, change_set: ChangeSet, ctx: Any = None) -> Any:
        if change_set.type is ChangeSetType.CREATE:
            result = self._insert(change_set)
        elif change_set.type is ChangeSetType.UPDATE:
            self._update(change_set)
            result = None
        else:
            self._delete(change_set)
            result = None
        self._autocommit(ctx)
        return result

    def _insert(self, change_set: ChangeSet) -> Any:
        meta = change_set.entity._meta
        table = self.dialect.format_table(meta.table)
        columns: List[str] = []
        params: List[Any] = []
        for name, value in change_set.payload.items():
            columns.append(self.dialect.quote_identifier(meta.fields[name].column_name()))
            params.append(self._to_db(value))

        if columns:
            placeholders = ", ".join(self.dialect.parameter_placeholder() for _ in columns)
            sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        else:
            sql = f"INSERT INTO {table} DEFAULT VALUES"

        pk_field = meta.primary_key
        generates_pk = (
            not meta.composite_pk and pk_field is not None and pk_field.name not in change_set.payload
        )
        if generates_pk and self.dialect.capabilities.supports_returning:
            sql += f" RETURNING {self.dialect.quote_identifier(pk_field.column_name())}"

        cursor = self.adapter.execute(sql, params)
        if not generates_pk:
            return None
        return self.adapter.last_insert_id(cursor, meta.table, pk_field.column_name())

    def _update(self, change_set: ChangeSet) -> None:
        entity = change_set.entity
        meta = entity._meta
        assignments: List[str] = []
        params: List[Any] = []
        for name, value in change_set.payload.items():
            column = self.dialect.quote_identifier(meta.fields[name].column_name())
            assignments.append(f"{column} = {self.dialect.parameter_placeholder()}")
            params.append(self._to_db(value))

        where, where_params = self._pk_condition(entity)
        version_field = meta.version_field
        if version_field is not None and change_set.original is not None:
            expected = change_set.original.get(version_field.require_name())
            column = self.dialect.quote_identifier(version_field.column_name())
            if expected is None:
                where += f" AND {column} IS NULL"
            else:
                where += f" AND {column} = {self.dialect.parameter_placeholder()}"
                where_params.append(expected)

        sql = f"UPDATE {self.dialect.format_table(meta.table)} SET {', '.join(assignments)} WHERE {where}"
        cursor = self.adapter.execute(sql, params + where_params)
        if getattr(cursor, "rowcount", 1) == 0:
            if version_field is not None:
                raise OptimisticLockError.concurrent_update(entity)
            raise DriverError(f"Update of {meta.name}[{entity.pk!r}] matched no row")

    def _delete(self, change_set: ChangeSet) -> None:
        entity = change_set.entity
        meta = entity._meta
        placeholder = self.dialect.parameter_placeholder()
        for relation, column in self._pivot_columns(entity.__class__):
            pivot = self.dialect.format_table(relation.through_table())
            self.adapter.execute(
                f"DELETE FROM {pivot} WHERE {self.dialect.quote_identifier(column)} = {placeholder}",
                [entity.pk],
            )

        where, params = self._pk_condition(entity)
        self.adapter.execute(f"DELETE FROM {self.dialect.format_table(meta.table)} WHERE {where}", params)

    def sync_collection(self, collection, ctx: Any = None) -> None:
        field = collection.field
        pivot = self.dialect.format_table(field.through_table())
        owner_column = self.dialect.quote_identifier(field.owner_column())
        target_column = self.dialect.quote_identifier(field.target_column())
        placeholder = self.dialect.parameter_placeholder()
        owner_pk = collection.owner.pk
        current = collection.get_items()
        snapshot = collection.get_snapshot()

        removed = [item for item in snapshot if not any(item is member for member in current)]
        added = [item for item in current if not any(item is member for member in snapshot)]
        if removed:
            self.adapter.executemany(
                f"DELETE FROM {pivot} WHERE {owner_column} = {placeholder} AND {target_column} = {placeholder}",
                [(owner_pk, item.pk) for item in removed],
            )
        if added:
            self.adapter.executemany(
                f"INSERT INTO {pivot} ({owner_column}, {target_column}) VALUES ({placeholder}, {placeholder})",
                [(owner_pk, item.pk) for item in added],
            )
        self.logger.debug(
            "Synced %s: %d linked, %d unlinked", field.through_table(), len(added), len(removed)
        )
        self._autocommit(ctx)

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #
    def find(
        self,
        model: Type,
        where: Mapping[str, Any],
        lock_mode=None,
        ctx: Any = None,
    ) -> List[Row]:
        meta = model._meta
        conditions: List[str] = []
        params: List[Any] = []
        placeholder = self.dialect.parameter_placeholder()
        for field, operator, value in normalize_criteria(model, where):
            column = self.dialect.quote_identifier(field.column_name())
            if operator == "null":
                conditions.append(f"{column} IS NULL")
            elif operator == "in":
                if not value:
                    return []
                conditions.append(f"{column} IN ({', '.join(placeholder for _ in value)})")
                params.extend(self._to_db(item) for item in value)
            else:
                conditions.append(f"{column} = {placeholder}")
                params.append(self._to_db(value))

        sql = f"SELECT {self._select_list(model)} FROM {self.dialect.format_table(meta.table)}"
        if conditions:
            sql += f" WHERE {' AND '.join(conditions)}"
        lock = self.dialect.lock_clause(lock_mode)
        if lock:
            sql += f" {lock}"
        cursor = self.adapter.execute(sql, params)
        return self._rows(model, cursor)

    def load_collection(self, collection, ctx: Any = None) -> List[Row]:
        field = collection.field
        remote = field.require_remote_model()
        if field.relation_type is RelationKind.ONE_TO_MANY:
            return self.find(remote, {field.mapped_by: collection.owner.pk})

        if field.owner:
            join_column, filter_column = field.target_column(), field.owner_column()
        else:
            join_column, filter_column = field.owner_column(), field.target_column()
        quote = self.dialect.quote_identifier
        pk_column = quote(remote._meta.primary_key.column_name())
        sql = (
            f"SELECT {self._select_list(remote, alias='t')} "
            f"FROM {self.dialect.format_table(remote._meta.table)} t "
            f"JOIN {self.dialect.format_table(field.through_table())} p "
            f"ON p.{quote(join_column)} = t.{pk_column} "
            f"WHERE p.{quote(filter_column)} = {self.dialect.parameter_placeholder()}"
        )
        cursor = self.adapter.execute(sql, [collection.owner.pk])
        return self._rows(remote, cursor)

    def lock_read(self, entity, mode, ctx: Any = None) -> None:
        meta = entity._meta
        where, params = self._pk_condition(entity)
        sql = (
            f"SELECT {self._select_list(entity.__class__)} "
            f"FROM {self.dialect.format_table(meta.table)} WHERE {where}"
        )
        lock = self.dialect.lock_clause(mode)
        if lock:
            sql += f" {lock}"
        cursor = self.adapter.execute(sql, params)
        if cursor.fetchone() is None:
            raise DriverError(f"Cannot lock missing row {meta.name}[{entity.pk!r}]")

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #
    def supports_transactions(self) -> bool:
        return True

    @contextmanager
    def transaction(self) -> Generator[Transaction, None, None]:
        with self.transactions.transaction() as transaction:
            yield transaction

    def close(self) -> None:
        self.adapter.close()

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _autocommit(self, ctx: Any) -> None:
        if ctx is None and self.transactions.depth == 0:
            self.adapter.commit()

    def _pk_condition(self, entity) -> Tuple[str, List[Any]]:
        placeholder = self.dialect.parameter_placeholder()
        parts = [
            f"{self.dialect.quote_identifier(field.column_name())} = {placeholder}"
            for field in entity._meta.primary_keys
        ]
        return " AND ".join(parts), list(entity.primary_key_values())

    def _select_list(self, model: Type, alias: Optional[str] = None) -> str:
        prefix = f"{alias}." if alias else ""
        return ", ".join(
            f"{prefix}{self.dialect.quote_identifier(field.column_name())}"
            for field in model._meta.get_fields()
        )

    @staticmethod
    def _rows(model: Type, cursor: Any) -> List[Row]:
        names = [field.require_name() for field in model._meta.get_fields()]
        return [dict(zip(names, tuple(row))) for row in cursor.fetchall()]

    @staticmethod
    def _to_db(value: Any) -> Any:
        if isinstance(value, datetime):
            return value.isoformat()
        return value

    @staticmethod
    def _pivot_columns(model: Type):
        for candidate in relation_registry.models.values():
            for relation in candidate._meta.many_to_many:
                if not relation.owner:
                    continue
                if candidate is model:
                    yield relation, relation.owner_column()
                if relation.remote_model is model:
                    yield relation, relation.target_column()

