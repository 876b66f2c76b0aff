"""
PostgreSQL adapter on psycopg 3.

psycopg is imported on first connect so the package works without the
``postgres`` extra. Statements use ``%s`` placeholders and their argument
count is checked up front, which turns a malformed change set into an
:class:`AdapterExecutionError` instead of a server round trip.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, Sequence

from ..dialects.postgres import PostgresDialect
from ..security.redaction import redact_params
from ..utils import get_logger, resolve_slow_query_ms, time_call
from .base import (
    AdapterConfigurationError,
    AdapterConnectionError,
    AdapterExecutionError,
    ConnectionConfig,
    DatabaseAdapter,
)

# "%%" is a literal percent sign and must not be counted
_PLACEHOLDER = re.compile(r"%%|%s")


def _load_driver() -> Any:
    try:
        import psycopg
    except ImportError:
        return None
    return psycopg


def _placeholder_count(sql: str) -> int:
    return sum(1 for match in _PLACEHOLDER.finditer(sql) if match.group() == "%s")


def _connect_options(config: ConnectionConfig) -> Dict[str, Any]:
    options: Dict[str, Any] = config.ssl.postgres_options() if config.ssl else {}
    options.update(config.options or {})
    if config.timeout is not None:
        options.setdefault("connect_timeout", int(config.timeout))
    return options


class PostgresAdapter(DatabaseAdapter):
    def __init__(self, slow_query_ms: int | None = None) -> None:
        self.dialect = PostgresDialect()
        self.logger = get_logger("adapters.postgres")
        self.slow_query_ms = resolve_slow_query_ms(default=100, override=slow_query_ms)
        self._connection: Any = None
        self._config: ConnectionConfig | None = None
        # BEGIN sent by hand on an autocommit connection
        self._manual_transaction = False

    # ---- connection -------------------------------------------------- #
    def connect(self, config: ConnectionConfig) -> Any:
        driver = _load_driver()
        if driver is None:
            raise AdapterConfigurationError(
                "PostgresAdapter needs psycopg; install the 'postgres' extra."
            )
        label = config.descriptive_label()
        try:
            connection = driver.connect(config.server_url(), **_connect_options(config))
        except Exception as exc:
            raise AdapterConnectionError(f"Could not connect to {label}") from exc

        connection.autocommit = bool(config.autocommit)
        if config.isolation_level:
            level = config.isolation_level.upper().replace(" ", "_")
            connection.isolation_level = driver.IsolationLevel[level]
        self.logger.info("Connected to PostgreSQL %s (autocommit=%s)", label, config.autocommit)
        self._connection = connection
        self._config = config
        return connection

    def close(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None and not connection.closed:
            connection.close()

    def _require_connection(self) -> Any:
        if self._connection is None:
            raise AdapterConnectionError("PostgresAdapter is not connected.")
        if self._connection.closed:
            if self._config is None:
                raise AdapterConnectionError("PostgreSQL connection was closed.")
            self.logger.warning("PostgreSQL connection was closed; reconnecting")
            self.connect(self._config)
        return self._connection

    # ---- statements -------------------------------------------------- #
    def execute(self, sql: str, params: Sequence[Any] | None = None) -> Any:
        params = tuple(params or ())
        expected = _placeholder_count(sql)
        if expected != len(params):
            raise AdapterExecutionError(
                f"Statement expects {expected} parameter(s), got {len(params)}: {sql}"
            )
        cursor = self._require_connection().cursor()
        with time_call(
            "postgres.execute",
            self.logger,
            sql=sql,
            params=redact_params(params),
            threshold_ms=self.slow_query_ms,
        ):
            cursor.execute(sql, params)
        return cursor

    def executemany(self, sql: str, seq_of_params: Iterable[Sequence[Any]]) -> Any:
        rows = [tuple(row) for row in seq_of_params]
        expected = _placeholder_count(sql)
        for row in rows:
            if len(row) != expected:
                raise AdapterExecutionError(
                    f"Statement expects {expected} parameter(s), got {len(row)}: {sql}"
                )
        cursor = self._require_connection().cursor()
        with time_call(
            "postgres.executemany",
            self.logger,
            sql=sql,
            params=f"{len(rows)} rows",
            threshold_ms=self.slow_query_ms,
        ):
            cursor.executemany(sql, rows)
        return cursor

    # ---- transactions ------------------------------------------------ #
    def begin(self) -> None:
        # non-autocommit connections open a transaction on the first statement
        connection = self._require_connection()
        if connection.autocommit:
            connection.cursor().execute("BEGIN")
            self._manual_transaction = True

    def commit(self) -> None:
        self._finish("COMMIT")

    def rollback(self) -> None:
        self._finish("ROLLBACK")

    def _finish(self, statement: str) -> None:
        connection = self._require_connection()
        if self._manual_transaction:
            self._manual_transaction = False
            connection.cursor().execute(statement)
        elif not connection.autocommit:
            if statement == "COMMIT":
                connection.commit()
            else:
                connection.rollback()

    def last_insert_id(self, cursor: Any, table: str, pk_column: str) -> Any:
        row = cursor.fetchone()
        if row is None:
            raise AdapterExecutionError(f"INSERT into {table} returned no {pk_column}")
        return row[0]
