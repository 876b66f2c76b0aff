"""
SQLite adapter over the standard library ``sqlite3`` module.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Iterable, Sequence

from ..dialects.sqlite import SQLiteDialect
from ..security.redaction import redact_params
from ..utils import get_logger, resolve_slow_query_ms, time_call
from .base import AdapterConnectionError, ConnectionConfig, DatabaseAdapter

DEFAULT_BUSY_TIMEOUT = 5.0


def database_path(config: ConnectionConfig) -> str:
    """
    Filesystem path (or ``:memory:``) for ``config``. Plain paths that are
    not ``sqlite://`` URLs are used as given.
    """
    dsn = config.parsed()
    return dsn.sqlite_path() if dsn.is_sqlite else config.url


class SQLiteAdapter(DatabaseAdapter):
    """
    Foreign keys are switched on for every connection so reference checks
    match what the in-memory driver enforces.
    """

    def __init__(self, slow_query_ms: int | None = None) -> None:
        self.dialect = SQLiteDialect()
        self.logger = get_logger("adapters.sqlite")
        self.slow_query_ms = resolve_slow_query_ms(default=200, override=slow_query_ms)
        self._connection: sqlite3.Connection | None = None

    def connect(self, config: ConnectionConfig) -> sqlite3.Connection:
        path = database_path(config)
        # isolation_level=None leaves transaction control to begin/commit
        connection = sqlite3.connect(
            path,
            timeout=DEFAULT_BUSY_TIMEOUT if config.timeout is None else config.timeout,
            isolation_level=None if config.autocommit else (config.isolation_level or ""),
            check_same_thread=False,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        self.logger.debug("Opened SQLite database %s", path)
        self._connection = connection
        return connection

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise AdapterConnectionError("SQLiteAdapter is not connected.")
        return self._connection

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Cursor:
        cursor = self.connection.cursor()
        params = tuple(params or ())
        with time_call(
            "sqlite.execute",
            self.logger,
            sql=sql,
            params=redact_params(params),
            threshold_ms=self.slow_query_ms,
        ):
            cursor.execute(sql, params)
        return cursor

    def executemany(self, sql: str, seq_of_params: Iterable[Sequence[Any]]) -> sqlite3.Cursor:
        rows = [tuple(row) for row in seq_of_params]
        cursor = self.connection.cursor()
        with time_call(
            "sqlite.executemany",
            self.logger,
            sql=sql,
            params=f"{len(rows)} rows",
            threshold_ms=self.slow_query_ms,
        ):
            cursor.executemany(sql, rows)
        return cursor

    def begin(self) -> None:
        self.connection.execute("BEGIN")

    def commit(self) -> None:
        self.connection.commit()

    def rollback(self) -> None:
        self.connection.rollback()

    def last_insert_id(self, cursor: sqlite3.Cursor, table: str, pk_column: str) -> Any:
        return cursor.lastrowid
