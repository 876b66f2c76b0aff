import os
import uuid

import pytest

from emberorm.adapters import ConnectionConfig
from emberorm.adapters.postgres import PostgresAdapter
from emberorm.core import ForeignKey, Model, StringField, VersionField
from emberorm.drivers import SQLDriver
from emberorm.persistence import LockMode, OptimisticLockError, Session

SUFFIX = uuid.uuid4().hex[:8]


class PgAuthor(Model):
    name = StringField()

    class Meta:
        table = f"pg_author_{SUFFIX}"


class PgBook(Model):
    title = StringField()
    version = VersionField()
    author = ForeignKey(PgAuthor)

    class Meta:
        table = f"pg_book_{SUFFIX}"


def _require_postgres_driver():
    try:
        import psycopg  # noqa: F401
    except ImportError:
        pytest.skip("psycopg driver not installed")
    dsn = os.getenv("EMBERORM_POSTGRES_DSN")
    if not dsn:
        pytest.skip("EMBERORM_POSTGRES_DSN not set; skipping Postgres integration test")
    adapter = PostgresAdapter()
    try:
        driver = SQLDriver(adapter, connection_config=ConnectionConfig.from_dsn(dsn))
    except Exception as exc:  # pragma: no cover - environment dependent
        pytest.skip(f"Cannot connect to Postgres for integration test: {exc}")
    return driver


def test_postgres_unit_of_work_roundtrip():
    driver = _require_postgres_driver()
    try:
        driver.create_schema(PgAuthor, PgBook)
        session = Session(driver)
        book = PgBook(title="Kindred", author=PgAuthor(name="Octavia Butler"))
        session.persist(book, flush=True)
        assert book.id is not None and book.author.id is not None
        assert book.version == 1

        with session.transaction():
            session.lock(book, LockMode.PESSIMISTIC_WRITE)
            book.title = "Kindred (2nd ed.)"
        assert book.version == 2

        session.clear()
        stale = session.find_one(PgBook, book.id)
        driver.adapter.execute(
            f'UPDATE "{PgBook._meta.table}" SET "version" = %s WHERE "id" = %s', (5, book.id)
        )
        driver.adapter.commit()
        stale.title = "Lost update"
        with pytest.raises(OptimisticLockError):
            session.flush()
    finally:
        driver.drop_schema(PgBook, PgAuthor)
        driver.close()
