import pytest

from emberorm.core import Model, StringField, VersionField
from emberorm.drivers import InMemoryDriver
from emberorm.persistence import (
    EntityNotManagedError,
    LockMode,
    NotVersionedError,
    OptimisticLockError,
    Session,
    TransactionRequiredError,
)


class LkDocument(Model):
    title = StringField()
    version = VersionField()


class LkNote(Model):
    text = StringField()


def saved_document(driver):
    session = Session(driver)
    document = LkDocument(title="Draft")
    session.persist(document, flush=True)
    return session, document


def test_version_starts_at_one_and_increments_on_update():
    driver = InMemoryDriver()
    session, document = saved_document(driver)
    assert document.version == 1

    document.title = "Final"
    session.flush()

    assert document.version == 2
    assert driver.tables["lk_document"][(1,)]["version"] == 2


def test_stale_update_fails_and_leaves_row_untouched():
    driver = InMemoryDriver()
    session, document = saved_document(driver)
    driver.tables["lk_document"][(1,)]["version"] = 3

    document.title = "Mine"
    with pytest.raises(OptimisticLockError):
        session.flush()

    row = driver.tables["lk_document"][(1,)]
    assert row["title"] == "Draft"
    assert row["version"] == 3
    assert document.version == 1


def test_update_of_concurrently_deleted_row_is_a_lock_failure():
    driver = InMemoryDriver()
    session, document = saved_document(driver)
    del driver.tables["lk_document"][(1,)]

    document.title = "Mine"
    with pytest.raises(OptimisticLockError):
        session.flush()


def test_optimistic_lock_compares_expected_version():
    driver = InMemoryDriver()
    session, document = saved_document(driver)

    session.lock(document, LockMode.OPTIMISTIC, 1)
    session.lock(document, LockMode.OPTIMISTIC)
    uow = session.unit_of_work
    snapshot = dict(uow.get_original_entity_data(document))
    with pytest.raises(OptimisticLockError, match="version 2 was expected"):
        session.lock(document, LockMode.OPTIMISTIC, 2)

    assert session.get_by_id(LkDocument, 1) is document
    assert uow.get_original_entity_data(document) == snapshot
    assert document.version == 1
    assert driver.tables["lk_document"][(1,)]["version"] == 1


def test_optimistic_lock_requires_version_field():
    session = Session(InMemoryDriver())
    note = LkNote(text="memo")
    session.persist(note, flush=True)

    with pytest.raises(NotVersionedError):
        session.lock(note, LockMode.OPTIMISTIC, 1)


def test_lock_requires_managed_entity():
    session = Session(InMemoryDriver())
    with pytest.raises(EntityNotManagedError):
        session.lock(LkDocument(id=9, title="Ghost"), LockMode.OPTIMISTIC, 1)


def test_pessimistic_lock_requires_transaction():
    driver = InMemoryDriver()
    session, document = saved_document(driver)

    with pytest.raises(TransactionRequiredError):
        session.lock(document, LockMode.PESSIMISTIC_WRITE)
    with pytest.raises(TransactionRequiredError):
        session.find(LkDocument, {"title": "Draft"}, lock_mode=LockMode.PESSIMISTIC_READ)


def test_pessimistic_lock_reads_row_inside_transaction():
    driver = InMemoryDriver()
    session, document = saved_document(driver)

    with session.transaction():
        session.lock(document, LockMode.PESSIMISTIC_WRITE)
        locked = session.find(LkDocument, {"id": 1}, lock_mode=LockMode.PESSIMISTIC_READ)

    assert locked == [document]
    assert ("lock", "lk_document", "pessimistic_write") in driver.log
    assert ("lock", "lk_document", "pessimistic_read") in driver.log


def test_lock_mode_none_is_a_no_op():
    driver = InMemoryDriver()
    session, document = saved_document(driver)
    entries = len(driver.log)

    session.lock(document, LockMode.NONE)

    assert len(driver.log) == entries
