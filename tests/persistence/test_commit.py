import pytest

from emberorm.core import ForeignKey, Model, OneToMany, StringField
from emberorm.drivers import InMemoryDriver, IntegrityError
from emberorm.hooks import HookDispatcher
from emberorm.persistence import Session, SessionConfig


class CmAuthor(Model):
    name = StringField()
    books = OneToMany("CmBook", mapped_by="author")


class CmBook(Model):
    title = StringField()
    author = ForeignKey(CmAuthor)


class CmCycleA(Model):
    label = StringField()
    next = ForeignKey("CmCycleB")


class CmCycleB(Model):
    label = StringField()
    next = ForeignKey("CmCycleC")


class CmCycleC(Model):
    label = StringField()
    next = ForeignKey(CmCycleA)


class CmList(Model):
    name = StringField()
    entries = OneToMany("CmEntry", mapped_by="owner", orphan_removal=True)


class CmEntry(Model):
    label = StringField()
    owner = ForeignKey(CmList)


class CmDraft(Model):
    label = StringField()
    latest = ForeignKey("CmRevision", nullable=True)


class CmRevision(Model):
    label = StringField()
    draft = ForeignKey(CmDraft)


def author_with_books():
    author = CmAuthor(name="Ann")
    author.books.add(CmBook(title="One"), CmBook(title="Two"))
    return author


def test_parent_inserted_before_children_and_keys_assigned():
    driver = InMemoryDriver()
    session = Session(driver)
    author = author_with_books()

    session.persist(author, flush=True)

    assert driver.writes() == [
        ("insert", "cm_author", 1),
        ("insert", "cm_book", 1),
        ("insert", "cm_book", 2),
    ]
    assert [row["author"] for row in driver.tables["cm_book"].values()] == [1, 1]
    assert sorted(session.get_identity_map()) == ["CmAuthor-1", "CmBook-1", "CmBook-2"]


def test_child_persisted_first_still_writes_parent_first():
    driver = InMemoryDriver()
    session = Session(driver)
    book = CmBook(title="Solo", author=CmAuthor(name="Ann"))

    session.persist(book, flush=True)

    assert [entry[1] for entry in driver.writes()] == ["cm_author", "cm_book"]
    assert book.author.pk == 1


def test_flush_runs_in_implicit_transaction():
    driver = InMemoryDriver()
    Session(driver).persist(author_with_books(), flush=True)

    assert driver.log[0] == ("begin", "", 1)
    assert driver.log[-1] == ("commit", "", 1)


def test_implicit_transaction_can_be_disabled():
    driver = InMemoryDriver()
    session = Session(driver, config=SessionConfig(implicit_transactions=False))

    session.persist(author_with_books(), flush=True)

    assert all(entry[0] not in ("begin", "commit") for entry in driver.log)


def test_required_cycle_is_broken_with_extra_update():
    driver = InMemoryDriver()
    session = Session(driver)
    a, b, c = CmCycleA(label="a"), CmCycleB(label="b"), CmCycleC(label="c")
    a.next, b.next, c.next = b, c, a

    session.persist(a, flush=True)

    operations = [entry[0] for entry in driver.writes()]
    assert operations == ["insert", "insert", "insert", "update"]
    assert driver.tables["cm_cycle_a"][(a.pk,)]["next"] == b.pk
    assert driver.tables["cm_cycle_b"][(b.pk,)]["next"] == c.pk
    assert driver.tables["cm_cycle_c"][(c.pk,)]["next"] == a.pk
    assert a.next is b and b.next is c and c.next is a

    session.flush()
    assert len(driver.writes()) == 4


def test_optional_back_reference_is_filled_in_after_insert():
    driver = InMemoryDriver()
    session = Session(driver)
    draft = CmDraft(label="draft")
    revision = CmRevision(label="r1", draft=draft)
    draft.latest = revision

    session.persist(draft, flush=True)

    assert driver.writes() == [
        ("insert", "cm_draft", 1),
        ("insert", "cm_revision", 1),
        ("update", "cm_draft", 1),
    ]
    assert driver.tables["cm_draft"][(1,)]["latest"] == revision.pk
    assert driver.tables["cm_revision"][(1,)]["draft"] == draft.pk
    assert draft.latest is revision


def test_deletes_run_children_first():
    driver = InMemoryDriver()
    session = Session(driver)
    author = author_with_books()
    session.persist(author, flush=True)
    one, two = author.books.get_items()

    session.remove(author, one, two, flush=True)

    assert driver.writes()[-3:] == [
        ("delete", "cm_book", 1),
        ("delete", "cm_book", 2),
        ("delete", "cm_author", 1),
    ]
    assert session.get_identity_map() == {}


def test_update_carries_only_changed_fields_and_second_flush_is_empty():
    driver = InMemoryDriver()
    dispatcher = HookDispatcher()
    payloads = []
    dispatcher.register(
        "before_update", lambda entity, change_set, **_: payloads.append(dict(change_set.payload))
    )
    session = Session(driver, hooks=dispatcher)
    author = author_with_books()
    session.persist(author, flush=True)

    author.books[0].title = "One, revised"
    session.flush()
    writes = len(driver.writes())
    session.flush()

    assert payloads == [{"title": "One, revised"}]
    assert len(driver.writes()) == writes
    assert driver.tables["cm_book"][(1,)]["title"] == "One, revised"


def test_moving_child_to_another_parent_updates_foreign_key():
    driver = InMemoryDriver()
    session = Session(driver)
    first = author_with_books()
    second = CmAuthor(name="Bob")
    session.persist(first, second, flush=True)

    book = first.books[0]
    second.books.add(book)
    session.flush()

    assert book.author is second
    assert driver.tables["cm_book"][(book.pk,)]["author"] == second.pk


def test_failed_commit_rolls_back_and_resets_pending_work():
    driver = InMemoryDriver()
    session = Session(driver)
    ann = CmAuthor(id=5, name="Ann")
    session.persist(ann, CmAuthor(id=5, name="Clone"))

    with pytest.raises(IntegrityError):
        session.flush()

    uow = session.unit_of_work
    assert driver.tables.get("cm_author", {}) == {}
    assert ("rollback", "", 1) in driver.log
    assert not uow.persist_stack and not uow.change_sets and not uow.extra_updates
    assert session.get_identity_map() == {}
    assert uow.get_original_entity_data(ann) is None


def failing_once(message):
    failures = [RuntimeError(message)]

    def handler(entity, **_):
        if failures:
            raise failures.pop()

    return handler


def test_rolled_back_inserts_are_written_when_persisted_again():
    driver = InMemoryDriver()
    dispatcher = HookDispatcher()
    dispatcher.register("before_create", failing_once("book rejected"), model=CmBook)
    session = Session(driver, hooks=dispatcher)
    author = author_with_books()
    session.persist(author)

    with pytest.raises(RuntimeError, match="book rejected"):
        session.flush()

    assert ("insert", "cm_author", 1) in driver.log
    assert driver.tables.get("cm_author", {}) == {}
    assert author.pk is None
    assert session.unit_of_work.get_original_entity_data(author) is None
    assert session.get_identity_map() == {}

    session.persist(author, flush=True)

    assert author.pk is not None
    assert list(driver.tables["cm_author"]) == [(author.pk,)]
    assert [row["author"] for row in driver.tables["cm_book"].values()] == [author.pk, author.pk]


def test_writes_outside_a_transaction_are_kept_after_failure():
    driver = InMemoryDriver()
    dispatcher = HookDispatcher()
    dispatcher.register("before_create", failing_once("book rejected"), model=CmBook)
    session = Session(driver, hooks=dispatcher, config=SessionConfig(implicit_transactions=False))
    author = author_with_books()
    session.persist(author)

    with pytest.raises(RuntimeError):
        session.flush()

    assert author.pk == 1
    assert session.get_by_id(CmAuthor, 1) is author
    assert all(book.pk is None for book in author.books)

    session.flush()

    assert [entry[1] for entry in driver.writes()] == ["cm_author", "cm_book", "cm_book"]
    assert [row["author"] for row in driver.tables["cm_book"].values()] == [1, 1]


def test_pending_update_survives_failed_flush():
    driver = InMemoryDriver()
    dispatcher = HookDispatcher()
    session = Session(driver, hooks=dispatcher)
    author = author_with_books()
    session.persist(author, flush=True)
    dispatcher.register("before_update", failing_once("update rejected"))

    author.name = "Anna"
    with pytest.raises(RuntimeError, match="update rejected"):
        session.flush()
    assert session.unit_of_work.get_original_entity_data(author)["name"] == "Ann"

    session.flush()

    assert driver.tables["cm_author"][(author.pk,)]["name"] == "Anna"


def test_failed_delete_leaves_entity_managed():
    driver = InMemoryDriver()
    dispatcher = HookDispatcher()
    session = Session(driver, hooks=dispatcher)
    author = author_with_books()
    session.persist(author, flush=True)
    book = author.books[0]
    dispatcher.register("before_delete", failing_once("delete rejected"))

    session.remove(book)
    with pytest.raises(RuntimeError, match="delete rejected"):
        session.flush()

    assert session.get_by_id(CmBook, book.pk) is book
    assert (book.pk,) in driver.tables["cm_book"]

    session.remove(book, flush=True)

    assert (book.pk,) not in driver.tables["cm_book"]


def test_caller_transaction_rolls_back_flushed_writes():
    driver = InMemoryDriver()
    session = Session(driver)

    with pytest.raises(RuntimeError):
        with session.transaction():
            session.persist(author_with_books())
            session.flush()
            assert len(driver.tables["cm_book"]) == 2
            raise RuntimeError("abort")

    assert driver.tables.get("cm_book", {}) == {}
    assert driver.tables.get("cm_author", {}) == {}


def test_transaction_block_flushes_before_commit():
    driver = InMemoryDriver()
    session = Session(driver)

    with session.transaction():
        session.persist(CmAuthor(name="Ann"))

    assert driver.log == [
        ("begin", "", 1),
        ("insert", "cm_author", 1),
        ("commit", "", 1),
    ]


def test_orphan_removal_deletes_child_dropped_from_collection():
    driver = InMemoryDriver()
    session = Session(driver)
    shopping = CmList(name="groceries")
    milk, eggs = CmEntry(label="milk"), CmEntry(label="eggs")
    shopping.entries.add(milk, eggs)
    session.persist(shopping, flush=True)

    shopping.entries.remove(milk)
    session.flush()

    assert driver.writes()[-1] == ("delete", "cm_entry", 1)
    assert list(driver.tables["cm_entry"]) == [(2,)]
    assert session.get_by_id(CmEntry, 1) is None


def test_re_adding_child_cancels_orphan_removal():
    driver = InMemoryDriver()
    session = Session(driver)
    shopping = CmList(name="groceries")
    milk = CmEntry(label="milk")
    shopping.entries.add(milk)
    session.persist(shopping, flush=True)
    writes = len(driver.writes())

    shopping.entries.remove(milk)
    shopping.entries.add(milk)
    session.flush()

    assert len(driver.writes()) == writes
    assert milk.owner is shopping


def test_removing_parent_removes_orphan_children():
    driver = InMemoryDriver()
    session = Session(driver)
    shopping = CmList(name="groceries")
    shopping.entries.add(CmEntry(label="milk"))
    session.persist(shopping, flush=True)

    session.remove(shopping, flush=True)

    assert driver.tables["cm_entry"] == {}
    assert driver.tables["cm_list"] == {}
