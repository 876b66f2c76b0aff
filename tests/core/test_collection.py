import pytest

from emberorm.core import Collection, ForeignKey, ManyToManyField, Model, OneToMany, RelationshipError, StringField
from emberorm.drivers import InMemoryDriver
from emberorm.persistence import EntityNotManagedError, NotAnEntityError, Session


class ColShelf(Model):
    name = StringField()
    books = OneToMany("ColBook", mapped_by="shelf")


class ColLabel(Model):
    text = StringField()


class ColBook(Model):
    title = StringField()
    shelf = ForeignKey(ColShelf, nullable=True)
    labels = ManyToManyField(ColLabel)


def test_new_entity_has_initialized_empty_collections():
    shelf = ColShelf(name="fiction")
    assert isinstance(shelf.books, Collection)
    assert shelf.books.is_initialized()
    assert len(shelf.books) == 0


def test_reference_collection_must_be_loaded_first():
    shelf = ColShelf._reference(1)
    assert not shelf.books.is_initialized()
    with pytest.raises(RelationshipError, match="not initialized"):
        shelf.books.get_items()
    with pytest.raises(EntityNotManagedError):
        shelf.books.init()


def test_add_sets_back_reference_and_skips_duplicates():
    shelf = ColShelf(name="fiction")
    book = ColBook(title="Emma")

    shelf.books.add(book, book)

    assert shelf.books.get_items() == [book]
    assert book.shelf is shelf
    assert book in shelf.books
    assert [item.title for item in shelf.books] == ["Emma"]


def test_remove_clears_back_reference():
    shelf = ColShelf(name="fiction")
    book = ColBook(title="Emma")
    shelf.books.add(book)

    shelf.books.remove(book)

    assert shelf.books.count() == 0
    assert book.shelf is None


def test_add_rejects_non_entities():
    shelf = ColShelf(name="fiction")
    with pytest.raises(NotAnEntityError):
        shelf.books.add("Emma")
    with pytest.raises(TypeError):
        shelf.books.add(42)


def test_set_replaces_contents():
    shelf = ColShelf(name="fiction")
    old, new = ColBook(title="Old"), ColBook(title="New")
    shelf.books.add(old)

    shelf.books.set([new])

    assert shelf.books.get_items() == [new]
    assert old.shelf is None
    assert new.shelf is shelf


def test_only_owning_side_becomes_dirty():
    shelf = ColShelf(name="fiction")
    book = ColBook(title="Emma")

    shelf.books.add(book)
    book.labels.add(ColLabel(text="classic"))

    assert not shelf.books.is_dirty()
    assert book.labels.is_dirty()
    assert book.labels.get_snapshot() == []

    book.labels.take_snapshot()
    assert not book.labels.is_dirty()
    assert len(book.labels.get_snapshot()) == 1


def test_hydrate_replaces_items_and_marks_clean():
    book = ColBook(title="Emma")
    labels = [ColLabel(id=1, text="a"), ColLabel(id=2, text="b")]
    book.labels.add(ColLabel(text="stale"))

    book.labels.hydrate(labels)

    assert book.labels.get_items() == labels
    assert book.labels.get_identifiers() == [1, 2]
    assert not book.labels.is_dirty()


def test_assigned_list_is_wrapped_when_persisted():
    driver = InMemoryDriver()
    session = Session(driver)
    shelf = ColShelf(name="fiction")
    book = ColBook(title="Emma")

    shelf.books = [book]
    session.persist(shelf, flush=True)

    assert isinstance(shelf.books, Collection)
    assert book.shelf is shelf
    assert driver.tables["col_book"][(book.pk,)]["shelf"] == shelf.pk


def test_loaded_collection_is_fully_initialized_after_load():
    driver = InMemoryDriver()
    shelf = ColShelf(name="fiction")
    shelf.books.add(ColBook(title="Emma"), ColBook(title="Persuasion"))
    Session(driver).persist(shelf, flush=True)

    session = Session(driver)
    loaded = session.find_one(ColShelf, shelf.pk)
    titles = [book.title for book in loaded.books.load_items()]

    assert titles == ["Emma", "Persuasion"]
    assert loaded.books.is_initialized(fully=True)
    assert all(book.shelf is loaded for book in loaded.books)
