import pytest

from emberorm.core import ForeignKey, ManyToManyField, Model, StringField, VersionField
from emberorm.core.helpers import prepare_entity
from emberorm.drivers import InMemoryDriver
from emberorm.persistence import ChangeSetType, EntityIdentifier, PersistenceError
from emberorm.persistence.changeset_computer import ChangeSetComputer
from emberorm.persistence.changeset_persister import ChangeSetPersister


class CsAuthor(Model):
    name = StringField()


class CsTag(Model):
    label = StringField()


class CsPost(Model):
    title = StringField()
    author = ForeignKey(CsAuthor)
    version = VersionField()
    tags = ManyToManyField(CsTag)


def make_computer(originals=None, identifiers=None, collections=None):
    return ChangeSetComputer(
        {} if originals is None else originals,
        {} if identifiers is None else identifiers,
        [] if collections is None else collections,
    )


def test_create_payload_swaps_unsaved_reference_for_identifier():
    identifiers = {}
    author = CsAuthor(name="Ann")
    post = CsPost(title="Hello", author=author)

    change_set = make_computer(identifiers=identifiers).compute_change_set(post)

    assert change_set.type is ChangeSetType.CREATE
    assert change_set.name == "CsPost"
    assert change_set.collection == CsPost._meta.table
    assert set(change_set.payload) == {"title", "author"}
    assert isinstance(change_set.payload["author"], EntityIdentifier)
    assert identifiers[author._token] is change_set.payload["author"]
    assert change_set.original is None


def test_create_payload_uses_pk_of_saved_reference():
    author = CsAuthor(id=4, name="Ann")
    post = CsPost(title="Hello", author=author)

    change_set = make_computer().compute_change_set(post)

    assert change_set.payload["author"] == 4


def test_update_payload_holds_only_changed_fields():
    author = CsAuthor(id=1, name="Ann")
    post = CsPost(id=2, title="Hello", author=author)
    originals = {post._token: prepare_entity(post)}

    post.title = "Goodbye"
    change_set = make_computer(originals=originals).compute_change_set(post)

    assert change_set.type is ChangeSetType.UPDATE
    assert change_set.payload == {"title": "Goodbye"}
    assert change_set.original["title"] == "Hello"
    assert change_set.original is not originals[post._token]


def test_unchanged_entity_yields_no_change_set():
    post = CsPost(id=2, title="Hello", author=CsAuthor(id=1, name="Ann"))
    originals = {post._token: prepare_entity(post)}

    assert make_computer(originals=originals).compute_change_set(post) is None


def test_dirty_owning_collection_is_queued_once():
    collections = []
    post = CsPost(id=2, title="Hello", author=CsAuthor(id=1, name="Ann"))
    originals = {post._token: prepare_entity(post)}
    post.tags.add(CsTag(id=1, label="python"))

    computer = make_computer(originals=originals, collections=collections)
    assert computer.compute_change_set(post) is None
    computer.compute_change_set(post)

    assert collections == [post.tags]


def test_persister_assigns_generated_key_and_resolves_identifier():
    driver = InMemoryDriver()
    identifiers = {}
    author = CsAuthor(name="Ann")
    identifier = identifiers.setdefault(author._token, EntityIdentifier())
    change_set = make_computer(identifiers=identifiers).compute_change_set(author)

    ChangeSetPersister(driver, identifiers).persist_to_database(change_set)

    assert change_set.persisted
    assert author.pk == 1
    assert identifier.get_value() == 1
    assert driver.tables[CsAuthor._meta.table][(1,)]["name"] == "Ann"


def test_persister_versions_creates_and_updates():
    driver = InMemoryDriver()
    identifiers = {}
    originals = {}
    computer = make_computer(originals=originals, identifiers=identifiers)
    persister = ChangeSetPersister(driver, identifiers)

    author = CsAuthor(name="Ann")
    post = CsPost(title="Hello", author=author)
    identifiers[author._token] = EntityIdentifier()
    post_created = computer.compute_change_set(post)
    persister.persist_to_database(computer.compute_change_set(author))
    persister.persist_to_database(post_created)

    assert post.version == 1
    assert post_created.payload["author"] == author.pk

    originals[post._token] = prepare_entity(post)
    post.title = "Goodbye"
    update = computer.compute_change_set(post)
    persister.persist_to_database(update)

    assert update.payload == {"title": "Goodbye", "version": 2}
    assert post.version == 2
    assert driver.tables[CsPost._meta.table][(post.pk,)]["version"] == 2


def test_persister_rejects_unresolved_identifier():
    identifiers = {}
    post = CsPost(title="Hello", author=CsAuthor(name="Ann"))
    change_set = make_computer(identifiers=identifiers).compute_change_set(post)

    with pytest.raises(PersistenceError, match="no primary key"):
        ChangeSetPersister(InMemoryDriver(), identifiers).persist_to_database(change_set)
    assert not change_set.persisted
