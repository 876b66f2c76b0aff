import pytest

from emberorm.core import ManyToManyField, Model, StringField
from emberorm.drivers import InMemoryDriver
from emberorm.persistence import InverseCollectionModificationError, Session


class M2mPost(Model):
    title = StringField()
    tags = ManyToManyField("M2mTag")


class M2mTag(Model):
    label = StringField()
    posts = ManyToManyField(M2mPost, mapped_by="tags")


class M2mPerson(Model):
    name = StringField()
    friends = ManyToManyField("M2mPerson")


PIVOT = "m2m_post_m2m_tag"


def saved_post(driver):
    session = Session(driver)
    post = M2mPost(title="Hello")
    post.tags.add(M2mTag(label="python"), M2mTag(label="orm"))
    session.persist(post, flush=True)
    return session, post


def test_pivot_table_named_after_owning_side():
    assert M2mPost.tags.through_table() == PIVOT
    assert M2mTag.posts.through_table() == PIVOT
    assert M2mPost.tags.inversed_by == "posts"


def test_adding_to_owning_side_updates_inverse_side():
    post = M2mPost(title="Hello")
    tag = M2mTag(label="python")

    post.tags.add(tag)

    assert tag.posts.contains(post)
    assert post.tags.is_dirty()
    assert not tag.posts.is_dirty()


def test_flush_inserts_items_then_links_them():
    driver = InMemoryDriver()
    session, post = saved_post(driver)
    python, orm = post.tags.get_items()

    assert [entry[1] for entry in driver.writes()] == ["m2m_tag", "m2m_tag", "m2m_post"]
    assert driver.pivots[PIVOT] == [(post.pk, python.pk), (post.pk, orm.pk)]
    assert not post.tags.is_dirty()


def test_removing_item_unlinks_it():
    driver = InMemoryDriver()
    session, post = saved_post(driver)
    python, orm = post.tags.get_items()

    post.tags.remove(python)
    session.flush()

    assert driver.pivots[PIVOT] == [(post.pk, orm.pk)]
    assert ("unlink", PIVOT, (post.pk, python.pk)) in driver.log
    assert not python.posts.contains(post)
    assert (python.pk,) in driver.tables["m2m_tag"]


def test_collections_load_lazily_from_both_sides():
    driver = InMemoryDriver()
    saved_post(driver)

    session = Session(driver)
    post = session.find_one(M2mPost, 1)
    assert not post.tags.is_initialized()
    assert sorted(tag.label for tag in post.tags.load_items()) == ["orm", "python"]

    tag = session.find_one(M2mTag, {"label": "python"})
    assert tag.posts.load_items() == [post]


def test_inverse_side_cannot_change_while_owning_side_is_not_loaded():
    driver = InMemoryDriver()
    saved_post(driver)

    session = Session(driver)
    tag = session.find_one(M2mTag, {"label": "python"})
    post = tag.posts.load_items()[0]

    with pytest.raises(InverseCollectionModificationError):
        tag.posts.remove(post)


def test_deleting_owner_removes_pivot_rows():
    driver = InMemoryDriver()
    session, post = saved_post(driver)

    session.remove(post, flush=True)

    assert driver.pivots[PIVOT] == []
    assert len(driver.tables["m2m_tag"]) == 2


def test_new_entities_linked_to_each_other_through_self_relation():
    driver = InMemoryDriver()
    session = Session(driver)
    a, b = M2mPerson(name="a"), M2mPerson(name="b")
    a.friends.add(b)
    b.friends.add(a)

    session.persist(a, flush=True)

    assert a.pk is not None and b.pk is not None
    assert sorted(driver.pivots["m2m_person_m2m_person"]) == sorted([(a.pk, b.pk), (b.pk, a.pk)])
    assert b.friends.count() == 1 and b.friends[0] is a
    assert not a.friends.is_dirty() and not b.friends.is_dirty()
