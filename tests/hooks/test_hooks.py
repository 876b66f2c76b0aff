import pytest

from emberorm.core import ForeignKey, IntegerField, Model, StringField
from emberorm.drivers import InMemoryDriver
from emberorm.hooks import LIFECYCLE_EVENTS, HookDispatcher, hooks
from emberorm.persistence import Session


@pytest.fixture(autouse=True)
def clear_hooks():
    hooks.clear()
    yield
    hooks.clear()


class HookSample(Model):
    name = StringField(nullable=False)
    age = IntegerField(default=0)


class HookChild(Model):
    label = StringField()
    parent = ForeignKey(HookSample)


def make_session():
    return Session(InMemoryDriver())


def test_hooks_fire_in_order():
    events = []

    for event_name in LIFECYCLE_EVENTS:

        def handler(inst, event=event_name, **ctx):
            events.append((event, inst.name if inst else None))

        hooks.register(event_name, handler)

    session = make_session()
    sample = HookSample(name="Alice", age=21)
    session.persist(sample, flush=True)
    sample.age = 22
    session.flush()
    session.remove(sample, flush=True)

    assert events == [
        ("before_create", "Alice"),
        ("after_create", "Alice"),
        ("after_flush", None),
        ("before_update", "Alice"),
        ("after_update", "Alice"),
        ("after_flush", None),
        ("before_delete", "Alice"),
        ("after_delete", "Alice"),
        ("after_flush", None),
    ]


def test_model_specific_hook_on_delete():
    fired = []

    def before_delete(instance, **context):
        fired.append(("before", instance.name))

    def after_delete(instance, **context):
        fired.append(("after", instance.name))

    HookSample.register_hook("before_delete", before_delete)
    HookSample.register_hook("after_delete", after_delete)

    session = make_session()
    sample = HookSample(name="Bob", age=30)
    session.persist(sample, flush=True)

    to_delete = session.find_one(HookSample, sample.id)
    assert to_delete is sample
    session.remove(to_delete, flush=True)

    assert fired == [("before", "Bob"), ("after", "Bob")]


def test_before_create_changes_reach_payload():
    def normalize(instance, change_set, **context):
        instance.name = instance.name.strip().title()

    HookSample.register_hook("before_create", normalize)

    driver = InMemoryDriver()
    session = Session(driver)
    sample = HookSample(name="  carol ")
    session.persist(sample, flush=True)

    assert driver.tables["hook_sample"][(sample.id,)]["name"] == "Carol"
    assert session.unit_of_work.get_original_entity_data(sample)["name"] == "Carol"


def test_after_create_sees_generated_key_and_resolved_parent():
    seen = []

    def record(instance, change_set, **context):
        seen.append((instance.__class__.__name__, instance.pk, change_set.payload.get("parent")))

    hooks.register("after_create", record)

    session = make_session()
    parent = HookSample(name="Dana")
    child = HookChild(label="first", parent=parent)
    session.persist(child, flush=True)

    assert seen == [("HookSample", 1, None), ("HookChild", 1, 1)]


def test_session_uses_private_dispatcher():
    private = HookDispatcher()
    fired = []
    private.register("after_flush", lambda instance, **context: fired.append(context["session"]))
    hooks.register("after_flush", lambda instance, **context: pytest.fail("global hook fired"))

    session = Session(InMemoryDriver(), hooks=private)
    session.persist(HookSample(name="Eve"), flush=True)

    assert fired == [session]


def test_unknown_event_rejected():
    with pytest.raises(ValueError):
        hooks.register("before_save", lambda instance, **context: None)


def test_global_handlers_run_before_model_handlers():
    dispatcher = HookDispatcher()
    order = []
    dispatcher.register("before_update", lambda instance, **context: order.append("model"), model=HookSample)
    dispatcher.register("before_update", lambda instance, **context: order.append("global"))

    dispatcher.fire("before_update", HookSample(name="Fay"))
    dispatcher.fire("before_update", HookChild(label="loose"))

    assert order == ["global", "model", "global"]
    assert dispatcher.has_handlers("before_update", HookChild)
    assert not dispatcher.has_handlers("after_delete", HookSample)
