"""
Storage driver protocol consumed by the session and unit of work.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, ContextManager, Dict, List, Mapping, Optional, Protocol, Tuple, Type, TypeVar

from ..core.helpers import is_entity, unwrap_reference

if TYPE_CHECKING:
    from ..core.collection import Collection
    from ..core.fields import Field
    from ..core.model import Model
    from ..persistence.changeset import ChangeSet
    from ..persistence.locking import LockMode

T = TypeVar("T")


class DriverError(RuntimeError):
    """Base error for storage driver failures."""


class IntegrityError(DriverError):
    """Raised when a write would break a key or reference constraint."""


class StorageDriver(Protocol):
    """
    Interface between the unit of work and a backing store.

    Rows exchanged with the session are plain dicts keyed by field name;
    owning to-one relations carry the referenced primary key.
    """

    def persist_change_set(self, change_set: "ChangeSet", ctx: Any = None) -> Any:
        """
        Apply one change set. Returns the generated primary key for inserts
        that produced one, otherwise ``None``.
        """

    def sync_collection(self, collection: "Collection", ctx: Any = None) -> None:
        """
        Write the membership difference between ``collection`` and its
        snapshot to the relation's pivot representation.
        """

    def transaction(self) -> ContextManager[Any]:
        """
        Open a (possibly nested) transaction yielding its context handle.
        """

    def supports_transactions(self) -> bool:
        """
        Whether the store can roll back a group of writes.
        """

    def find(
        self,
        model: Type["Model"],
        where: Mapping[str, Any],
        lock_mode: Optional["LockMode"] = None,
        ctx: Any = None,
    ) -> List[Dict[str, Any]]:
        """
        Return rows of ``model`` matching equality (or ``{"$in": [...]}``)
        criteria.
        """

    def load_collection(self, collection: "Collection", ctx: Any = None) -> List[Dict[str, Any]]:
        """
        Return the rows of the related model that belong in ``collection``.
        """

    def lock_read(self, entity: "Model", mode: "LockMode", ctx: Any = None) -> None:
        """
        Read the entity's row with a row-lock hint.
        """

    def close(self) -> None:
        """
        Release underlying resources. Implementations should be idempotent.
        """

    def run_in_transaction(self, fn: Callable[[Any], T]) -> T:
        """
        Call ``fn(ctx)`` inside :meth:`transaction`, rolling back if it raises.
        """
        with self.transaction() as ctx:
            return fn(ctx)


Criterion = Tuple["Field", str, Any]


def normalize_criteria(model: Type["Model"], where: Mapping[str, Any]) -> List[Criterion]:
    """
    Turn lookup criteria into ``(field, operator, value)`` triples where the
    operator is ``"eq"``, ``"null"`` or ``"in"``. Entities are reduced to
    their primary key.
    """
    meta = model._meta
    criteria: List[Criterion] = []
    for name, value in where.items():
        field = meta.fields.get(name)
        if field is None:
            raise DriverError(f"Unknown field '{name}' on model '{meta.name}'")
        if isinstance(value, Mapping):
            unsupported = set(value) - {"$in"}
            if unsupported:
                raise DriverError(f"Unsupported operator(s) {sorted(unsupported)} for '{name}'")
            criteria.append((field, "in", [_key_value(item) for item in value["$in"]]))
            continue
        value = _key_value(value)
        criteria.append((field, "null" if value is None else "eq", value))
    return criteria


def _key_value(value: Any) -> Any:
    target = unwrap_reference(value)
    if is_entity(target):
        return target.pk
    return target
