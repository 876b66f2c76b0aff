"""
Errors raised by the unit of work and the objects it manages.
"""

from __future__ import annotations

from typing import Any


def _describe(entity: Any) -> str:
    name = entity.__class__.__name__
    try:
        pk = entity.serialized_primary_key()
    except AttributeError:
        return name
    return f"{name}[{pk}]"


class PersistenceError(RuntimeError):
    """Base class for unit of work failures."""


class EntityNotManagedError(PersistenceError):
    @classmethod
    def for_entity(cls, entity: Any) -> "EntityNotManagedError":
        return cls(f"Entity {_describe(entity)} is not managed by the session.")


class EntityNotFoundError(PersistenceError):
    @classmethod
    def for_reference(cls, entity: Any) -> "EntityNotFoundError":
        return cls(f"Entity {_describe(entity)} could not be loaded; no matching row exists.")


class NotAnEntityError(PersistenceError, TypeError):
    @classmethod
    def for_collection_item(cls, owner: Any, relation_name: str, item: Any) -> "NotAnEntityError":
        return cls(
            f"Entity of type {owner.__class__.__name__} expects only entities in "
            f"'{relation_name}' collection, {item!r} given."
        )

    @classmethod
    def for_value(cls, value: Any) -> "NotAnEntityError":
        return cls(f"Expected a model instance, {value!r} given.")


class InverseCollectionModificationError(PersistenceError):
    @classmethod
    def for_relation(cls, owner: Any, relation_name: str) -> "InverseCollectionModificationError":
        return cls(
            f"Cannot modify inverse side of many-to-many collection "
            f"{owner.__class__.__name__}.{relation_name} while its owning side is not "
            "initialized; modify the owning collection instead."
        )


class TransactionRequiredError(PersistenceError):
    @classmethod
    def for_lock(cls) -> "TransactionRequiredError":
        return cls("An open transaction is required for pessimistic locking.")


class NotVersionedError(PersistenceError):
    @classmethod
    def for_model(cls, model: type) -> "NotVersionedError":
        return cls(f"Cannot obtain optimistic lock on unversioned entity {model.__name__}.")


class OptimisticLockError(PersistenceError):
    @classmethod
    def version_mismatch(cls, entity: Any, expected: Any, actual: Any) -> "OptimisticLockError":
        return cls(
            f"The optimistic lock failed, version {expected!r} was expected, "
            f"but is actually {actual!r} for {_describe(entity)}."
        )

    @classmethod
    def concurrent_update(cls, entity: Any) -> "OptimisticLockError":
        return cls(
            f"The optimistic lock on entity {_describe(entity)} failed; "
            "the row was changed or removed by another transaction."
        )
