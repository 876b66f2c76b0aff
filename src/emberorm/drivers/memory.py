"""
In-memory storage driver.

Tables are dicts keyed by primary key tuples. The driver enforces primary
key uniqueness and owning to-one references (a row may not point at a
missing row, and a referenced row may not be deleted), so write ordering
mistakes fail loudly the same way a foreign-key-checking database would.
"""

from __future__ import annotations

import copy
import itertools
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Generator, Iterator, List, Mapping, Tuple, Type

from ..core.relations import RelationKind, relation_registry
from ..persistence.changeset import ChangeSet, ChangeSetType
from ..persistence.errors import OptimisticLockError
from ..utils import get_logger
from .base import DriverError, IntegrityError, StorageDriver, normalize_criteria

PrimaryKey = Tuple[Any, ...]
Row = Dict[str, Any]


@dataclass
class MemoryTransaction:
    depth: int
    active: bool = True


class InMemoryDriver(StorageDriver):
    """
    Dict-backed driver with nested transactions implemented by snapshots.

    Every operation is appended to ``log`` as ``(operation, table, detail)``
    so callers can inspect the exact write order.
    """

    def __init__(self) -> None:
        self.tables: Dict[str, Dict[PrimaryKey, Row]] = {}
        self.pivots: Dict[str, List[Tuple[Any, Any]]] = {}
        self.log: List[Tuple[str, str, Any]] = []
        self._sequences: Dict[str, Iterator[int]] = {}
        self._snapshots: List[Tuple[Dict[str, Dict[PrimaryKey, Row]], Dict[str, List[Tuple[Any, Any]]]]] = []
        self.logger = get_logger("drivers.memory")

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #
    def persist_change_set(self, change_set: ChangeSet, ctx: Any = None) -> Any:
        if change_set.type is ChangeSetType.CREATE:
            return self._insert(change_set)
        if change_set.type is ChangeSetType.UPDATE:
            self._update(change_set)
        else:
            self._delete(change_set)
        return None

    def _insert(self, change_set: ChangeSet) -> Any:
        meta = change_set.entity._meta
        table = self.tables.setdefault(meta.table, {})
        row: Row = {field.require_name(): None for field in meta.get_fields()}
        row.update(change_set.payload)

        generated = None
        pk_fields = meta.primary_keys
        if len(pk_fields) == 1 and row[pk_fields[0].require_name()] is None:
            generated = self._next_id(meta.table)
            row[pk_fields[0].require_name()] = generated

        key = tuple(row[field.require_name()] for field in pk_fields)
        if key in table:
            raise IntegrityError(f"Duplicate primary key {key!r} in '{meta.table}'")
        self._check_references(change_set.entity.__class__, row)

        table[key] = row
        self.log.append(("insert", meta.table, key[0] if len(key) == 1 else key))
        self.logger.debug("insert into %s %r", meta.table, key)
        return generated

    def _update(self, change_set: ChangeSet) -> None:
        entity = change_set.entity
        meta = entity._meta
        key = tuple(entity.primary_key_values())
        row = self.tables.get(meta.table, {}).get(key)
        if row is None:
            if meta.version_field is not None:
                raise OptimisticLockError.concurrent_update(entity)
            raise DriverError(f"Cannot update missing row {key!r} in '{meta.table}'")

        version_field = meta.version_field
        if version_field is not None and change_set.original is not None:
            expected = change_set.original.get(version_field.require_name())
            if row.get(version_field.require_name()) != expected:
                raise OptimisticLockError.concurrent_update(entity)

        updated = dict(row)
        updated.update(change_set.payload)
        self._check_references(entity.__class__, updated)
        row.update(change_set.payload)
        self.log.append(("update", meta.table, key[0] if len(key) == 1 else key))
        self.logger.debug("update %s %r set %s", meta.table, key, sorted(change_set.payload))

    def _delete(self, change_set: ChangeSet) -> None:
        entity = change_set.entity
        meta = entity._meta
        key = tuple(entity.primary_key_values())
        table = self.tables.get(meta.table, {})
        if key not in table:
            return

        pk_value = key[0] if len(key) == 1 else key
        for model, field in self._referencing_fields(entity.__class__):
            rows = self.tables.get(model._meta.table, {}).values()
            if any(row.get(field.require_name()) == pk_value for row in rows):
                raise IntegrityError(
                    f"Cannot delete {meta.name}[{pk_value!r}]: still referenced by "
                    f"{model.__name__}.{field.name}"
                )

        for pivot, side in self._pivot_sides(entity.__class__):
            pairs = self.pivots.get(pivot, [])
            self.pivots[pivot] = [pair for pair in pairs if pair[side] != pk_value]

        del table[key]
        self.log.append(("delete", meta.table, pk_value))
        self.logger.debug("delete from %s %r", meta.table, key)

    def sync_collection(self, collection, ctx: Any = None) -> None:
        field = collection.field
        pivot = field.through_table()
        pairs = self.pivots.setdefault(pivot, [])
        owner_pk = collection.owner.pk
        current = collection.get_items()
        snapshot = collection.get_snapshot()
        target_table = field.require_remote_model()._meta.table

        for item in snapshot:
            if not any(item is member for member in current):
                pair = (owner_pk, item.pk)
                if pair in pairs:
                    pairs.remove(pair)
                    self.log.append(("unlink", pivot, pair))

        for item in current:
            if any(item is member for member in snapshot):
                continue
            pair = (owner_pk, item.pk)
            if (item.pk,) not in self.tables.get(target_table, {}):
                raise IntegrityError(f"Cannot link {pivot} {pair!r}: target row does not exist")
            if pair not in pairs:
                pairs.append(pair)
                self.log.append(("link", pivot, pair))

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #
    def find(
        self,
        model: Type,
        where: Mapping[str, Any],
        lock_mode=None,
        ctx: Any = None,
    ) -> List[Row]:
        criteria = normalize_criteria(model, where)
        rows = []
        for row in self.tables.get(model._meta.table, {}).values():
            if all(self._matches(row, field, operator, value) for field, operator, value in criteria):
                rows.append(dict(row))
        if lock_mode is not None:
            self.log.append(("lock", model._meta.table, lock_mode.value))
        return rows

    def load_collection(self, collection, ctx: Any = None) -> List[Row]:
        field = collection.field
        owner_pk = collection.owner.pk
        remote = field.require_remote_model()
        if field.relation_type is RelationKind.ONE_TO_MANY:
            return self.find(remote, {field.mapped_by: owner_pk})

        pairs = self.pivots.get(field.through_table(), [])
        if field.owner:
            keys = [target for owner, target in pairs if owner == owner_pk]
        else:
            keys = [owner for owner, target in pairs if target == owner_pk]
        table = self.tables.get(remote._meta.table, {})
        return [dict(table[(key,)]) for key in keys if (key,) in table]

    def lock_read(self, entity, mode, ctx: Any = None) -> None:
        meta = entity._meta
        key = tuple(entity.primary_key_values())
        if key not in self.tables.get(meta.table, {}):
            raise DriverError(f"Cannot lock missing row {key!r} in '{meta.table}'")
        self.log.append(("lock", meta.table, mode.value))

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #
    def supports_transactions(self) -> bool:
        return True

    @contextmanager
    def transaction(self) -> Generator[MemoryTransaction, None, None]:
        self._snapshots.append((copy.deepcopy(self.tables), copy.deepcopy(self.pivots)))
        transaction = MemoryTransaction(depth=len(self._snapshots))
        self.log.append(("begin", "", transaction.depth))
        try:
            yield transaction
        except Exception:
            self.tables, self.pivots = self._snapshots.pop()
            self.log.append(("rollback", "", transaction.depth))
            raise
        else:
            self._snapshots.pop()
            self.log.append(("commit", "", transaction.depth))
        finally:
            transaction.active = False

    def close(self) -> None:
        self._snapshots.clear()

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def writes(self) -> List[Tuple[str, str, Any]]:
        """Return the logged inserts, updates and deletes in execution order."""
        return [entry for entry in self.log if entry[0] in ("insert", "update", "delete")]

    def _next_id(self, table: str) -> int:
        sequence = self._sequences.setdefault(table, itertools.count(1))
        existing = self.tables.get(table, {})
        value = next(sequence)
        while (value,) in existing:
            value = next(sequence)
        return value

    @staticmethod
    def _matches(row: Row, field, operator: str, value: Any) -> bool:
        current = row.get(field.require_name())
        if operator == "null":
            return current is None
        if operator == "in":
            return current in value
        if not field.is_relation:
            value = field.to_python(value)
        return current == value

    def _check_references(self, model: Type, row: Row) -> None:
        for relation in model._meta.relations.values():
            if not relation.is_owning_to_one:
                continue
            value = row.get(relation.require_name())
            if value is None:
                continue
            target_table = relation.require_remote_model()._meta.table
            if (value,) not in self.tables.get(target_table, {}):
                raise IntegrityError(
                    f"{model.__name__}.{relation.name} references missing "
                    f"{relation.target_name}[{value!r}]"
                )

    @staticmethod
    def _referencing_fields(model: Type):
        for candidate in relation_registry.models.values():
            for relation in candidate._meta.relations.values():
                if relation.is_owning_to_one and relation.remote_model is model:
                    yield candidate, relation

    @staticmethod
    def _pivot_sides(model: Type):
        for candidate in relation_registry.models.values():
            for relation in candidate._meta.many_to_many:
                if not relation.owner:
                    continue
                if candidate is model:
                    yield relation.through_table(), 0
                if relation.remote_model is model:
                    yield relation.through_table(), 1
