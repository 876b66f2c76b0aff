"""
Unit of Work tracking managed entities and flushing their changes.

The unit of work owns the identity map, the baseline snapshots used for
diffing and the pending persist/remove/orphan stacks. ``commit`` turns all
of that into ordered change sets and applies them through the session's
storage driver.
"""

from __future__ import annotations

from collections import OrderedDict, deque
from typing import TYPE_CHECKING, Any, Deque, Dict, List, Optional, Set, Tuple

from ..core.collection import Collection
from ..core.helpers import diff_entities, extract_pk, is_entity, prepare_entity, unwrap_reference
from ..core.model import Model
from ..core.relations import Cascade, RelationKind, relation_registry
from ..utils import get_logger, time_call
from .changeset import ChangeSet, ChangeSetType, ExtraUpdate
from .changeset_computer import ChangeSetComputer
from .changeset_persister import ChangeSetPersister
from .commit_order import CommitOrderCalculator
from .errors import (
    EntityNotManagedError,
    NotVersionedError,
    OptimisticLockError,
    TransactionRequiredError,
)
from .identifier import EntityIdentifier
from .identity_map import IdentityMap
from .locking import LockMode

if TYPE_CHECKING:
    from .session import Session


_TYPE_ORDER = {ChangeSetType.CREATE: 0, ChangeSetType.UPDATE: 1, ChangeSetType.DELETE: 2}

# entity, copy of its field values, baseline snapshot (None for new entities)
_SavedState = Tuple[Model, Dict[str, Any], Optional[Dict[str, Any]]]


class UnitOfWork:
    """
    Tracks new, changed and removed entities of one session.

    Not safe for concurrent use; callers serialize access.
    """

    def __init__(self, session: "Session") -> None:
        self.session = session
        self.identity_map = IdentityMap()
        self.original_entity_data: Dict[str, Dict[str, Any]] = {}
        self.identifier_map: Dict[str, EntityIdentifier] = {}
        self.persist_stack: "OrderedDict[str, Model]" = OrderedDict()
        self.remove_stack: "OrderedDict[str, Model]" = OrderedDict()
        self.orphan_remove_stack: "OrderedDict[str, Model]" = OrderedDict()
        self.change_sets: List[ChangeSet] = []
        self.collection_updates: List[Collection] = []
        self.extra_updates: Deque[ExtraUpdate] = deque()
        self._pending_creates: Dict[str, ChangeSet] = {}
        self._removed_data: Dict[str, Dict[str, Any]] = {}
        self._saved_states: Dict[str, _SavedState] = {}
        self._synced_collections: List[Tuple[Collection, List[Any]]] = []
        self.change_set_computer = ChangeSetComputer(
            self.original_entity_data, self.identifier_map, self.collection_updates
        )
        self.change_set_persister = ChangeSetPersister(session.driver, self.identifier_map)
        self.logger = get_logger("persistence.unit_of_work")

    # ------------------------------------------------------------------ #
    # Identity registry
    # ------------------------------------------------------------------ #
    def merge(self, entity: Model, visited: Optional[Set[str]] = None, merge_data: bool = True) -> None:
        entity._session = self.session
        if not entity.has_primary_key():
            return

        self.identity_map.add(entity)
        if merge_data and entity.is_initialized():
            self.original_entity_data[entity._token] = prepare_entity(entity)

        self._cascade(entity, Cascade.MERGE, set() if visited is None else visited)

    def get_by_id(self, entity_name: str, pk: Any) -> Optional[Model]:
        values = list(pk) if isinstance(pk, (list, tuple)) else [pk]
        return self.identity_map.get(entity_name, values)

    def try_get_by_id(self, entity_name: str, where: Any) -> Optional[Model]:
        meta = relation_registry.get_model(entity_name)._meta
        pk = extract_pk(meta, where)
        if pk is None:
            return None
        return self.get_by_id(entity_name, pk)

    def get_identity_map(self) -> Dict[str, Model]:
        return self.identity_map.as_dict()

    def get_original_entity_data(self, entity: Model) -> Optional[Dict[str, Any]]:
        return self.original_entity_data.get(entity._token)

    def unset_identity(self, entity: Model) -> None:
        self.identity_map.remove(entity)
        self.identifier_map.pop(entity._token, None)
        self.original_entity_data.pop(entity._token, None)

    def clear(self) -> None:
        self.identity_map.clear()
        self.original_entity_data.clear()
        self._post_commit_cleanup()

    # ------------------------------------------------------------------ #
    # Cascade walker
    # ------------------------------------------------------------------ #
    def persist(
        self, entity: Model, visited: Optional[Set[str]] = None, check_remove_stack: bool = False
    ) -> None:
        token = entity._token
        if token in self.persist_stack:
            return
        if check_remove_stack and (token in self.remove_stack or token in self.orphan_remove_stack):
            return

        entity._session = self.session

        if not entity.has_primary_key():
            self.identifier_map.setdefault(token, EntityIdentifier())

        self.persist_stack[token] = entity
        if self.remove_stack.pop(token, None) is not None:
            self._restore_removed(entity)
        self._cascade(entity, Cascade.PERSIST, set() if visited is None else visited, check_remove_stack)

    def remove(self, entity: Model, visited: Optional[Set[str]] = None) -> None:
        token = entity._token
        if token in self.remove_stack:
            return

        if entity.has_primary_key():
            self.remove_stack[token] = entity

        self.persist_stack.pop(token, None)
        self.orphan_remove_stack.pop(token, None)
        if token in self.original_entity_data:
            self._removed_data[token] = self.original_entity_data[token]
        self.unset_identity(entity)
        self._cascade(entity, Cascade.REMOVE, set() if visited is None else visited)

    def schedule_orphan_removal(self, entity: Model) -> None:
        self.orphan_remove_stack[entity._token] = entity

    def cancel_orphan_removal(self, entity: Model) -> None:
        self.orphan_remove_stack.pop(entity._token, None)

    def _restore_removed(self, entity: Model) -> None:
        data = self._removed_data.pop(entity._token, None)
        if data is None:
            return
        self.original_entity_data[entity._token] = data
        self.identity_map.add(entity)

    def _cascade(
        self, entity: Model, kind: Cascade, visited: Set[str], check_remove_stack: bool = False
    ) -> None:
        if entity._token in visited:
            return
        visited.add(entity._token)

        if kind is Cascade.PERSIST:
            self.persist(entity, visited, check_remove_stack)
        elif kind is Cascade.MERGE:
            self.merge(entity, visited)
        elif kind is Cascade.REMOVE:
            self.remove(entity, visited)

        for relation in entity._meta.relations.values():
            self._cascade_reference(entity, relation, kind, visited, check_remove_stack)

    def _cascade_reference(
        self, entity: Model, relation, kind: Cascade, visited: Set[str], check_remove_stack: bool
    ) -> None:
        self._fix_missing_reference(entity, relation)
        if not self._should_cascade(relation, kind):
            return

        reference = unwrap_reference(getattr(entity, relation.require_name()))
        if reference is None:
            return

        relation_type = relation.relation_type
        if relation_type in (RelationKind.MANY_TO_ONE, RelationKind.ONE_TO_ONE):
            if is_entity(reference):
                self._cascade(reference, kind, visited, check_remove_stack)
        elif relation_type in (RelationKind.ONE_TO_MANY, RelationKind.MANY_TO_MANY):
            # Only persisting needs the items themselves to be loaded.
            fully = kind is Cascade.PERSIST
            if isinstance(reference, Collection) and reference.is_initialized(fully):
                for item in reference.get_items():
                    self._cascade(item, kind, visited, check_remove_stack)

    @staticmethod
    def _should_cascade(relation, kind: Cascade) -> bool:
        if kind is Cascade.REMOVE and relation.orphan_removal:
            return True
        return relation.cascades(kind)

    def _fix_missing_reference(self, entity: Model, relation) -> None:
        name = relation.require_name()
        reference = unwrap_reference(entity._field_values.get(name))
        if reference is None:
            return

        if relation.is_to_one and not is_entity(reference):
            target = self.session.get_reference(
                relation.require_remote_model(), reference, wrapped=relation.wrapped_reference
            )
            entity._field_values[name] = target
        elif relation.is_to_many and isinstance(reference, (list, tuple)):
            collection = relation.new_collection(entity)
            entity._field_values[name] = collection
            collection.set(list(reference))

    # ------------------------------------------------------------------ #
    # Change set computation
    # ------------------------------------------------------------------ #
    def compute_change_sets(self) -> None:
        self.change_sets.clear()

        for entity in self.identity_map.values():
            token = entity._token
            if token in self.remove_stack or token in self.orphan_remove_stack:
                continue
            self.persist(entity, set(), True)

        while self.persist_stack:
            _, entity = self.persist_stack.popitem(last=False)
            self._find_new_entities(entity, set())

        for entity in list(self.orphan_remove_stack.values()):
            self.remove(entity)

        for entity in self.remove_stack.values():
            meta = entity._meta
            self.change_sets.append(
                ChangeSet(type=ChangeSetType.DELETE, name=meta.name, collection=meta.table, entity=entity)
            )

    def _find_new_entities(self, entity: Model, visited: Set[str]) -> None:
        token = entity._token
        if token in visited:
            return
        visited.add(token)

        if not entity.is_initialized():
            return

        self._saved_states.setdefault(
            token, (entity, dict(entity._field_values), self.original_entity_data.get(token))
        )

        if not entity.has_primary_key():
            self.identifier_map.setdefault(token, EntityIdentifier())

        for relation in entity._meta.relations.values():
            reference = unwrap_reference(entity._field_values.get(relation.require_name()))
            self._process_reference(entity, relation, reference, visited)

        change_set = self.change_set_computer.compute_change_set(entity)
        if change_set is not None:
            self.change_sets.append(change_set)
            self.persist_stack.pop(token, None)
            self.original_entity_data[token] = prepare_entity(entity)

    def _process_reference(self, parent: Model, relation, reference: Any, visited: Set[str]) -> None:
        relation_type = relation.relation_type
        if relation_type in (RelationKind.MANY_TO_ONE, RelationKind.ONE_TO_ONE):
            if is_entity(reference) and reference._token not in self.original_entity_data:
                self._find_new_entities(reference, visited)
        elif relation_type is RelationKind.MANY_TO_MANY:
            if (
                isinstance(reference, Collection)
                and reference.is_initialized()
                and reference.is_dirty()
            ):
                self._process_to_many_reference(parent, relation, reference, visited)

    def _process_to_many_reference(
        self, parent: Model, relation, collection: Collection, visited: Set[str]
    ) -> None:
        unsaved = [
            item for item in collection.get_items() if item._token not in self.original_entity_data
        ]
        if any(item._token in visited for item in unsaved):
            # The collection points back into the graph being discovered; insert
            # the parent with an empty collection and restore it afterwards.
            name = relation.require_name()
            self.extra_updates.append(ExtraUpdate(parent, name, collection))
            parent._field_values[name] = relation.new_collection(parent)
            self.logger.debug(
                "Deferred self-referencing collection %s.%s", parent.__class__.__name__, name
            )
            return

        for item in unsaved:
            self._find_new_entities(item, visited)

    # ------------------------------------------------------------------ #
    # Commit
    # ------------------------------------------------------------------ #
    def commit(self) -> None:
        run_in_transaction = False
        try:
            self.compute_change_sets()
            if not self.change_sets and not self.collection_updates and not self.extra_updates:
                return

            self._reorder_change_sets()
            session = self.session
            driver = session.driver
            run_in_transaction = (
                not session.is_in_transaction()
                and driver.supports_transactions()
                and session.config.implicit_transactions
            )
            self.logger.debug(
                "Committing %d change set(s), %d collection update(s)",
                len(self.change_sets),
                len(self.collection_updates),
                extra={"implicit_transaction": run_in_transaction},
            )
            with time_call(
                "unit_of_work.commit",
                self.logger,
                threshold_ms=session.config.slow_commit_ms,
                change_sets=len(self.change_sets),
            ):
                if run_in_transaction:
                    driver.run_in_transaction(self._persist_to_database)
                else:
                    self._persist_to_database(session.get_transaction_context())
        except Exception:
            self._restore_failed_commit(rolled_back=run_in_transaction)
            raise
        finally:
            self._post_commit_cleanup()

    def _persist_to_database(self, ctx: Any = None) -> None:
        for change_set in list(self.change_sets):
            self._commit_change_set(change_set, ctx)

        while self.extra_updates:
            extra = self.extra_updates.popleft()
            setattr(extra.entity, extra.field, extra.value)
            change_set = self.change_set_computer.compute_change_set(extra.entity)
            if change_set is not None:
                self._commit_change_set(change_set, ctx)

        for collection in self.collection_updates:
            self._synced_collections.append((collection, collection.get_snapshot()))
            self.session.driver.sync_collection(collection, ctx)
            collection.take_snapshot()

    def _commit_change_set(self, change_set: ChangeSet, ctx: Any) -> None:
        if change_set.type is ChangeSetType.CREATE:
            self._defer_unwritten_references(change_set)

        event = change_set.type.value
        self._run_hooks(f"before_{event}", change_set, change_set.payload)
        self.change_set_persister.persist_to_database(change_set, ctx)

        if change_set.type is ChangeSetType.DELETE:
            self.unset_identity(change_set.entity)
        else:
            self.merge(change_set.entity)

        self._run_hooks(f"after_{event}", change_set)

    def _defer_unwritten_references(self, change_set: ChangeSet) -> None:
        entity = change_set.entity
        for relation in entity._meta.relations.values():
            if not relation.is_owning_to_one:
                continue
            name = relation.require_name()
            value = entity._field_values.get(name)
            target = unwrap_reference(value)
            if not is_entity(target):
                continue
            pending = self._pending_creates.get(target._token)
            if pending is None or pending.persisted:
                continue
            self.extra_updates.append(ExtraUpdate(entity, name, value))
            entity._field_values[name] = None
            change_set.payload.pop(name, None)
            self.logger.debug(
                "Deferred %s.%s until %s is inserted", change_set.name, name, pending.name
            )

    def _run_hooks(self, event: str, change_set: ChangeSet, payload: Optional[Dict[str, Any]] = None) -> None:
        entity = change_set.entity
        hooks = self.session.hooks
        if not hooks.has_handlers(event, entity.__class__):
            return

        before = prepare_entity(entity)
        hooks.fire(event, entity, session=self.session, change_set=change_set)
        if payload is not None:
            changes = diff_entities(before, prepare_entity(entity))
            payload.update(self.change_set_computer.payload_values(changes))

    def _reorder_change_sets(self) -> None:
        commit_order = self._get_commit_order()
        positions = {name: index for index, name in enumerate(commit_order)}
        last = len(commit_order) - 1

        def sort_key(item):
            index, change_set = item
            rank = positions[change_set.name]
            if change_set.type is ChangeSetType.DELETE:
                rank = last - rank
            return (_TYPE_ORDER[change_set.type], rank, index)

        ordered = [change_set for _, change_set in sorted(enumerate(self.change_sets), key=sort_key)]
        self.change_sets[:] = ordered
        self._pending_creates = {
            change_set.entity._token: change_set
            for change_set in ordered
            if change_set.type is ChangeSetType.CREATE
        }

    def _get_commit_order(self) -> List[str]:
        calculator = CommitOrderCalculator()
        models: Dict[str, type] = {}
        for change_set in self.change_sets:
            models.setdefault(change_set.name, change_set.entity.__class__)
        for name in models:
            calculator.add_node(name)

        for name in reversed(list(models)):
            for relation in models[name]._meta.relations.values():
                target = relation.target_name
                if not calculator.has_node(target) or not relation.is_owning_to_one:
                    continue
                calculator.add_dependency(target, name, 0 if relation.nullable else 1)

        order = calculator.sort()
        self.logger.debug("Commit order: %s", " -> ".join(order))
        return order

    def _post_commit_cleanup(self) -> None:
        self.identifier_map.clear()
        self.persist_stack.clear()
        self.remove_stack.clear()
        self.orphan_remove_stack.clear()
        self.change_sets.clear()
        self.collection_updates.clear()
        self.extra_updates.clear()
        self._pending_creates = {}
        self._removed_data.clear()
        self._saved_states.clear()
        self._synced_collections.clear()

    def _restore_failed_commit(self, rolled_back: bool) -> None:
        """
        Put entities back into the state they had before a failed commit.

        Writes undone by the implicit transaction count as never executed.
        Entities whose writes reached the store keep their new state, so a
        later flush only repeats what is still missing.
        """
        kept = set()
        if not rolled_back:
            kept = {
                change_set.entity._token for change_set in self.change_sets if change_set.persisted
            }

        for extra in self.extra_updates:
            extra.entity._field_values[extra.field] = extra.value

        restored = 0
        for token, (entity, values, snapshot) in self._saved_states.items():
            if token in kept:
                continue
            if snapshot is None and entity in self.identity_map:
                self.identity_map.remove(entity)
            entity._field_values.clear()
            entity._field_values.update(values)
            if snapshot is None:
                self.original_entity_data.pop(token, None)
            else:
                self.original_entity_data[token] = snapshot
            restored += 1

        for change_set in self.change_sets:
            if change_set.type is ChangeSetType.DELETE and change_set.entity._token not in kept:
                self._restore_removed(change_set.entity)

        if rolled_back:
            for collection, snapshot in self._synced_collections:
                collection.reset_snapshot(snapshot)

        self.logger.debug(
            "Commit failed; restored %d entity state(s)", restored, extra={"rolled_back": rolled_back}
        )

    # ------------------------------------------------------------------ #
    # Locking
    # ------------------------------------------------------------------ #
    def lock(self, entity: Model, mode: LockMode, version: Any = None) -> None:
        if self.get_by_id(entity.__class__.__name__, entity.primary_key_values()) is None:
            raise EntityNotManagedError.for_entity(entity)

        # LockMode.NONE only checks that the entity is managed.
        if mode is LockMode.OPTIMISTIC:
            self._lock_optimistic(entity, version)
        elif mode.is_pessimistic:
            self._lock_pessimistic(entity, mode)

    def _lock_pessimistic(self, entity: Model, mode: LockMode) -> None:
        if not self.session.is_in_transaction():
            raise TransactionRequiredError.for_lock()
        self.session.driver.lock_read(entity, mode, self.session.get_transaction_context())

    def _lock_optimistic(self, entity: Model, version: Any) -> None:
        version_field = entity._meta.version_field
        if version_field is None:
            raise NotVersionedError.for_model(entity.__class__)
        if version is None:
            return
        if not entity.is_initialized():
            entity.init()

        current = entity._field_values.get(version_field.require_name())
        if current != version:
            raise OptimisticLockError.version_mismatch(entity, version, current)
