"""
Lazily loadable relation collections for to-many relations.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable, Iterator, List, Optional

from .helpers import is_entity, unwrap_reference
from .relations import RelationKind, RelationshipError

if TYPE_CHECKING:
    from .relations import ToManyField


class Collection:
    """
    Ordered set of related entities attached to an owner and one relation.

    The collection keeps a snapshot of its last synchronized membership and a
    dirty flag. Only the owning side of a relation is ever marked dirty, so
    only owning collections are synchronized by the unit of work.
    """

    def __init__(
        self,
        owner: Any,
        field: "ToManyField",
        items: Optional[Iterable[Any]] = None,
        initialized: bool = True,
    ) -> None:
        self.owner = owner
        self.field = field
        self._items: List[Any] = list(items) if items is not None else []
        self._snapshot: List[Any] = list(self._items)
        self._initialized = items is not None or initialized
        self._dirty = False

    def __repr__(self) -> str:
        state = "" if self._initialized else " (uninitialized)"
        return f"<Collection {self.owner.__class__.__name__}.{self.field.name} {len(self._items)} item(s){state}>"

    # Reading --------------------------------------------------------------
    def get_items(self) -> List[Any]:
        self._check_initialized()
        return list(self._items)

    def contains(self, item: Any) -> bool:
        self._check_initialized()
        return self._has(unwrap_reference(item))

    def count(self) -> int:
        self._check_initialized()
        return len(self._items)

    def get_identifiers(self) -> List[Any]:
        return [item.pk for item in self.get_items()]

    def __iter__(self) -> Iterator[Any]:
        return iter(self.get_items())

    def __len__(self) -> int:
        return self.count()

    def __getitem__(self, index: int) -> Any:
        self._check_initialized()
        return self._items[index]

    def __contains__(self, item: Any) -> bool:
        return self.contains(item)

    # Mutation -------------------------------------------------------------
    def add(self, *items: Any) -> None:
        entities = [self._validate_item_type(item) for item in items]
        self._check_initialized()
        self._validate_modification(entities)
        for entity in entities:
            if self._has(entity):
                continue
            self._items.append(entity)
            self._propagate(entity, "add")
        self.set_dirty()
        self._cancel_orphan_removal(entities)

    def remove(self, *items: Any) -> None:
        entities = [unwrap_reference(item) for item in items]
        self._check_initialized()
        self._validate_modification(entities)
        for entity in entities:
            if not self._has(entity):
                continue
            self._items = [existing for existing in self._items if existing is not entity]
            self._propagate(entity, "remove")
        self.set_dirty()

        session = self.owner._session
        if self.field.orphan_removal and session is not None:
            for entity in entities:
                session.unit_of_work.schedule_orphan_removal(entity)

    def remove_all(self) -> None:
        self.remove(*self._items)

    def set(self, items: Iterable[Any]) -> None:
        entities = [self._validate_item_type(item) for item in items]
        self._validate_modification(entities)
        self.remove_all()
        self.add(*entities)

    def hydrate(self, items: Iterable[Any]) -> None:
        """
        Replace the contents with loaded items without propagation and mark
        the collection as synchronized.
        """
        self._items = list(items)
        self._initialized = True
        self.take_snapshot()

    # State ----------------------------------------------------------------
    def is_initialized(self, fully: bool = False) -> bool:
        if fully:
            return self._initialized and all(item.is_initialized() for item in self._items)
        return self._initialized

    def is_dirty(self) -> bool:
        return self._dirty

    def set_dirty(self, dirty: bool = True) -> None:
        self._dirty = dirty and bool(self.field.owner)

    def take_snapshot(self) -> None:
        self._snapshot = list(self._items)
        self.set_dirty(False)

    def get_snapshot(self) -> List[Any]:
        return list(self._snapshot)

    def reset_snapshot(self, snapshot: Iterable[Any]) -> None:
        """Reinstate an earlier snapshot after its synchronization was rolled back."""
        self._snapshot = list(snapshot)
        self.set_dirty()

    def init(self) -> "Collection":
        session = self.owner._session
        if session is None:
            from ..persistence.errors import EntityNotManagedError

            raise EntityNotManagedError.for_entity(self.owner)
        session.load_collection(self)
        return self

    def load_items(self) -> List[Any]:
        if not self.is_initialized(fully=True):
            self.init()
        return self.get_items()

    # Internals ------------------------------------------------------------
    def _has(self, entity: Any) -> bool:
        return any(existing is entity for existing in self._items)

    def _check_initialized(self) -> None:
        if not self._initialized:
            raise RelationshipError(
                f"Collection {self.owner.__class__.__name__}.{self.field.name} of entity "
                f"{self.owner!r} is not initialized."
            )

    def _validate_item_type(self, item: Any) -> Any:
        entity = unwrap_reference(item)
        if not is_entity(entity):
            from ..persistence.errors import NotAnEntityError

            raise NotAnEntityError.for_collection_item(self.owner, self.field.require_name(), item)
        return entity

    def _validate_modification(self, items: List[Any]) -> None:
        field = self.field
        if field.relation_type is not RelationKind.MANY_TO_MANY or not field.mapped_by:
            return
        for item in items:
            owning = getattr(item, field.mapped_by, None)
            if not isinstance(owning, Collection) or not owning.is_initialized():
                from ..persistence.errors import InverseCollectionModificationError

                raise InverseCollectionModificationError.for_relation(
                    self.owner, field.require_name()
                )

    def _propagate(self, item: Any, method: str) -> None:
        field = self.field
        if field.relation_type is RelationKind.ONE_TO_MANY:
            self._propagate_one_to_many(item, method)
        elif field.relation_type is RelationKind.MANY_TO_MANY:
            other_side = field.inversed_by if field.owner else field.mapped_by
            if other_side:
                self._propagate_many_to_many(item, other_side, method)

    def _propagate_one_to_many(self, item: Any, method: str) -> None:
        mapped_by = self.field.mapped_by
        current = unwrap_reference(item._field_values.get(mapped_by))
        if method == "add":
            if current is not self.owner:
                setattr(item, mapped_by, self.owner)
        elif current is self.owner:
            # Bypass the nullable check; a required child is either re-added
            # elsewhere or removed as an orphan before the flush.
            item._field_values[mapped_by] = None

    def _propagate_many_to_many(self, item: Any, other_side: str, method: str) -> None:
        other = getattr(item, other_side, None)
        if not isinstance(other, Collection) or not other.is_initialized():
            return
        if method == "add" and not other._has(self.owner):
            other.add(self.owner)
        elif method == "remove" and other._has(self.owner):
            other.remove(self.owner)

    def _cancel_orphan_removal(self, items: List[Any]) -> None:
        session = self.owner._session
        if session is None:
            return
        for item in items:
            session.unit_of_work.cancel_orphan_removal(item)
