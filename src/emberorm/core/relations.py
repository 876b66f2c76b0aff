"""
Relationship field implementations and registry utilities.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, Iterable, List, Optional, Tuple, Type

from ..utils import join_column_name, pivot_table_name
from .fields import Field

if TYPE_CHECKING:
    from .collection import Collection


class RelationshipError(RuntimeError):
    pass


class RelationKind(str, Enum):
    MANY_TO_ONE = "many-to-one"
    ONE_TO_ONE = "one-to-one"
    ONE_TO_MANY = "one-to-many"
    MANY_TO_MANY = "many-to-many"


TO_ONE_KINDS: FrozenSet[RelationKind] = frozenset({RelationKind.MANY_TO_ONE, RelationKind.ONE_TO_ONE})
TO_MANY_KINDS: FrozenSet[RelationKind] = frozenset({RelationKind.ONE_TO_MANY, RelationKind.MANY_TO_MANY})


class Cascade(str, Enum):
    PERSIST = "persist"
    MERGE = "merge"
    REMOVE = "remove"
    ALL = "all"


DEFAULT_CASCADE: FrozenSet[Cascade] = frozenset({Cascade.PERSIST, Cascade.MERGE})


class RelatedField(Field):
    """
    Base class for every relationship descriptor.

    Only owning to-one relations are stored as columns; inverse sides and
    collections live in ``_meta.relations`` alone.
    """

    is_relation = True
    relation_type = RelationKind.MANY_TO_ONE

    def __init__(
        self,
        to: Type | str,
        *,
        cascade: Optional[Iterable[Cascade | str]] = None,
        orphan_removal: bool = False,
        owner: bool = True,
        mapped_by: Optional[str] = None,
        inversed_by: Optional[str] = None,
        wrapped_reference: bool = False,
        db_type: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("db_type", db_type or "INTEGER")
        super().__init__(**kwargs)
        self.to = to
        self.cascade: FrozenSet[Cascade] = (
            DEFAULT_CASCADE if cascade is None else frozenset(Cascade(item) for item in cascade)
        )
        self.orphan_removal = orphan_removal
        self.owner = owner
        self.mapped_by = mapped_by
        self.inversed_by = inversed_by
        self.wrapped_reference = wrapped_reference
        self.remote_model: Optional[Type] = to if isinstance(to, type) else None

    def resolve_model(self, model: Type) -> None:
        self.remote_model = model

    def require_remote_model(self) -> Type:
        if self.remote_model is None:
            raise RelationshipError(
                f"Relation '{self.name}' on '{self.model.__name__ if self.model else '?'}' "
                f"targets unresolved model {self.to!r}"
            )
        return self.remote_model

    @property
    def target_name(self) -> str:
        if self.remote_model is not None:
            return self.remote_model.__name__
        return str(self.to).split(".")[-1]

    @property
    def is_to_one(self) -> bool:
        return self.relation_type in TO_ONE_KINDS

    @property
    def is_to_many(self) -> bool:
        return self.relation_type in TO_MANY_KINDS

    @property
    def is_owning_to_one(self) -> bool:
        if self.relation_type is RelationKind.MANY_TO_ONE:
            return True
        return self.relation_type is RelationKind.ONE_TO_ONE and self.owner

    def cascades(self, kind: Cascade) -> bool:
        return kind in self.cascade or Cascade.ALL in self.cascade

    def to_python(self, value: Any) -> Any:
        if self.wrapped_reference and self.is_to_one and value is not None:
            from .helpers import is_entity
            from .reference import Reference

            if is_entity(value):
                return Reference(value)
        return value


class ForeignKey(RelatedField):
    """
    Owning many-to-one relation. The value may be an entity, a
    :class:`Reference`, or a bare primary key that is turned into a lazy
    reference when the entity is cascaded.
    """

    relation_type = RelationKind.MANY_TO_ONE

    def __init__(self, to: Type | str, **kwargs: Any) -> None:
        kwargs.setdefault("nullable", False)
        kwargs["owner"] = True
        super().__init__(to, **kwargs)

    def bind(self, model: Type, name: str) -> None:
        if self.db_column is None:
            self.db_column = join_column_name(name)
        super().bind(model, name)


class OneToOneField(ForeignKey):
    relation_type = RelationKind.ONE_TO_ONE

    def __init__(self, to: Type | str, *, mapped_by: Optional[str] = None, **kwargs: Any) -> None:
        if mapped_by:
            kwargs.setdefault("nullable", True)
        else:
            kwargs.setdefault("unique", True)
        super().__init__(to, mapped_by=mapped_by, **kwargs)
        self.owner = mapped_by is None


class CollectionDescriptor:
    """
    Class attribute installed for to-many relations.

    Reading returns the stored :class:`Collection`; assigning a plain list is
    accepted and wrapped into a collection the next time the owner is
    cascaded.
    """

    def __init__(self, field: "ToManyField") -> None:
        self.field = field

    def __get__(self, instance, owner):
        if instance is None:
            return self.field
        name = self.field.require_name()
        value = instance._field_values.get(name)
        if value is None:
            from .collection import Collection

            value = Collection(instance, self.field, initialized=False)
            instance._field_values[name] = value
        return value

    def __set__(self, instance, value) -> None:
        instance._field_values[self.field.require_name()] = value


class ToManyField(RelatedField):
    def __init__(self, to: Type | str, **kwargs: Any) -> None:
        kwargs.setdefault("nullable", True)
        kwargs.setdefault("db_type", None)
        super().__init__(to, **kwargs)
        self.db_type = None

    def contribute_to_class(self, model: Type, name: str) -> None:
        self.bind(model, name)
        self.db_column = None
        setattr(model, name, CollectionDescriptor(self))

    def new_collection(self, owner, items: Optional[Iterable[Any]] = None) -> "Collection":
        from .collection import Collection

        return Collection(owner, self, list(items) if items is not None else None)


class OneToMany(ToManyField):
    """
    Inverse side of a :class:`ForeignKey`; ``mapped_by`` names the foreign key
    on the child model.
    """

    relation_type = RelationKind.ONE_TO_MANY

    def __init__(self, to: Type | str, *, mapped_by: str, **kwargs: Any) -> None:
        if not mapped_by:
            raise RelationshipError("OneToMany relations require 'mapped_by'.")
        kwargs["owner"] = False
        super().__init__(to, mapped_by=mapped_by, **kwargs)


class ManyToManyField(ToManyField):
    """
    Many-to-many relation backed by a pivot table owned by the side declared
    without ``mapped_by``.
    """

    relation_type = RelationKind.MANY_TO_MANY

    def __init__(
        self,
        to: Type | str,
        *,
        mapped_by: Optional[str] = None,
        through: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        kwargs["owner"] = mapped_by is None
        super().__init__(to, mapped_by=mapped_by, **kwargs)
        self.through = through

    def owning_field(self) -> "ManyToManyField":
        if self.owner:
            return self
        remote = self.require_remote_model()
        field = remote._meta.relations.get(self.mapped_by)
        if not isinstance(field, ManyToManyField):
            raise RelationshipError(
                f"'{remote.__name__}.{self.mapped_by}' is not a many-to-many relation."
            )
        return field

    def through_table(self) -> str:
        owning = self.owning_field()
        if owning.through:
            return owning.through
        owner_table = owning.model._meta.table_name
        target_table = owning.require_remote_model()._meta.table_name
        return pivot_table_name(owner_table, target_table)

    def owner_column(self) -> str:
        owning = self.owning_field()
        return join_column_name(owning.model._meta.table_name)

    def target_column(self) -> str:
        owning = self.owning_field()
        owner_table = owning.model._meta.table_name
        target_table = owning.require_remote_model()._meta.table_name
        if owner_table == target_table:
            return join_column_name(f"{target_table}_target")
        return join_column_name(target_table)


class RelationRegistry:
    """
    Resolves string relation targets once the referenced model is declared.
    """

    def __init__(self) -> None:
        self.models: Dict[str, Type] = {}
        self.pending_fields: List[Tuple[Type, RelatedField]] = []

    def register_model(self, model: Type) -> None:
        self.models[model.__name__] = model
        self._resolve_pending()

    def register_field(self, model: Type, field: RelatedField) -> None:
        target = self._resolve_target(field.to)
        if target is None:
            self.pending_fields.append((model, field))
            return
        field.resolve_model(target)
        self._link_inverse(field)

    def get_model(self, name: str) -> Type:
        try:
            return self.models[name.split(".")[-1]]
        except KeyError as exc:
            raise RelationshipError(f"Unknown model '{name}'") from exc

    def _resolve_pending(self) -> None:
        unresolved = []
        for model, field in self.pending_fields:
            target = self._resolve_target(field.to)
            if target is None:
                unresolved.append((model, field))
                continue
            field.resolve_model(target)
            self._link_inverse(field)
        self.pending_fields = unresolved

    @staticmethod
    def _link_inverse(field: RelatedField) -> None:
        if field.owner or not field.mapped_by or field.remote_model is None:
            return
        owning = getattr(field.remote_model, "_meta", None)
        if owning is None:
            return
        owning_field = owning.relations.get(field.mapped_by)
        if owning_field is not None and owning_field.inversed_by is None:
            owning_field.inversed_by = field.name

    def _resolve_target(self, target: Type | str) -> Optional[Type]:
        if isinstance(target, type):
            return target
        return self.models.get(target.split(".")[-1])


relation_registry = RelationRegistry()
