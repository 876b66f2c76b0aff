"""
Model base classes and metadata orchestration for emberorm.
"""

from __future__ import annotations

import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Type, TypeVar

from ..utils import camel_to_snake
from .fields import AutoField, Field
from .helpers import get_primary_key_hash, prepare_entity
from .relations import ManyToManyField, RelatedField, ToManyField, relation_registry

if TYPE_CHECKING:
    from ..persistence.session import Session


class ModelConfigurationError(Exception):
    """Raised when a model class is misconfigured."""


@dataclass
class ModelOptions:
    """
    Metadata calculated by :class:`ModelMeta`.

    ``fields`` holds the persistable columns (scalars and owning to-one
    relations); ``relations`` holds every relation descriptor, owning or not.
    """

    model: Type["Model"]
    table_name: str = ""
    schema: Optional[str] = None
    abstract: bool = False
    fields: "OrderedDict[str, Field]" = field(default_factory=OrderedDict)
    relations: "OrderedDict[str, RelatedField]" = field(default_factory=OrderedDict)
    primary_keys: List[Field] = field(default_factory=list)
    version_field: Optional[Field] = None
    many_to_many: List[ManyToManyField] = field(default_factory=list)

    def _register_field(self, field_obj: Field) -> None:
        name = field_obj.require_name()
        if name in self.fields:
            raise ModelConfigurationError(f"{self.name}.{name} is declared twice")
        self.fields[name] = field_obj
        if field_obj.primary_key:
            self.primary_keys.append(field_obj)
        if not field_obj.is_version:
            return
        if self.version_field is not None:
            raise ModelConfigurationError(
                f"{self.name} has two version fields: {self.version_field.name} and {name}"
            )
        self.version_field = field_obj

    def _register_relation(self, relation: RelatedField) -> None:
        name = relation.require_name()
        if name in self.relations:
            raise ModelConfigurationError(f"{self.name}.{name} is declared twice")
        self.relations[name] = relation
        if isinstance(relation, ManyToManyField):
            self.many_to_many.append(relation)
        if relation.is_owning_to_one:
            self._register_field(relation)

    @property
    def name(self) -> str:
        return self.model.__name__

    @property
    def primary_key(self) -> Optional[Field]:
        return self.primary_keys[0] if self.primary_keys else None

    @property
    def composite_pk(self) -> bool:
        return len(self.primary_keys) > 1

    @property
    def table(self) -> str:
        return f"{self.schema}.{self.table_name}" if self.schema else self.table_name

    def get_field(self, name: str) -> Field:
        found = self.fields.get(name) or self.relations.get(name)
        if found is None:
            raise KeyError(f"Unknown field '{name}' on model '{self.name}'")
        return found

    def get_fields(self) -> Iterable[Field]:
        return self.fields.values()

    def to_many_relations(self) -> Iterable[ToManyField]:
        return [rel for rel in self.relations.values() if isinstance(rel, ToManyField)]


TModel = TypeVar("TModel", bound="Model")


def _options_for(cls: type, name: str) -> ModelOptions:
    declared = getattr(cls, "Meta", None)
    return ModelOptions(
        model=cls,
        table_name=getattr(declared, "table", None) or camel_to_snake(name),
        schema=getattr(declared, "schema", None),
        abstract=bool(getattr(declared, "abstract", False)),
    )


def _add_surrogate_key(cls: type, meta: ModelOptions) -> None:
    if "id" in meta.fields:
        raise ModelConfigurationError(
            f"{meta.name}.id is not a primary key; mark it primary_key=True or rename it"
        )
    key = AutoField()
    key.contribute_to_class(cls, "id")
    meta._register_field(key)
    # the generated key is always the first column
    meta.fields.move_to_end("id", last=False)


class ModelMeta(type):
    """
    Collects declared fields into ``_meta`` and registers the model with
    the relation registry so string targets can be resolved.
    """

    def __new__(mcls, name: str, bases: tuple[type, ...], attrs: Dict[str, Any]) -> "ModelMeta":
        if not bases:
            return super().__new__(mcls, name, bases, attrs)

        declared = [(key, attrs.pop(key)) for key, value in list(attrs.items()) if isinstance(value, Field)]
        cls = super().__new__(mcls, name, bases, attrs)
        meta = cls._meta = _options_for(cls, name)

        for attr_name, field_obj in sorted(declared, key=lambda pair: pair[1].creation_counter):
            field_obj.contribute_to_class(cls, attr_name)
            if isinstance(field_obj, RelatedField):
                relation_registry.register_field(cls, field_obj)
                meta._register_relation(field_obj)
            else:
                meta._register_field(field_obj)

        if not meta.primary_keys and not meta.abstract:
            _add_surrogate_key(cls, meta)
        relation_registry.register_model(cls)
        return cls


class Model(metaclass=ModelMeta):
    """
    Base model providing the data container and identity helpers.
    Persistence is driven by the session's unit of work.
    """

    _meta: ModelOptions

    def __init__(self, **kwargs: Any) -> None:
        self._reset_state(initialized=True)
        unknown = set(kwargs) - set(self._meta.fields) - set(self._meta.relations)
        if unknown:
            raise TypeError(
                f"{type(self).__name__}() got unexpected field(s): {', '.join(sorted(unknown))}"
            )

        for field_obj in self._meta.get_fields():
            name = field_obj.require_name()
            if name in kwargs:
                setattr(self, name, kwargs[name])
                continue
            # keys without a default stay unset until the store generates them
            default = field_obj.get_default() if field_obj.has_default else None
            if default is not None:
                setattr(self, name, default)

        for relation in self._meta.relations.values():
            name = relation.require_name()
            if isinstance(relation, ToManyField):
                collection = self._field_values[name] = relation.new_collection(self)
                if name in kwargs:
                    collection.add(*kwargs[name])
            elif not relation.is_owning_to_one and name in kwargs:
                setattr(self, name, kwargs[name])

    def _reset_state(self, *, initialized: bool) -> None:
        self._field_values: Dict[str, Any] = {}
        self._token = uuid.uuid4().hex
        self._initialized = initialized
        self._session: Optional["Session"] = None

    @classmethod
    def _reference(cls: Type[TModel], pk: Any) -> TModel:
        """
        Build an uninitialized instance that only knows its primary key.
        """
        instance = cls.__new__(cls)
        instance._reset_state(initialized=False)
        for field_obj, value in zip(cls._meta.primary_keys, cls._normalize_pk(pk)):
            instance._field_values[field_obj.require_name()] = field_obj.to_python(value)
        return instance

    @classmethod
    def _normalize_pk(cls, pk: Any) -> List[Any]:
        pk_fields = cls._meta.primary_keys
        if isinstance(pk, dict):
            return [pk.get(field_obj.name) for field_obj in pk_fields]
        if isinstance(pk, (list, tuple)):
            values = list(pk)
        else:
            values = [pk]
        if len(values) != len(pk_fields):
            raise ValueError(
                f"Model '{cls.__name__}' expects {len(pk_fields)} primary key value(s), got {len(values)}"
            )
        return values

    def __repr__(self) -> str:
        shown = [
            f"{name}={self._field_values[name]!r}"
            for name, field_obj in self._meta.fields.items()
            if name in self._field_values and not field_obj.is_relation
        ]
        suffix = "" if self._initialized else " (uninitialized)"
        return f"<{type(self).__name__} {', '.join(shown)}{suffix}>"

    # Identity ------------------------------------------------------------
    @property
    def pk(self) -> Any:
        if not self._meta.primary_keys:
            raise ModelConfigurationError(
                f"Model '{self.__class__.__name__}' does not define a primary key."
            )
        values = self.primary_key_values()
        if self._meta.composite_pk:
            return tuple(values)
        return values[0]

    def primary_key_values(self) -> List[Any]:
        return [self._field_values.get(field_obj.name) for field_obj in self._meta.primary_keys]

    def has_primary_key(self) -> bool:
        values = self.primary_key_values()
        return bool(values) and all(value is not None for value in values)

    def serialized_primary_key(self) -> str:
        return get_primary_key_hash(self.primary_key_values())

    def is_initialized(self) -> bool:
        return self._initialized

    def init(self, lock_mode=None) -> "Model":
        """
        Load the state of an uninitialized reference through its session.
        """
        if self._session is None:
            from ..persistence.errors import EntityNotManagedError

            raise EntityNotManagedError.for_entity(self)
        return self._session.refresh(self, lock_mode=lock_mode)

    def to_dict(self) -> Dict[str, Any]:
        return prepare_entity(self)

    @classmethod
    def register_hook(cls, event: str, handler) -> None:
        from ..hooks import hooks

        hooks.register(event, handler, model=cls)
