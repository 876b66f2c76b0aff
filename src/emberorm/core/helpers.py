"""
Entity helpers shared by the unit of work, collections and drivers.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from .reference import Reference

if TYPE_CHECKING:
    from .model import ModelOptions

PK_SEPARATOR = "~~~"


def is_entity(value: Any, *, allow_reference: bool = False) -> bool:
    from .model import Model

    if allow_reference and isinstance(value, Reference):
        return True
    return isinstance(value, Model)


def unwrap_reference(value: Any) -> Any:
    if isinstance(value, Reference):
        return value.unwrap()
    return value


def get_primary_key_hash(values: Sequence[Any]) -> str:
    return PK_SEPARATOR.join(str(value) for value in values)


def prepare_entity(entity: Any) -> Dict[str, Any]:
    """
    Shallow copy of the persistable values of ``entity``.

    Owning to-one relations are reduced to the target's primary key; a target
    without a key yet is kept as the object itself so that assigning a new
    entity is still detected as a change.
    """
    data: Dict[str, Any] = {}
    for field in entity._meta.get_fields():
        name = field.require_name()
        if name not in entity._field_values and not field.has_default:
            continue
        value = getattr(entity, name)
        if field.is_relation:
            value = _reduce_reference(value)
        elif isinstance(value, list):
            value = list(value)
        elif isinstance(value, dict):
            value = dict(value)
        data[name] = value
    return data


def _reduce_reference(value: Any) -> Any:
    target = unwrap_reference(value)
    if not is_entity(target):
        return target
    if target.has_primary_key():
        return target.pk
    return target


def diff_entities(original: Mapping[str, Any], current: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Return the entries of ``current`` that are missing from or differ in
    ``original``.
    """
    changes: Dict[str, Any] = {}
    for key, value in current.items():
        if key not in original:
            changes[key] = value
            continue
        previous = original[key]
        if previous is value:
            continue
        if is_entity(previous) or is_entity(value) or previous != value:
            changes[key] = value
    return changes


def extract_pk(meta: "ModelOptions", where: Any) -> Optional[List[Any]]:
    """
    Pull primary key values out of lookup criteria.

    Accepts a bare key, a list/tuple for composite keys, a model instance or a
    mapping holding a plain value for every key field. Anything else,
    including operator mappings such as ``{"id": {"$in": [...]}}``, yields
    ``None``.
    """
    pk_fields = meta.primary_keys
    if not pk_fields or where is None:
        return None

    where = unwrap_reference(where)
    if is_entity(where):
        return where.primary_key_values() if where.has_primary_key() else None

    if isinstance(where, Mapping):
        values = []
        for field in pk_fields:
            value = unwrap_reference(where.get(field.name))
            if value is None or isinstance(value, Mapping):
                return None
            if is_entity(value):
                if not value.has_primary_key():
                    return None
                value = value.pk
            values.append(value)
        return values

    if isinstance(where, (list, tuple)):
        if len(where) != len(pk_fields) or any(item is None for item in where):
            return None
        return list(where)

    if len(pk_fields) > 1:
        return None
    return [where]
