"""
Hands change sets to the storage driver and folds the results back.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict

from ..utils import get_logger
from .changeset import ChangeSet, ChangeSetType
from .errors import PersistenceError
from .identifier import EntityIdentifier

if TYPE_CHECKING:
    from ..drivers.base import StorageDriver


class ChangeSetPersister:
    def __init__(self, driver: "StorageDriver", identifier_map: Dict[str, EntityIdentifier]) -> None:
        self.driver = driver
        self.identifier_map = identifier_map
        self.logger = get_logger("persistence.persister")

    def persist_to_database(self, change_set: ChangeSet, ctx: Any = None) -> None:
        self._resolve_identifiers(change_set)
        self._process_optimistic_lock(change_set)
        result = self.driver.persist_change_set(change_set, ctx)
        if change_set.type is ChangeSetType.CREATE:
            self._map_primary_key(change_set, result)
        self._apply_version(change_set)
        change_set.persisted = True

    def _resolve_identifiers(self, change_set: ChangeSet) -> None:
        for name, value in list(change_set.payload.items()):
            if not isinstance(value, EntityIdentifier):
                continue
            if not value.is_resolved():
                raise PersistenceError(
                    f"Cannot write {change_set.name}.{name}: the referenced entity has no "
                    "primary key yet."
                )
            change_set.payload[name] = value.get_value()

    def _process_optimistic_lock(self, change_set: ChangeSet) -> None:
        version_field = change_set.entity._meta.version_field
        if version_field is None:
            return
        name = version_field.require_name()
        if change_set.type is ChangeSetType.CREATE:
            if change_set.payload.get(name) is None:
                change_set.payload[name] = 1
        elif change_set.type is ChangeSetType.UPDATE:
            current = change_set.entity._field_values.get(name)
            change_set.payload[name] = (current or 0) + 1

    def _apply_version(self, change_set: ChangeSet) -> None:
        version_field = change_set.entity._meta.version_field
        if version_field is None or change_set.type is ChangeSetType.DELETE:
            return
        name = version_field.require_name()
        change_set.entity._field_values[name] = change_set.payload[name]

    def _map_primary_key(self, change_set: ChangeSet, result: Any) -> None:
        entity = change_set.entity
        meta = entity._meta
        if result is not None and not entity.has_primary_key() and meta.primary_key is not None:
            entity._field_values[meta.primary_key.require_name()] = meta.primary_key.to_python(result)
            self.logger.debug(
                "Assigned generated key", extra={"entity": change_set.name, "pk": result}
            )
        identifier = self.identifier_map.get(entity._token)
        if identifier is not None and entity.has_primary_key():
            identifier.set_value(entity.pk)
