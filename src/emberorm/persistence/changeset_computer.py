"""
Diffs live entity state against baseline snapshots.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..core.collection import Collection
from ..core.helpers import diff_entities, is_entity, prepare_entity
from .changeset import ChangeSet, ChangeSetType
from .identifier import EntityIdentifier


class ChangeSetComputer:
    """
    Builds :class:`ChangeSet` objects for single entities.

    The computer shares the snapshot, identifier and collection-update
    containers of its unit of work; it never touches the stacks.
    """

    def __init__(
        self,
        original_entity_data: Dict[str, Dict[str, Any]],
        identifier_map: Dict[str, EntityIdentifier],
        collection_updates: List[Collection],
    ) -> None:
        self.original_entity_data = original_entity_data
        self.identifier_map = identifier_map
        self.collection_updates = collection_updates

    def compute_change_set(self, entity: Any) -> Optional[ChangeSet]:
        meta = entity._meta
        original = self.original_entity_data.get(entity._token)
        current = prepare_entity(entity)

        if original is None:
            change_type = ChangeSetType.CREATE
            changes = {
                name: value
                for name, value in current.items()
                if not (meta.fields[name].primary_key and value is None)
            }
        else:
            change_type = ChangeSetType.UPDATE
            changes = diff_entities(original, current)

        for relation in meta.to_many_relations():
            self._process_to_many(entity, relation)

        if change_type is ChangeSetType.UPDATE and not changes:
            return None

        return ChangeSet(
            type=change_type,
            name=meta.name,
            collection=meta.table,
            entity=entity,
            payload=self.payload_values(changes),
            original=dict(original) if original is not None else None,
        )

    def payload_values(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Swap references to entities without a primary key for their
        identifier placeholders.
        """
        payload: Dict[str, Any] = {}
        for name, value in changes.items():
            if is_entity(value):
                value = self.identifier_map.setdefault(value._token, EntityIdentifier())
            payload[name] = value
        return payload

    def _process_to_many(self, entity: Any, relation) -> None:
        collection = entity._field_values.get(relation.require_name())
        if not isinstance(collection, Collection) or not collection.is_dirty():
            return
        if relation.owner:
            if not any(existing is collection for existing in self.collection_updates):
                self.collection_updates.append(collection)
        else:
            collection.set_dirty(False)
