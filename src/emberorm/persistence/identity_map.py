"""
Identity map ensuring a single in-memory instance per row.
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional, Sequence

from ..core.helpers import get_primary_key_hash
from ..core.model import Model


class IdentityMap:
    """
    Stores model instances keyed by ``"<TypeName>-<serialized pk>"``.

    Registering a second instance under an occupied key replaces the first.
    """

    def __init__(self) -> None:
        self._store: Dict[str, Model] = {}

    @staticmethod
    def make_key(model_name: str, pk_values: Sequence[Any]) -> str:
        return f"{model_name}-{get_primary_key_hash(pk_values)}"

    @classmethod
    def key_for(cls, instance: Model) -> str:
        return cls.make_key(instance.__class__.__name__, instance.primary_key_values())

    def add(self, instance: Model) -> None:
        if not instance.has_primary_key():
            return
        self._store[self.key_for(instance)] = instance

    def get(self, model_name: str, pk_values: Sequence[Any]) -> Optional[Model]:
        return self._store.get(self.make_key(model_name, pk_values))

    def remove(self, instance: Model) -> None:
        self._store.pop(self.key_for(instance), None)

    def clear(self) -> None:
        self._store.clear()

    def values(self) -> List[Model]:
        return list(self._store.values())

    def as_dict(self) -> Dict[str, Model]:
        return dict(self._store)

    def __contains__(self, instance: Model) -> bool:
        if not instance.has_primary_key():
            return False
        return self._store.get(self.key_for(instance)) is instance

    def __len__(self) -> int:
        return len(self._store)

    def __iter__(self) -> Iterator[Model]:
        return iter(self.values())
