"""
Lazy to-one reference wrapper.
"""

from __future__ import annotations

from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class Reference(Generic[T]):
    """
    Wraps a (possibly uninitialized) entity so that relation values declared
    with ``wrapped_reference=True`` are never mistaken for loaded objects.
    """

    def __init__(self, entity: T) -> None:
        self._entity = entity

    @classmethod
    def create(cls, entity: Any) -> "Reference[Any]":
        if isinstance(entity, Reference):
            return entity
        return cls(entity)

    def unwrap(self) -> T:
        return self._entity

    @property
    def pk(self) -> Any:
        return self._entity.pk  # type: ignore[attr-defined]

    def is_initialized(self) -> bool:
        return self._entity.is_initialized()  # type: ignore[attr-defined]

    def load(self, lock_mode: Optional[Any] = None) -> T:
        if not self.is_initialized():
            self._entity.init(lock_mode=lock_mode)  # type: ignore[attr-defined]
        return self._entity

    def get(self, name: str) -> Any:
        if not self.is_initialized():
            raise ValueError(f"Reference to {self._entity!r} is not initialized; call load() first.")
        return getattr(self._entity, name)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Reference):
            return other._entity is self._entity
        return other is self._entity

    def __hash__(self) -> int:
        return id(self._entity)

    def __repr__(self) -> str:
        return f"Reference({self._entity!r})"
