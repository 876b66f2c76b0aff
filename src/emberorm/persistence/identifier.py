"""
Placeholder for primary keys that are not known until an insert completes.
"""

from __future__ import annotations

from typing import Any, Optional


class EntityIdentifier:
    """
    Deferred primary key handle. Change sets computed before the referenced
    row exists carry this object in their payload; it is resolved right
    before the write that needs it.
    """

    def __init__(self, value: Optional[Any] = None) -> None:
        self._value = value

    def set_value(self, value: Any) -> None:
        self._value = value

    def get_value(self) -> Optional[Any]:
        return self._value

    def is_resolved(self) -> bool:
        return self._value is not None

    def __repr__(self) -> str:
        return f"EntityIdentifier({self._value!r})"
