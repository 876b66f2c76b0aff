"""
Change set records produced by the unit of work.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, NamedTuple, Optional


class ChangeSetType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(eq=False)
class ChangeSet:
    """
    One entity's pending write.

    ``payload`` holds only changed fields (every persistable field for
    CREATE, nothing for DELETE). ``original`` is the baseline snapshot the
    UPDATE was diffed against; drivers use it to guard versioned writes.
    """

    type: ChangeSetType
    name: str
    collection: str
    entity: Any
    payload: Dict[str, Any] = field(default_factory=dict)
    original: Optional[Dict[str, Any]] = None
    persisted: bool = False

    def __repr__(self) -> str:
        return f"<ChangeSet {self.type.value} {self.name} {sorted(self.payload)}>"


class ExtraUpdate(NamedTuple):
    """Deferred assignment applied after the main change set pass."""

    entity: Any
    field: str
    value: Any
