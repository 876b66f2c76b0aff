"""
Lock modes understood by the unit of work and the drivers.
"""

from __future__ import annotations

from enum import Enum


class LockMode(str, Enum):
    NONE = "none"
    OPTIMISTIC = "optimistic"
    PESSIMISTIC_READ = "pessimistic_read"
    PESSIMISTIC_WRITE = "pessimistic_write"

    @property
    def is_pessimistic(self) -> bool:
        return self in (LockMode.PESSIMISTIC_READ, LockMode.PESSIMISTIC_WRITE)
