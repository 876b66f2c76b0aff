"""
Storage drivers the session flushes change sets through.
"""

from .base import DriverError, IntegrityError, StorageDriver, normalize_criteria
from .memory import InMemoryDriver
from .sql import SQLDriver, adapter_for_url

__all__ = [
    "DriverError",
    "InMemoryDriver",
    "IntegrityError",
    "SQLDriver",
    "StorageDriver",
    "adapter_for_url",
    "normalize_criteria",
]
