"""
Persistence layer: session, unit of work, identity map and commit ordering.
"""

from .changeset import ChangeSet, ChangeSetType
from .commit_order import CommitOrderCalculator
from .config import SessionConfig
from .errors import (
    EntityNotFoundError,
    EntityNotManagedError,
    InverseCollectionModificationError,
    NotAnEntityError,
    NotVersionedError,
    OptimisticLockError,
    PersistenceError,
    TransactionRequiredError,
)
from .identifier import EntityIdentifier
from .identity_map import IdentityMap
from .locking import LockMode
from .session import Session
from .transaction import Transaction, TransactionError, TransactionManager
from .unit_of_work import UnitOfWork

__all__ = [
    "ChangeSet",
    "ChangeSetType",
    "CommitOrderCalculator",
    "EntityIdentifier",
    "EntityNotFoundError",
    "EntityNotManagedError",
    "IdentityMap",
    "InverseCollectionModificationError",
    "LockMode",
    "NotAnEntityError",
    "NotVersionedError",
    "OptimisticLockError",
    "PersistenceError",
    "Session",
    "SessionConfig",
    "Transaction",
    "TransactionError",
    "TransactionManager",
    "UnitOfWork",
]
