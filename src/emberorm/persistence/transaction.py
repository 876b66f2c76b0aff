"""
Nested transactions on a single adapter connection.
"""

from __future__ import annotations

import itertools
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Generator, List, Optional

from ..adapters.base import DatabaseAdapter
from ..dialects.base import Dialect
from ..utils import get_logger


class TransactionError(RuntimeError):
    pass


@dataclass
class Transaction:
    """
    Context handle given to the driver for writes inside a transaction.
    ``savepoint`` is ``None`` at the outermost level.
    """

    depth: int
    savepoint: Optional[str] = None
    active: bool = True


class TransactionManager:
    """
    The outermost level is a real transaction; every level opened inside it
    is a savepoint named ``sp_<n>``, released on commit and rolled back to
    on failure.
    """

    def __init__(self, adapter: DatabaseAdapter, dialect: Dialect) -> None:
        self.adapter = adapter
        self.dialect = dialect
        self.logger = get_logger("persistence.transaction")
        self._open: List[Transaction] = []
        self._savepoint_names = (f"sp_{n}" for n in itertools.count(1))

    @property
    def depth(self) -> int:
        return len(self._open)

    def begin(self) -> Transaction:
        depth = self.depth + 1
        savepoint = None
        if depth == 1:
            self.adapter.begin()
        elif self.dialect.capabilities.supports_savepoints:
            savepoint = next(self._savepoint_names)
            self.adapter.execute(f"SAVEPOINT {savepoint}")
        else:
            raise TransactionError(f"The {self.dialect.name} dialect cannot nest transactions.")
        transaction = Transaction(depth=depth, savepoint=savepoint)
        self._open.append(transaction)
        return transaction

    def commit(self) -> None:
        transaction = self._close("commit")
        if transaction.savepoint is None:
            self.adapter.commit()
        else:
            self.adapter.execute(f"RELEASE SAVEPOINT {transaction.savepoint}")

    def rollback(self) -> None:
        transaction = self._close("roll back")
        self.logger.debug("Rolling back transaction at depth %d", transaction.depth)
        if transaction.savepoint is None:
            self.adapter.rollback()
            return
        self.adapter.execute(f"ROLLBACK TO SAVEPOINT {transaction.savepoint}")
        self.adapter.execute(f"RELEASE SAVEPOINT {transaction.savepoint}")

    def _close(self, action: str) -> Transaction:
        if not self._open:
            raise TransactionError(f"No active transaction to {action}.")
        transaction = self._open.pop()
        transaction.active = False
        return transaction

    @contextmanager
    def transaction(self) -> Generator[Transaction, None, None]:
        transaction = self.begin()
        try:
            yield transaction
        except Exception:
            self.rollback()
            raise
        self.commit()
