"""
Session coordinating a storage driver, the unit of work and lifecycle hooks.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Callable, Dict, Generator, List, Mapping, Optional, Type, TypeVar, Union

from ..core.helpers import extract_pk
from ..core.model import Model
from ..core.reference import Reference
from ..utils import get_logger
from .config import SessionConfig
from .errors import EntityNotFoundError, TransactionRequiredError
from .locking import LockMode
from .unit_of_work import UnitOfWork

if TYPE_CHECKING:
    from ..core.collection import Collection
    from ..drivers.base import StorageDriver
    from ..hooks import HookDispatcher

TModel = TypeVar("TModel", bound=Model)
T = TypeVar("T")


class Session:
    """
    Entry point for persisting entities.

    ``persist``/``remove`` only register intent; nothing reaches the store
    until :meth:`flush`. Reads go straight to the driver and are mapped
    through the identity map, so one row is one object per session.
    """

    def __init__(
        self,
        driver: "StorageDriver",
        *,
        config: Optional[SessionConfig] = None,
        hooks: Optional["HookDispatcher"] = None,
    ) -> None:
        self.driver = driver
        self.config = config or SessionConfig.from_env()
        if hooks is None:
            from ..hooks import hooks as global_hooks

            hooks = global_hooks
        self.hooks = hooks
        self.logger = get_logger("persistence.session")
        self._transaction_stack: List[Any] = []
        self.unit_of_work = UnitOfWork(self)

    # ------------------------------------------------------------------ #
    # Context management
    # ------------------------------------------------------------------ #
    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                self.flush()
        finally:
            self.close()

    def close(self) -> None:
        self.unit_of_work.clear()
        self.driver.close()

    # ------------------------------------------------------------------ #
    # Unit of work operations
    # ------------------------------------------------------------------ #
    def persist(self, *entities: Model, flush: bool = False) -> "Session":
        for entity in entities:
            self.unit_of_work.persist(entity)
        if flush:
            self.flush()
        return self

    def remove(self, *entities: Union[Model, Reference], flush: bool = False) -> "Session":
        for entity in entities:
            target = entity.unwrap() if isinstance(entity, Reference) else entity
            self.unit_of_work.remove(target)
        if flush:
            self.flush()
        return self

    def merge(self, entity: TModel) -> TModel:
        """
        Register ``entity`` as managed with its current state as baseline.
        """
        self.unit_of_work.merge(entity)
        return entity

    def flush(self) -> None:
        self.unit_of_work.commit()
        if self.hooks.has_handlers("after_flush"):
            self.hooks.fire("after_flush", None, session=self)

    def lock(self, entity: Model, mode: LockMode, version: Any = None) -> None:
        self.unit_of_work.lock(entity, mode, version)

    def clear(self) -> None:
        """
        Detach everything: identity map, snapshots and pending operations.
        """
        self.unit_of_work.clear()

    def get_by_id(self, model: Union[Type[Model], str], pk: Any) -> Optional[Model]:
        return self.unit_of_work.get_by_id(self._model_name(model), pk)

    def try_get_by_id(self, model: Union[Type[Model], str], where: Any) -> Optional[Model]:
        return self.unit_of_work.try_get_by_id(self._model_name(model), where)

    def get_identity_map(self) -> Dict[str, Model]:
        return self.unit_of_work.get_identity_map()

    # ------------------------------------------------------------------ #
    # Reading
    # ------------------------------------------------------------------ #
    def find(
        self,
        model: Type[TModel],
        where: Optional[Mapping[str, Any]] = None,
        *,
        lock_mode: Optional[LockMode] = None,
    ) -> List[TModel]:
        if lock_mode is not None and lock_mode.is_pessimistic and not self.is_in_transaction():
            raise TransactionRequiredError.for_lock()
        rows = self.driver.find(model, where or {}, lock_mode, self.get_transaction_context())
        return [self._map_result(model, row) for row in rows]

    def find_one(
        self,
        model: Type[TModel],
        where: Any,
        *,
        lock_mode: Optional[LockMode] = None,
    ) -> Optional[TModel]:
        """
        Return the matching entity or ``None``. A primary key lookup that
        hits the identity map does not touch the store unless a pessimistic
        lock is requested.
        """
        if lock_mode is None or not lock_mode.is_pessimistic:
            cached = self.unit_of_work.try_get_by_id(model.__name__, where)
            if cached is not None and cached.is_initialized():
                return cached  # type: ignore[return-value]
        if not isinstance(where, Mapping):
            pk = extract_pk(model._meta, where)
            if pk is None:
                return None
            where = self._pk_criteria(model, pk)
        results = self.find(model, where, lock_mode=lock_mode)
        return results[0] if results else None

    def get_reference(self, model: Type[TModel], pk: Any, wrapped: bool = False) -> Any:
        """
        Return the managed entity for ``pk``, creating an uninitialized
        placeholder when it is not loaded yet.
        """
        entity = self.unit_of_work.get_by_id(model.__name__, model._normalize_pk(pk))
        if entity is None:
            entity = model._reference(pk)
            self.unit_of_work.merge(entity, merge_data=False)
        if wrapped:
            return Reference.create(entity)
        return entity

    def refresh(self, entity: TModel, lock_mode: Optional[LockMode] = None) -> TModel:
        """
        Reload the entity's row, overwriting its state and baseline snapshot.
        """
        if lock_mode is not None and lock_mode.is_pessimistic and not self.is_in_transaction():
            raise TransactionRequiredError.for_lock()
        model = entity.__class__
        where = self._pk_criteria(model, entity.primary_key_values())
        rows = self.driver.find(model, where, lock_mode, self.get_transaction_context())
        if not rows:
            raise EntityNotFoundError.for_reference(entity)
        return self._map_result(model, rows[0], target=entity)

    def load_collection(self, collection: "Collection") -> "Collection":
        remote = collection.field.require_remote_model()
        rows = self.driver.load_collection(collection, self.get_transaction_context())
        collection.hydrate(self._map_result(remote, row) for row in rows)
        return collection

    def _map_result(self, model: Type[TModel], row: Mapping[str, Any], target: Optional[Model] = None) -> TModel:
        meta = model._meta
        pk = [row.get(field.require_name()) for field in meta.primary_keys]
        entity = target or self.unit_of_work.get_by_id(model.__name__, pk)
        if entity is not None and entity.is_initialized() and target is None:
            return entity  # type: ignore[return-value]
        if entity is None:
            entity = model._reference(pk)

        for field in meta.get_fields():
            name = field.require_name()
            value = row.get(name)
            if field.is_relation and value is not None:
                value = self.get_reference(
                    field.require_remote_model(), value, wrapped=field.wrapped_reference
                )
            elif not field.is_relation:
                value = field.to_python(value)
            entity._field_values[name] = value

        entity._initialized = True
        self.unit_of_work.merge(entity)
        return entity  # type: ignore[return-value]

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #
    @contextmanager
    def transaction(self) -> Generator[Any, None, None]:
        """
        Run a block in a driver transaction and flush before it commits.
        Nested blocks use the driver's nesting (savepoints on SQL stores).
        """
        with self.driver.transaction() as ctx:
            self._transaction_stack.append(ctx)
            try:
                yield ctx
                self.flush()
            finally:
                self._transaction_stack.pop()

    def transactional(self, fn: Callable[["Session"], T]) -> T:
        with self.transaction():
            return fn(self)

    def is_in_transaction(self) -> bool:
        return bool(self._transaction_stack)

    def get_transaction_context(self) -> Any:
        return self._transaction_stack[-1] if self._transaction_stack else None

    # ------------------------------------------------------------------ #
    @staticmethod
    def _model_name(model: Union[Type[Model], str]) -> str:
        return model if isinstance(model, str) else model.__name__

    @staticmethod
    def _pk_criteria(model: Type[Model], values: List[Any]) -> Dict[str, Any]:
        return {field.require_name(): value for field, value in zip(model._meta.primary_keys, values)}
