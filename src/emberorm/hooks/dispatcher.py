"""
Lifecycle hooks.

The unit of work fires ``before_create``/``after_create``,
``before_update``/``after_update`` and ``before_delete``/``after_delete``
around each row it writes, passing ``session`` and ``change_set`` as keyword
context. A ``before_*`` handler may still modify the entity; the change set
is recomputed afterwards. The session fires ``after_flush`` with no
instance once the commit went through.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from ..core.model import Model

HookHandler = Callable[..., None]

LIFECYCLE_EVENTS = (
    "before_create",
    "after_create",
    "before_update",
    "after_update",
    "before_delete",
    "after_delete",
    "after_flush",
)

# (event, model) -> handlers; model None means every model
_Key = Tuple[str, Optional[Type[Model]]]


class HookDispatcher:
    def __init__(self) -> None:
        self._handlers: Dict[_Key, List[HookHandler]] = {}

    def register(self, event: str, handler: HookHandler, *, model: Optional[Type[Model]] = None) -> None:
        if event not in LIFECYCLE_EVENTS:
            raise ValueError(f"Unknown hook event '{event}'")
        self._handlers.setdefault((event, model), []).append(handler)

    def handlers_for(self, event: str, model: Optional[Type[Model]] = None) -> List[HookHandler]:
        """Global handlers first, then the ones registered for ``model``."""
        found = list(self._handlers.get((event, None), ()))
        if model is not None:
            found.extend(self._handlers.get((event, model), ()))
        return found

    def has_handlers(self, event: str, model: Optional[Type[Model]] = None) -> bool:
        return bool(self.handlers_for(event, model))

    def fire(self, event: str, instance: Optional[Model], **context: Any) -> None:
        model = type(instance) if instance is not None else None
        for handler in self.handlers_for(event, model):
            handler(instance, **context)

    def clear(self) -> None:
        self._handlers.clear()


hooks = HookDispatcher()
