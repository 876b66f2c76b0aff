"""
Column descriptors for emberorm models.

A field stores its value in the owning entity's ``_field_values`` dict under
the attribute name. That dict is what the change-set computer diffs against
the snapshot, so every assignment goes through :meth:`Field.to_python` and
the stored value is always the normalized one.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional, Sequence, cast

if TYPE_CHECKING:
    from .model import Model


class FieldError(Exception):
    """Raised when a field is used before it is bound to a model."""


class Field:
    """
    Base descriptor. Subclasses set ``column_type`` and override
    :meth:`coerce`; ``None`` never reaches :meth:`coerce`.
    """

    column_type: Optional[str] = None
    is_relation = False
    is_version = False
    _counter = 0

    def __init__(
        self,
        *,
        primary_key: bool = False,
        unique: bool = False,
        nullable: bool = True,
        default: Any = None,
        db_type: Optional[str] = None,
        db_column: Optional[str] = None,
        db_default: Any = None,
        choices: Optional[Sequence[Any]] = None,
    ) -> None:
        self.primary_key = primary_key
        self.unique = unique
        self.nullable = nullable
        self.default = default
        self.db_type = db_type or self.column_type
        self.db_column = db_column
        self.db_default = db_default
        self.choices = None if choices is None else tuple(choices)

        self.model: type["Model"] | None = None
        self.name: str | None = None
        # declaration order; the metaclass sorts fields by it
        self.creation_counter = Field._counter
        Field._counter += 1

    def __repr__(self) -> str:
        model_name = self.model.__name__ if self.model is not None else "?"
        return f"<{type(self).__name__} {model_name}.{self.name}>"

    # ---- descriptor -------------------------------------------------- #
    def __get__(self, instance: object | None, owner: type | None = None) -> Any:
        if instance is None:
            return self
        values = cast("Model", instance)._field_values
        name = self.require_name()
        if name in values:
            return values[name]
        default = self.get_default()
        if default is not None:
            values[name] = default
        return default

    def __set__(self, instance: object, value: Any) -> None:
        values = cast("Model", instance)._field_values
        name = self.require_name()
        if value is None and not (self.nullable or self.primary_key):
            raise ValueError(f"Field '{name}' cannot be None")
        if value is not None and self.choices is not None and value not in self.choices:
            raise ValueError(f"Value '{value}' for field '{name}' not in choices {self.choices}")
        values[name] = self.to_python(value)

    # ---- binding ----------------------------------------------------- #
    def bind(self, model: type["Model"], name: str) -> None:
        self.model = model
        self.name = name
        self.db_column = self.db_column or name

    def contribute_to_class(self, model: type["Model"], name: str) -> None:
        self.bind(model, name)
        setattr(model, name, self)

    def require_name(self) -> str:
        if self.name is None:
            raise FieldError(f"{type(self).__name__} is not bound to a model")
        return self.name

    def column_name(self) -> str:
        return self.db_column or self.require_name()

    # ---- values ------------------------------------------------------ #
    @property
    def has_default(self) -> bool:
        return self.default is not None

    def get_default(self) -> Any:
        return self.default() if callable(self.default) else self.default

    def to_python(self, value: Any) -> Any:
        return None if value is None else self.coerce(value)

    def coerce(self, value: Any) -> Any:
        return value

    def _invalid(self, kind: str, value: Any) -> ValueError:
        return ValueError(f"Invalid {kind} value '{value}' for field '{self.name}'")


class IntegerField(Field):
    column_type = "INTEGER"

    def coerce(self, value: Any) -> int:
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise self._invalid("integer", value) from exc


class AutoField(IntegerField):
    """Generated integer key added to models that declare no primary key."""

    def __init__(self) -> None:
        super().__init__(primary_key=True, nullable=False)


class VersionField(IntegerField):
    """
    Optimistic-lock counter. Inserts write 1 and every update writes the
    next value while matching the previous one in the row guard.
    """

    is_version = True


class FloatField(Field):
    column_type = "REAL"

    def coerce(self, value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise self._invalid("float", value) from exc


_TRUE_STRINGS = frozenset({"true", "t", "1"})
_FALSE_STRINGS = frozenset({"false", "f", "0"})


class BooleanField(Field):
    column_type = "BOOLEAN"

    def __init__(self, *, default: Any = False, nullable: bool = False, **kwargs: Any) -> None:
        super().__init__(default=default, nullable=nullable, **kwargs)

    def coerce(self, value: Any) -> bool:
        if isinstance(value, (bool, int, float)):
            return bool(value)
        text = str(value).lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
        raise self._invalid("boolean", value)


class StringField(Field):
    column_type = "TEXT"

    def __init__(self, *, max_length: int = 255, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.max_length = max_length

    def coerce(self, value: Any) -> str:
        text = str(value)
        if self.max_length and len(text) > self.max_length:
            raise ValueError(
                f"Value for field '{self.require_name()}' exceeds max_length {self.max_length}"
            )
        return text


class DateTimeField(Field):
    """
    Timestamp stored as ISO-8601 text. ``auto_now``/``auto_now_add`` default
    to the current UTC time when the entity is built.
    """

    column_type = "TEXT"

    def __init__(self, *, auto_now: bool = False, auto_now_add: bool = False, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.auto_now = auto_now
        self.auto_now_add = auto_now_add

    @property
    def has_default(self) -> bool:
        return self.auto_now or self.auto_now_add or self.default is not None

    def get_default(self) -> Any:
        if self.auto_now or self.auto_now_add:
            return datetime.now(timezone.utc)
        return super().get_default()

    def coerce(self, value: Any) -> datetime:
        if isinstance(value, datetime):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Expected datetime for field '{self.name}', received {value!r}")
        try:
            return datetime.fromisoformat(value)
        except ValueError as exc:
            raise self._invalid("datetime", value) from exc
