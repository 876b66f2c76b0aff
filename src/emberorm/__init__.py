"""
emberorm public package initialization.

Models declare fields and relations; a :class:`Session` tracks them through
its unit of work and flushes ordered change sets through a storage driver.
"""

from .core.model import Model, ModelConfigurationError  # noqa: F401
from .core.fields import (
    AutoField,
    BooleanField,
    DateTimeField,
    FloatField,
    IntegerField,
    StringField,
    VersionField,
)  # noqa: F401
from .core.collection import Collection  # noqa: F401
from .core.reference import Reference  # noqa: F401
from .core.relations import (
    Cascade,
    ForeignKey,
    ManyToManyField,
    OneToMany,
    OneToOneField,
)  # noqa: F401
from .drivers import InMemoryDriver, SQLDriver  # noqa: F401
from .hooks import hooks  # noqa: F401
from .persistence import (
    LockMode,
    OptimisticLockError,
    PersistenceError,
    Session,
    SessionConfig,
)  # noqa: F401
from .schema import SchemaBuilder  # noqa: F401

__all__ = [
    "Model",
    "AutoField",
    "BooleanField",
    "DateTimeField",
    "FloatField",
    "IntegerField",
    "StringField",
    "VersionField",
    "Collection",
    "Reference",
    "Cascade",
    "ForeignKey",
    "OneToOneField",
    "OneToMany",
    "ManyToManyField",
    "ModelConfigurationError",
    "InMemoryDriver",
    "SQLDriver",
    "LockMode",
    "OptimisticLockError",
    "PersistenceError",
    "Session",
    "SessionConfig",
    "SchemaBuilder",
    "hooks",
]
