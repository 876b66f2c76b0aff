"""
Core building blocks for emberorm models and metadata handling.
"""

from .collection import Collection
from .fields import (
    AutoField,
    BooleanField,
    DateTimeField,
    Field,
    FloatField,
    IntegerField,
    StringField,
    VersionField,
)
from .helpers import diff_entities, extract_pk, get_primary_key_hash, is_entity, prepare_entity, unwrap_reference
from .model import Model, ModelConfigurationError, ModelMeta, ModelOptions
from .reference import Reference
from .relations import (
    Cascade,
    ForeignKey,
    ManyToManyField,
    OneToMany,
    OneToOneField,
    RelationKind,
    RelationshipError,
    relation_registry,
)

__all__ = [
    "AutoField",
    "BooleanField",
    "Cascade",
    "Collection",
    "DateTimeField",
    "Field",
    "FloatField",
    "ForeignKey",
    "IntegerField",
    "ManyToManyField",
    "Model",
    "ModelConfigurationError",
    "ModelMeta",
    "ModelOptions",
    "OneToMany",
    "OneToOneField",
    "Reference",
    "RelationKind",
    "RelationshipError",
    "StringField",
    "VersionField",
    "diff_entities",
    "extract_pk",
    "get_primary_key_hash",
    "is_entity",
    "prepare_entity",
    "relation_registry",
    "unwrap_reference",
]
