"""Entity schema loading and the schema registry."""

from gridkeeper.metadata.loader import (
    EntityModel,
    FieldDefinition,
    ManyToManyConfig,
    MetadataLoader,
    RelationConfig,
)
from gridkeeper.metadata.registry import EntityKind, ResolvedPath, SchemaRegistry

__all__ = [
    "EntityKind",
    "EntityModel",
    "FieldDefinition",
    "ManyToManyConfig",
    "MetadataLoader",
    "RelationConfig",
    "ResolvedPath",
    "SchemaRegistry",
]
