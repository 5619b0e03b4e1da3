"""Schema registry: relation graph, dotted path resolution and column maps.

Wraps a loaded ``MetadataLoader`` and answers the questions the query layer
asks about entities:

* which tables are reachable from a root entity, and through which relation
  path (breadth-first over to-one relations, at most two hops);
* what a dotted path such as ``vendor.name`` refers to under a given root;
* the ordered column map (canonical path -> type label) a client may request.

Canonical paths use bare names for root columns and ``table.column`` for
columns of related tables. Table matching is case-insensitive.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from gridkeeper.errors import UnknownEntity
from gridkeeper.metadata.loader import (
    EntityModel,
    FieldDefinition,
    ManyToManyConfig,
    MetadataLoader,
)

logger = logging.getLogger(__name__)

MAX_RELATION_DEPTH = 2


class EntityKind(str, Enum):
    """Resources exposed through views."""

    CLIENT = "client"
    VENDOR = "vendor"
    SITE = "site"
    ORDER = "order"

    @classmethod
    def parse(cls, value: str) -> EntityKind:
        """Parse a resource name, raising UnknownEntity for anything unsupported."""
        try:
            return cls(value.lower())
        except ValueError:
            raise UnknownEntity(value) from None


@dataclass(frozen=True)
class ResolvedPath:
    """A dotted path resolved against a root entity.

    Attributes:
        canonical: Canonical form of the path (``website`` or ``vendor.name``)
        relation_path: Relation names walked from the root (``()`` for root columns)
        entity: Entity owning the column
        field: Scalar/enum field, or None for a many-to-many column
        many_to_many: Many-to-many relation, or None for a scalar column
    """

    canonical: str
    relation_path: tuple[str, ...]
    entity: EntityModel
    field: FieldDefinition | None = None
    many_to_many: ManyToManyConfig | None = None

    @property
    def column(self) -> str:
        if self.field is not None:
            return self.field.name
        return self.many_to_many.name  # type: ignore[union-attr]

    @property
    def is_many_to_many(self) -> bool:
        return self.many_to_many is not None

    @property
    def is_label(self) -> bool:
        return self.field is not None and self.entity.label_field == self.field.name


class SchemaRegistry:
    """Read-only view over entity schemas. Results are memoized per root."""

    def __init__(self, loader: MetadataLoader):
        self._loader = loader
        self._reachable: dict[str, dict[str, tuple[str, ...]]] = {}
        self._columns: dict[str, dict[str, str]] = {}

    @classmethod
    def load(cls, metadata_path: Path | None = None) -> SchemaRegistry:
        loader = MetadataLoader(metadata_path)
        loader.load_all()
        logger.debug("Loaded %d entity schemas", len(loader.entities))
        return cls(loader)

    @property
    def loader(self) -> MetadataLoader:
        return self._loader

    def list_entities(self) -> list[str]:
        return self._loader.list_entities()

    def get_entity(self, name: str) -> EntityModel | None:
        return self._loader.get_entity(name)

    def require_entity(self, name: str | EntityKind) -> EntityModel:
        key = name.value if isinstance(name, EntityKind) else name
        entity = self._loader.get_entity(key)
        if entity is None:
            raise UnknownEntity(key)
        return entity

    # ------------------------------------------------------------------
    # Relation graph
    # ------------------------------------------------------------------

    def reachable_tables(self, root: str) -> dict[str, tuple[str, ...]]:
        """Map each table reachable from ``root`` to the relation path leading to it."""
        entity = self.require_entity(root)
        cached = self._reachable.get(entity.name)
        if cached is not None:
            return cached

        result: dict[str, tuple[str, ...]] = {entity.table.lower(): ()}
        queue: deque[tuple[EntityModel, tuple[str, ...]]] = deque([(entity, ())])
        while queue:
            current, path = queue.popleft()
            if len(path) >= MAX_RELATION_DEPTH:
                continue
            for rel in current.relations:
                target = self.require_entity(rel.entity)
                table = target.table.lower()
                if table in result:
                    continue
                result[table] = path + (rel.name,)
                queue.append((target, path + (rel.name,)))

        self._reachable[entity.name] = result
        return result

    def entity_at(self, root: str, relation_path: tuple[str, ...]) -> EntityModel:
        """Walk ``relation_path`` from ``root`` and return the entity reached."""
        entity = self.require_entity(root)
        for name in relation_path:
            rel = entity.get_relation(name)
            if rel is None:
                raise UnknownEntity(name)
            entity = self.require_entity(rel.entity)
        return entity

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def resolve_path(self, root: str, path: str) -> ResolvedPath | None:
        """Resolve a dotted path under ``root``; None if unknown or unreachable."""
        entity = self.get_entity(root)
        if entity is None or not path:
            return None

        table, _, column = path.rpartition(".")
        table = table.lower()
        reachable = self.reachable_tables(entity.name)
        if not table:
            table = entity.table.lower()
        if table not in reachable:
            return None

        relation_path = reachable[table]
        owner = self.entity_at(entity.name, relation_path)
        canonical = column if not relation_path else f"{owner.table}.{column}"

        field = owner.get_field(column)
        if field is not None:
            return ResolvedPath(canonical, relation_path, owner, field=field)
        m2m = owner.get_many_to_many(column)
        if m2m is not None:
            return ResolvedPath(canonical, relation_path, owner, many_to_many=m2m)
        return None

    def canonical(self, root: str, path: str) -> str | None:
        resolved = self.resolve_path(root, path)
        return resolved.canonical if resolved else None

    # ------------------------------------------------------------------
    # Column map
    # ------------------------------------------------------------------

    def columns(self, root: str) -> dict[str, str]:
        """Ordered canonical path -> type label for every column reachable from ``root``."""
        entity = self.require_entity(root)
        cached = self._columns.get(entity.name)
        if cached is not None:
            return cached

        result: dict[str, str] = {}
        for table, relation_path in self.reachable_tables(entity.name).items():
            owner = self.entity_at(entity.name, relation_path)
            prefix = f"{owner.table}." if relation_path else ""
            for f in owner.fields:
                result[prefix + f.name] = f.type_label
            for m2m in owner.many_to_many:
                result[prefix + m2m.name] = f"{m2m.entity}[]"

        self._columns[entity.name] = result
        return result

    def column_paths(self, root: str) -> list[str]:
        return list(self.columns(root).keys())
