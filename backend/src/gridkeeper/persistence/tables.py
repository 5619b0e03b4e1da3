"""SQLAlchemy Core tables built from entity schemas."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.types import TypeDecorator

from gridkeeper.core.types import get_storage_type
from gridkeeper.metadata.loader import EntityModel, FieldDefinition
from gridkeeper.metadata.registry import SchemaRegistry


class JsonText(TypeDecorator):
    """JSON stored as compact text so list membership can be matched portably."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> str | None:
        if value is None:
            return None
        return json.dumps(value, separators=(",", ":"), sort_keys=True)

    def process_result_value(self, value: str | None, dialect: Any) -> Any:
        if value is None:
            return None
        return json.loads(value)


# Storage type -> SQLAlchemy column type
STORAGE_TYPES: dict[str, Any] = {
    "TEXT": String,
    "INTEGER": Integer,
    "BIGINT": BigInteger,
    "REAL": Float,
    "BOOLEAN": Boolean,
    "TIMESTAMP": DateTime,
    "JSON": JsonText,
}


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def column_type(field_def: FieldDefinition) -> Any:
    if field_def.list:
        return JsonText()
    return STORAGE_TYPES[get_storage_type(field_def.type)]()


def join_columns(owner: EntityModel, target: EntityModel) -> tuple[str, str]:
    """Column names of a many-to-many join table: (owner side, target side)."""
    return f"{owner.table}_id", f"{target.table}_id"


class EntityTables:
    """Table objects for every entity and many-to-many join table."""

    def __init__(self, registry: SchemaRegistry):
        self.registry = registry
        self.metadata = MetaData()
        self._tables: dict[str, Table] = {}
        self._join_tables: dict[tuple[str, str], Table] = {}
        self._build()

    def _build(self) -> None:
        entities = [self.registry.require_entity(n) for n in self.registry.list_entities()]
        for entity in entities:
            columns = []
            for f in entity.fields:
                args: list[Any] = []
                if f.relation is not None:
                    target = self.registry.require_entity(f.relation.entity)
                    args.append(ForeignKey(f"{target.table}.{target.primary_key}"))
                columns.append(
                    Column(
                        f.name,
                        column_type(f),
                        *args,
                        primary_key=f.primary_key,
                        nullable=f.nullable or f.list,
                        default=_utcnow if f.auto == "now" else f.default,
                    )
                )
            self._tables[entity.name] = Table(entity.table, self.metadata, *columns)

        for entity in entities:
            for m2m in entity.many_to_many:
                target = self.registry.require_entity(m2m.entity)
                owner_col, target_col = join_columns(entity, target)
                self._join_tables[(entity.name, m2m.name)] = Table(
                    m2m.through,
                    self.metadata,
                    Column(
                        owner_col,
                        ForeignKey(f"{entity.table}.{entity.primary_key}"),
                        primary_key=True,
                    ),
                    Column(
                        target_col,
                        ForeignKey(f"{target.table}.{target.primary_key}"),
                        primary_key=True,
                    ),
                )

    def table(self, entity_name: str) -> Table:
        entity = self.registry.require_entity(entity_name)
        return self._tables[entity.name]

    def join_table(self, entity_name: str, relation: str) -> Table:
        entity = self.registry.require_entity(entity_name)
        return self._join_tables[(entity.name, relation)]

    def create_all(self, engine: Engine) -> None:
        self.metadata.create_all(engine)
