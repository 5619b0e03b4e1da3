"""Load and resolve entity schemas from YAML files."""

from __future__ import annotations

from pathlib import Path
from dataclasses import dataclass, field
from typing import Any
import yaml

from gridkeeper.core.types import is_known_type

DEFAULT_METADATA_PATH = Path(__file__).parent / "definitions"


@dataclass
class RelationConfig:
    """A one-hop forward (to-one) relation carried by a foreign key field."""

    name: str  # Relation name, e.g. "vendor"
    entity: str  # The related entity name
    foreign_key: str = ""  # Field on the owning entity holding the target id


@dataclass
class ManyToManyConfig:
    """A many-to-many relation resolved through a join table."""

    name: str
    entity: str
    through: str  # Join table name


@dataclass
class FieldDefinition:
    name: str
    type: str
    display_name: str
    primary_key: bool = False
    nullable: bool = False
    list: bool = False
    default: Any = None
    auto: str | None = None  # "now"
    enum: str | None = None
    options: list[str] | None = None
    relation: RelationConfig | None = None

    @property
    def is_identifier(self) -> bool:
        """Primary keys and foreign keys are identifiers, never free text."""
        return self.primary_key or self.relation is not None

    @property
    def type_label(self) -> str:
        """Type string as exposed to clients: ``Enum(X)``, ``Int?``, ``String[]``."""
        label = f"Enum({self.enum})" if self.type == "Enum" else self.type
        if self.list:
            return label + "[]"
        if self.nullable:
            return label + "?"
        return label


@dataclass
class EntityModel:
    name: str
    table: str
    display_name: str
    primary_key: str
    fields: list[FieldDefinition]
    relations: list[RelationConfig] = field(default_factory=list)
    many_to_many: list[ManyToManyConfig] = field(default_factory=list)
    label_field: str | None = None  # Human-readable label column, compared case-insensitively

    def get_field(self, name: str) -> FieldDefinition | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def get_relation(self, name: str) -> RelationConfig | None:
        for rel in self.relations:
            if rel.name == name:
                return rel
        return None

    def get_many_to_many(self, name: str) -> ManyToManyConfig | None:
        for rel in self.many_to_many:
            if rel.name == name:
                return rel
        return None


class MetadataLoader:
    """Loads entity definitions from YAML files."""

    def __init__(self, metadata_path: Path | None = None):
        self.metadata_path = metadata_path or DEFAULT_METADATA_PATH
        self.entities: dict[str, EntityModel] = {}

    def load_all(self) -> None:
        """Load all entities and check cross-entity references."""
        self._load_entities()
        self._validate_tables()
        self._validate_relations()

    def _load_entities(self) -> None:
        entities_path = self.metadata_path / "entities"
        if not entities_path.exists():
            return

        for yaml_file in sorted(entities_path.glob("*.yaml")):
            with open(yaml_file) as f:
                data = yaml.safe_load(f)
                if data and "entity" in data:
                    entity = self._resolve_entity(data)
                    self.entities[entity.name] = entity

    def _validate_tables(self) -> None:
        """Table names must be unique, case-insensitively."""
        seen: dict[str, str] = {}  # lowercased table -> entity name
        for entity_name, entity in self.entities.items():
            key = entity.table.lower()
            if key in seen:
                raise ValueError(
                    f"Duplicate table '{entity.table}' used by both "
                    f"'{seen[key]}' and '{entity_name}'"
                )
            seen[key] = entity_name

    def _validate_relations(self) -> None:
        for entity_name, entity in self.entities.items():
            for rel in entity.relations:
                if rel.entity not in self.entities:
                    raise ValueError(
                        f"Entity '{entity_name}' relation '{rel.name}' targets "
                        f"unknown entity '{rel.entity}'"
                    )
                if entity.get_field(rel.name) is not None:
                    raise ValueError(
                        f"Entity '{entity_name}' relation '{rel.name}' collides with a field"
                    )
            for m2m in entity.many_to_many:
                if m2m.entity not in self.entities:
                    raise ValueError(
                        f"Entity '{entity_name}' relation '{m2m.name}' targets "
                        f"unknown entity '{m2m.entity}'"
                    )

    def _resolve_entity(self, data: dict) -> EntityModel:
        """Resolve an entity definition."""
        name = data["entity"]
        fields = [self._resolve_field(f, name) for f in data.get("fields", [])]

        primary_key = "id"
        for f in fields:
            if f.primary_key:
                primary_key = f.name
                break

        relations = [f.relation for f in fields if f.relation is not None]

        many_to_many = [
            ManyToManyConfig(
                name=m["name"],
                entity=m["entity"],
                through=m.get("through") or f"_{name.lower()}_{m['name']}",
            )
            for m in data.get("manyToMany", [])
        ]

        # Determine label field: explicit YAML value, or a field literally called "name"
        label_field: str | None = data.get("labelField")
        if not label_field:
            for f in fields:
                if f.name == "name":
                    label_field = f.name
                    break
        if label_field and not any(f.name == label_field for f in fields):
            raise ValueError(f"Entity '{name}' label field '{label_field}' is not a field")

        return EntityModel(
            name=name,
            table=data.get("table", name.lower()),
            display_name=data.get("displayName", name),
            primary_key=primary_key,
            fields=fields,
            relations=relations,
            many_to_many=many_to_many,
            label_field=label_field,
        )

    def _resolve_field(self, data: dict, entity_name: str) -> FieldDefinition:
        """Convert field dict to FieldDefinition."""
        name = data["name"]
        field_type = data.get("type", "String")
        if not is_known_type(field_type):
            raise ValueError(f"Entity '{entity_name}' field '{name}' has unknown type '{field_type}'")

        enum_name = data.get("enum")
        options = data.get("options")
        if field_type == "Enum" and (not enum_name or not options):
            raise ValueError(
                f"Entity '{entity_name}' enum field '{name}' must declare 'enum' and 'options'"
            )

        relation_data = data.get("relation")
        relation = None
        if relation_data:
            relation = RelationConfig(
                name=relation_data["name"],
                entity=relation_data["entity"],
                foreign_key=name,
            )

        return FieldDefinition(
            name=name,
            type=field_type,
            display_name=data.get("displayName", self._to_display_name(name)),
            primary_key=data.get("primaryKey", False),
            nullable=data.get("nullable", False),
            list=data.get("list", False),
            default=data.get("default"),
            auto=data.get("auto"),
            enum=enum_name,
            options=[str(o) for o in options] if options else None,
            relation=relation,
        )

    def _to_display_name(self, name: str) -> str:
        """Convert camelCase to Title Case."""
        result = []
        for i, char in enumerate(name):
            if char.isupper() and i > 0:
                result.append(" ")
            result.append(char)
        return "".join(result).title()

    def get_entity(self, name: str) -> EntityModel | None:
        """Get a resolved entity by entity name or table name, case-insensitively."""
        entity = self.entities.get(name)
        if entity:
            return entity
        lowered = name.lower()
        for candidate in self.entities.values():
            if candidate.name.lower() == lowered or candidate.table.lower() == lowered:
                return candidate
        return None

    def list_entities(self) -> list[str]:
        """List all entity names."""
        return list(self.entities.keys())

    def to_dict(self, name: str) -> dict[str, Any] | None:
        entity = self.get_entity(name)
        if not entity:
            return None
        return {
            "name": entity.name,
            "table": entity.table,
            "primaryKey": entity.primary_key,
            "labelField": entity.label_field,
            "fields": [
                {"name": f.name, "type": f.type_label, "displayName": f.display_name}
                for f in entity.fields
            ],
            "relations": [{"name": r.name, "entity": r.entity} for r in entity.relations],
            "manyToMany": [
                {"name": m.name, "entity": m.entity, "through": m.through}
                for m in entity.many_to_many
            ],
        }
