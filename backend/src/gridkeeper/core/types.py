"""Field type registry with storage and query defaults."""

from dataclasses import dataclass


@dataclass
class FieldType:
    name: str
    storage_type: str
    query_operators: list[str]
    text: bool = False


_COMPARISON = ["equals", "not", "in", "notIn", "lt", "lte", "gt", "gte", "between"]
_TEXT = ["equals", "not", "in", "notIn", "contains", "startsWith", "endsWith"]
_NULLS = ["isNull", "isNotNull"]

# Built-in field types
FIELD_TYPES: dict[str, FieldType] = {
    "String": FieldType(
        name="String",
        storage_type="TEXT",
        query_operators=_TEXT + _NULLS,
        text=True,
    ),
    "Int": FieldType(
        name="Int",
        storage_type="INTEGER",
        query_operators=_COMPARISON + _NULLS,
    ),
    "BigInt": FieldType(
        name="BigInt",
        storage_type="BIGINT",
        query_operators=_COMPARISON + _NULLS,
    ),
    "Float": FieldType(
        name="Float",
        storage_type="REAL",
        query_operators=_COMPARISON + _NULLS,
    ),
    "Boolean": FieldType(
        name="Boolean",
        storage_type="BOOLEAN",
        query_operators=["equals", "not"] + _NULLS,
    ),
    "DateTime": FieldType(
        name="DateTime",
        storage_type="TIMESTAMP",
        query_operators=_COMPARISON + _NULLS,
    ),
    "Json": FieldType(
        name="Json",
        storage_type="JSON",  # Untyped payload; compiler falls back to value shape
        query_operators=["equals", "hasSome", "isEmpty"] + _NULLS,
    ),
    "Enum": FieldType(
        name="Enum",
        storage_type="TEXT",
        query_operators=["equals", "not", "in", "notIn"] + _NULLS,
    ),
}

LIST_OPERATORS = ["hasSome", "isEmpty"]


def get_field_type(type_name: str) -> FieldType:
    """Get field type definition, defaulting to Json (untyped) if unknown."""
    return FIELD_TYPES.get(type_name, FIELD_TYPES["Json"])


def get_storage_type(type_name: str) -> str:
    """Get the storage type for a field type."""
    return get_field_type(type_name).storage_type


def is_known_type(type_name: str) -> bool:
    return type_name in FIELD_TYPES
