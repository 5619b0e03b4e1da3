"""Shape query results for API responses."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from gridkeeper.metadata.registry import SchemaRegistry


def to_jsonable(value: Any) -> Any:
    """Dates become ISO-8601 strings; containers are converted recursively."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def flatten_row(
    registry: SchemaRegistry,
    root: str,
    row: dict[str, Any],
    path: tuple[str, ...] = (),
) -> dict[str, Any]:
    """Flatten a nested row to canonical column keys (``website``, ``vendor.name``)."""
    entity = registry.entity_at(root, path)
    prefix = f"{entity.table}." if path else ""
    flat: dict[str, Any] = {}
    for key, value in row.items():
        if entity.get_relation(key) is not None:
            if isinstance(value, dict):
                flat.update(flatten_row(registry, root, value, path + (key,)))
            continue
        flat[prefix + key] = value
    return flat


def order_columns(selected: list[str], preferred: list[str]) -> list[str]:
    """Selected columns in ``preferred`` order, then any left over in their own order."""
    chosen = set(selected)
    ordered = [c for c in preferred if c in chosen]
    seen = set(ordered)
    ordered.extend(c for c in selected if c not in seen)
    return ordered


def shape_rows(
    registry: SchemaRegistry,
    root: str,
    rows: list[dict[str, Any]],
    columns: list[str],
) -> list[dict[str, Any]]:
    """Flatten rows and emit exactly ``columns``, in order, JSON-ready."""
    shaped = []
    for row in rows:
        flat = flatten_row(registry, root, row)
        shaped.append({c: to_jsonable(flat.get(c)) for c in columns})
    return shaped
