"""Prune filters, sort specs and column lists against an allow-list.

Nothing in here raises for forbidden input: conditions on columns the
caller may not see, unknown operators and malformed sort entries are
dropped silently and logged at DEBUG.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from gridkeeper.query.filters import (
    ALLOWED_OPERATORS,
    Condition,
    Connector,
    ConnectorOp,
    FilterNode,
    parse_filter,
)

if TYPE_CHECKING:
    from gridkeeper.metadata.registry import SchemaRegistry

logger = logging.getLogger(__name__)

SORT_DIRECTIONS = ("asc", "desc")


@dataclass
class SortSpec:
    column: str
    direction: str = "asc"

    def to_dict(self) -> dict[str, str]:
        return {self.column: self.direction}


class AllowList:
    """Membership test for column paths, in canonical form when a root is known."""

    def __init__(
        self,
        columns: Iterable[str],
        root: str | None = None,
        registry: SchemaRegistry | None = None,
    ):
        self._root = root if registry is not None else None
        self._registry = registry
        self._columns = [self._normalize(c) or c for c in columns]
        self._members = set(self._columns)

    def _normalize(self, column: str) -> str | None:
        if self._registry is None or self._root is None:
            return column
        return self._registry.canonical(self._root, column)

    def canonical(self, column: Any) -> str | None:
        """Canonical path for ``column`` if it is allowed, else None."""
        if not isinstance(column, str) or not column:
            return None
        normalized = self._normalize(column)
        if normalized is None or normalized not in self._members:
            return None
        return normalized

    def __contains__(self, column: object) -> bool:
        return self.canonical(column) is not None

    def __iter__(self):
        return iter(self._columns)

    def __len__(self) -> int:
        return len(self._columns)


def _as_allow_list(allowed: AllowList | Iterable[str]) -> AllowList:
    if isinstance(allowed, AllowList):
        return allowed
    return AllowList(allowed)


def sanitize(
    tree: FilterNode | None,
    allowed: AllowList | Iterable[str],
) -> FilterNode | None:
    """Return a copy of ``tree`` keeping only allowed conditions.

    Connectors left with no children are removed. Single-child AND/OR
    connectors are kept as written.
    """
    allow = _as_allow_list(allowed)
    return _prune(tree, allow)


def _prune(node: FilterNode | None, allow: AllowList) -> FilterNode | None:
    if node is None:
        return None

    if isinstance(node, Condition):
        column = allow.canonical(node.column)
        if column is None:
            logger.debug("Pruned condition on disallowed column '%s'", node.column)
            return None
        if node.operator not in ALLOWED_OPERATORS:
            logger.debug("Pruned condition with unsupported operator '%s'", node.operator)
            return None
        return Condition(column=column, operator=node.operator, value=node.value, mode=node.mode)

    children = [c for c in (_prune(child, allow) for child in node.children) if c is not None]
    if not children:
        return None
    return Connector(op=node.op, children=children)


def sanitize_filter(
    raw: Any,
    allowed: AllowList | Iterable[str],
) -> FilterNode | None:
    """Parse and prune a raw client filter.

    A top-level dict may carry at most one connector key (AND / OR / NOT);
    a payload with several is rejected as a whole and yields no filter.
    """
    if isinstance(raw, dict):
        connector_keys = [k for k in raw if isinstance(k, str) and k.upper() in ConnectorOp.__members__]
        if len(connector_keys) > 1:
            logger.debug("Rejected filter with multiple top-level connectors: %s", connector_keys)
            return None
    return sanitize(parse_filter(raw), allowed)


def _sort_entries(raw: Any) -> list[tuple[Any, Any]]:
    if isinstance(raw, dict):
        if "column" in raw:
            return [(raw.get("column"), raw.get("direction", "asc"))]
        return list(raw.items())
    if isinstance(raw, list):
        entries: list[tuple[Any, Any]] = []
        for item in raw:
            if isinstance(item, dict):
                entries.extend(_sort_entries(item))
        return entries
    return []


def sanitize_sort(
    raw: Any,
    allowed: AllowList | Iterable[str],
) -> list[SortSpec]:
    """Keep allowed sort entries whose direction is exactly ``asc`` or ``desc``.

    Accepts ``[{"col": "desc"}]``, ``{"col": "desc"}`` or
    ``[{"column": "col", "direction": "desc"}]``. Order is preserved and
    duplicates are kept.
    """
    allow = _as_allow_list(allowed)
    result: list[SortSpec] = []
    for column, direction in _sort_entries(raw):
        if direction not in SORT_DIRECTIONS:
            logger.debug("Pruned sort on '%s' with direction %r", column, direction)
            continue
        canonical = allow.canonical(column)
        if canonical is None:
            logger.debug("Pruned sort on disallowed column '%s'", column)
            continue
        result.append(SortSpec(column=canonical, direction=direction))
    return result


def sanitize_columns(
    raw: Any,
    allowed: AllowList | Iterable[str],
) -> list[str]:
    """Keep allowed columns in request order, dropping duplicates."""
    allow = _as_allow_list(allowed)
    if not isinstance(raw, list):
        return []
    seen: set[str] = set()
    result: list[str] = []
    for column in raw:
        canonical = allow.canonical(column)
        if canonical is None or canonical in seen:
            continue
        seen.add(canonical)
        result.append(canonical)
    return result
