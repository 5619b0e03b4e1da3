"""Compile sanitized view parameters into a nested query descriptor.

The descriptor mirrors a relational ORM's nested argument shape::

    select   = {"website": True, "vendor": {"select": {"name": True}}}
    where    = {"AND": [{"vendor": {"name": {"equals": "Acme", "mode": "insensitive"}}}]}
    order_by = [{"costPrice": "desc"}]

Related columns are nested under the relation path that reaches their
table from the root entity. Paths the schema registry cannot resolve are
dropped. The compiler is pure: it never touches the database and never
raises for well-typed input.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from gridkeeper.core.types import get_field_type
from gridkeeper.metadata.loader import FieldDefinition
from gridkeeper.metadata.registry import EntityKind, ResolvedPath, SchemaRegistry
from gridkeeper.query.filters import Condition, ConnectorOp, FilterNode
from gridkeeper.query.sanitizer import SortSpec

logger = logging.getLogger(__name__)

INSENSITIVE = "insensitive"

# Fallback date detection for columns without a declared temporal type
ISO_DATE_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?$"
)

TEXT_MATCH_OPERATORS = ("contains", "startsWith", "endsWith")
SCALAR_OPERATORS = frozenset({
    "equals", "not", "in", "notIn", "lt", "lte", "gt", "gte",
    "contains", "startsWith", "endsWith",
})
# Json columns hold serialized text; only whole-value and substring matches apply
JSON_OPERATORS = ("equals", "contains")


def looks_like_date(value: Any) -> bool:
    return isinstance(value, str) and ISO_DATE_RE.match(value) is not None


@dataclass
class QueryDescriptor:
    """Nested select/where/orderBy arguments for one entity."""

    entity: str
    select: dict[str, Any] = field(default_factory=dict)
    where: dict[str, Any] = field(default_factory=dict)
    order_by: list[dict[str, Any]] = field(default_factory=list)

    def count_args(self) -> dict[str, Any]:
        """Arguments for the matching count query: the same predicate, nothing else."""
        return {"where": self.where}

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "select": self.select,
            "where": self.where,
            "orderBy": self.order_by,
        }


def _nest(relation_path: tuple[str, ...], leaf: dict[str, Any]) -> dict[str, Any]:
    for name in reversed(relation_path):
        leaf = {name: leaf}
    return leaf


def _is_collection(field_def: FieldDefinition) -> bool:
    return field_def.list or field_def.type == "Json"


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


class QueryCompiler:
    """Translates filter trees, sort specs and projections into descriptors."""

    def __init__(self, registry: SchemaRegistry):
        self.registry = registry

    def compile(
        self,
        entity: str | EntityKind,
        projection: list[str],
        filter: FilterNode | None = None,
        sort: list[SortSpec] | None = None,
        global_search: str | None = None,
        *,
        searchable: list[str] | None = None,
        exclude: list[str] | None = None,
    ) -> QueryDescriptor:
        """Build a descriptor.

        Args:
            entity: Root entity (name, table or EntityKind)
            projection: Sanitized columns to select
            filter: Sanitized filter tree
            sort: Sanitized sort specs, in priority order
            global_search: Free text matched against searchable text columns
            searchable: Columns eligible for global search (default: projection)
            exclude: When given, select everything in ``projection`` except these
        """
        root = self.registry.require_entity(entity.value if isinstance(entity, EntityKind) else entity)

        if exclude is not None:
            select = self.compile_select_excluding(root.name, projection, exclude)
        else:
            select = self.compile_select(root.name, projection)

        where = self.compile_where(root.name, filter)
        if global_search is not None and global_search.strip():
            search = self.compile_search(
                root.name,
                searchable if searchable is not None else projection,
                global_search.strip(),
            )
            where = {"AND": [where, search]} if where else search

        return QueryDescriptor(
            entity=root.name,
            select=select,
            where=where,
            order_by=self.compile_order_by(root.name, sort or []),
        )

    # ------------------------------------------------------------------
    # Select
    # ------------------------------------------------------------------

    def _select_node(self, select: dict[str, Any], relation_path: tuple[str, ...]) -> dict[str, Any]:
        node = select
        for name in relation_path:
            child = node.get(name)
            if not isinstance(child, dict):
                child = {"select": {}}
                node[name] = child
            node = child["select"]
        return node

    def _add_to_select(self, select: dict[str, Any], resolved: ResolvedPath) -> None:
        node = self._select_node(select, resolved.relation_path)
        if resolved.many_to_many is not None:
            target = self.registry.require_entity(resolved.many_to_many.entity)
            sub = {target.primary_key: True}
            if target.label_field:
                sub[target.label_field] = True
            node[resolved.column] = {"select": sub}
        else:
            node[resolved.column] = True

    def compile_select(self, root: str, projection: list[str]) -> dict[str, Any]:
        select: dict[str, Any] = {}
        for column in projection:
            resolved = self.registry.resolve_path(root, column)
            if resolved is None:
                logger.debug("Dropped unknown column '%s' from %s projection", column, root)
                continue
            self._add_to_select(select, resolved)
        return select

    def compile_select_excluding(
        self,
        root: str,
        projection: list[str],
        exclude: list[str],
    ) -> dict[str, Any]:
        """Select all of ``projection`` except ``exclude``.

        Every relation reached by the projection selects at least its
        primary key unless that key is itself excluded.
        """
        select: dict[str, Any] = {}
        for column in projection:
            resolved = self.registry.resolve_path(root, column)
            if resolved is None:
                continue
            path = resolved.relation_path
            for depth in range(1, len(path) + 1):
                owner = self.registry.entity_at(root, path[:depth])
                self._select_node(select, path[:depth])[owner.primary_key] = True
            self._add_to_select(select, resolved)

        for column in exclude:
            resolved = self.registry.resolve_path(root, column)
            if resolved is None:
                continue
            self._select_node(select, resolved.relation_path).pop(resolved.column, None)

        self._drop_empty_relations(select)
        return select

    def _drop_empty_relations(self, select: dict[str, Any]) -> None:
        for key in list(select):
            value = select[key]
            if isinstance(value, dict):
                self._drop_empty_relations(value["select"])
                if not value["select"]:
                    del select[key]

    # ------------------------------------------------------------------
    # Where
    # ------------------------------------------------------------------

    def compile_where(self, root: str, node: FilterNode | None) -> dict[str, Any]:
        return self._compile_node(root, node) or {}

    def _compile_node(self, root: str, node: FilterNode | None) -> dict[str, Any] | None:
        if node is None:
            return None
        if isinstance(node, Condition):
            return self._compile_condition(root, node)

        children = [c for c in (self._compile_node(root, child) for child in node.children) if c]
        if not children:
            return None
        return {node.op.value: children}

    def _compile_condition(self, root: str, cond: Condition) -> dict[str, Any] | None:
        resolved = self.registry.resolve_path(root, cond.column)
        if resolved is None:
            logger.debug("Dropped condition on unresolvable path '%s'", cond.column)
            return None

        path = resolved.relation_path
        column = resolved.column
        op = cond.operator
        value = cond.value

        # Label column: free-text comparison regardless of declared type
        if resolved.is_label and op in TEXT_MATCH_OPERATORS + ("equals",) and isinstance(value, str):
            return _nest(path, {column: {op: value, "mode": INSENSITIVE}})

        if resolved.many_to_many is not None:
            leaf = self._compile_many_to_many(resolved, op, value)
            return _nest(path, {column: leaf}) if leaf is not None else None

        if op == "isNull":
            return _nest(path, {column: None})
        if op == "isNotNull":
            return {ConnectorOp.NOT.value: _nest(path, {column: None})}

        collection = resolved.field is not None and _is_collection(resolved.field)

        if op == "between":
            if collection or not isinstance(value, (list, tuple)) or len(value) != 2:
                logger.debug("Dropped between on '%s' with operand %r", cond.column, value)
                return None
            bounds = {k: v for k, v in (("gte", value[0]), ("lte", value[1])) if v is not None}
            return _nest(path, {column: bounds}) if bounds else None

        if op in ("hasSome", "isEmpty"):
            if not collection:
                logger.debug("Dropped %s on non-collection column '%s'", op, resolved.canonical)
                return None
            if op == "hasSome":
                return _nest(path, {column: {"hasSome": _as_list(value)}})
            return _nest(path, {column: {"isEmpty": bool(value)}})

        leaf = self._compile_scalar(resolved, op, value)
        return _nest(path, {column: leaf}) if leaf is not None else None

    def _compile_many_to_many(self, resolved: ResolvedPath, op: str, value: Any) -> dict[str, Any] | None:
        target = self.registry.require_entity(resolved.many_to_many.entity)  # type: ignore[union-attr]
        pk = target.primary_key

        if isinstance(value, dict):
            inner = value.get(pk)
            if isinstance(inner, dict):
                value = inner.get("in", inner.get("equals"))
            else:
                value = inner
        if value is None:
            return None

        if op in ("none", "notIn", "not"):
            relation_op = "none"
        elif op == "every":
            relation_op = "every"
        else:
            relation_op = "some"
        return {relation_op: {pk: {"in": _as_list(value)}}}

    def _compile_scalar(self, resolved: ResolvedPath, op: str, value: Any) -> dict[str, Any] | None:
        field_def = resolved.field
        if field_def is None or op not in SCALAR_OPERATORS:
            logger.debug("Dropped operator '%s' on scalar column '%s'", op, resolved.canonical)
            return None

        if field_def.list:
            if op in ("equals", "in"):
                return {"hasSome": _as_list(value)}
            logger.debug("Dropped operator '%s' on list column '%s'", op, resolved.canonical)
            return None

        if field_def.type == "Json" and op not in JSON_OPERATORS:
            logger.debug("Dropped operator '%s' on Json column '%s'", op, resolved.canonical)
            return None

        if op in ("in", "notIn"):
            return {op: _as_list(value)}

        if field_def.type == "Enum":
            if op in TEXT_MATCH_OPERATORS:
                return None
            return {op: value}

        ftype = get_field_type(field_def.type)
        if ftype.text:
            free_text = isinstance(value, str)
        elif ftype.name == "Json":
            free_text = isinstance(value, str) and not looks_like_date(value)
        else:
            free_text = False

        if op in TEXT_MATCH_OPERATORS:
            if not free_text:
                logger.debug("Dropped %s on non-text column '%s'", op, resolved.canonical)
                return None
            return {op: value, "mode": INSENSITIVE}

        if op == "equals" and free_text:
            return {op: value, "mode": INSENSITIVE}

        return {op: value}

    # ------------------------------------------------------------------
    # Global search
    # ------------------------------------------------------------------

    def searchable_columns(self, root: str, columns: list[str]) -> list[ResolvedPath]:
        """Columns eligible for free-text search: plain String fields only."""
        result: list[ResolvedPath] = []
        for column in columns:
            resolved = self.registry.resolve_path(root, column)
            if resolved is None or resolved.field is None:
                continue
            f = resolved.field
            if f.type != "String" or f.list or f.is_identifier:
                continue
            result.append(resolved)
        return result

    def compile_search(self, root: str, columns: list[str], text: str) -> dict[str, Any]:
        clauses = [
            _nest(r.relation_path, {r.column: {"contains": text, "mode": INSENSITIVE}})
            for r in self.searchable_columns(root, columns)
        ]
        return {ConnectorOp.OR.value: clauses}

    # ------------------------------------------------------------------
    # Order by
    # ------------------------------------------------------------------

    def compile_order_by(self, root: str, sort: list[SortSpec]) -> list[dict[str, Any]]:
        order_by: list[dict[str, Any]] = []
        for spec in sort:
            resolved = self.registry.resolve_path(root, spec.column)
            if resolved is None or resolved.many_to_many is not None:
                continue
            order_by.append(_nest(resolved.relation_path, {resolved.column: spec.direction}))
        return order_by
