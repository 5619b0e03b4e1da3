"""Run nested query descriptors against the relational store.

Translates the ``select`` / ``where`` / ``orderBy`` shapes produced by the
query compiler into SQLAlchemy Core statements:

* to-one relations become LEFT OUTER JOINs, one alias per relation path;
* many-to-many ``some`` / ``none`` / ``every`` become EXISTS subqueries over
  the join table;
* result rows are nested the same way the select descriptor is.

Operand values are coerced to the declared field type before binding. A
value that cannot be coerced (``"abc"`` for an Int column) turns that
predicate into FALSE, narrowing the result instead of failing the query.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, date, datetime
from typing import Any

from sqlalchemy import (
    Text,
    and_,
    false,
    func,
    not_,
    or_,
    select,
    true,
    type_coerce,
)
from sqlalchemy.engine import Engine
from sqlalchemy.sql import ColumnElement, FromClause

from gridkeeper.metadata.loader import EntityModel, FieldDefinition, ManyToManyConfig
from gridkeeper.metadata.registry import SchemaRegistry
from gridkeeper.persistence.tables import EntityTables, join_columns

logger = logging.getLogger(__name__)

INSENSITIVE = "insensitive"

_COMPARISONS = {
    "lt": lambda c, v: c < v,
    "lte": lambda c, v: c <= v,
    "gt": lambda c, v: c > v,
    "gte": lambda c, v: c >= v,
}


class _Uncoercible(Exception):
    """Operand cannot be represented in the column's type."""

    pass


def to_utc_naive(value: Any) -> datetime:
    """Parse ISO strings / dates into naive UTC datetimes."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        raise TypeError(f"Cannot interpret {value!r} as a datetime")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC).replace(tzinfo=None)
    return parsed


def coerce_value(field_def: FieldDefinition, value: Any) -> Any:
    """Coerce an operand to the Python type of ``field_def``."""
    if value is None:
        return None
    kind = field_def.type
    try:
        if kind == "DateTime":
            return to_utc_naive(value)
        if kind in ("Int", "BigInt"):
            if isinstance(value, bool):
                raise TypeError("bool is not an integer operand")
            if isinstance(value, float) and not value.is_integer():
                raise ValueError(f"{value} is not integral")
            return int(value)
        if kind == "Float":
            if isinstance(value, bool):
                raise TypeError("bool is not a numeric operand")
            return float(value)
        if kind == "Boolean":
            if isinstance(value, bool):
                return value
            if isinstance(value, str) and value.lower() in ("true", "false"):
                return value.lower() == "true"
            if isinstance(value, int) and value in (0, 1):
                return bool(value)
            raise ValueError(f"{value!r} is not a boolean")
        if kind in ("String", "Enum"):
            if isinstance(value, (dict, list)):
                raise TypeError(f"{value!r} is not a scalar")
            return value if isinstance(value, str) else str(value)
    except (TypeError, ValueError) as e:
        raise _Uncoercible(str(e)) from e
    return value


def _items(value: Any) -> list[dict[str, Any]]:
    if isinstance(value, dict):
        return [value]
    if isinstance(value, list):
        return [v for v in value if isinstance(v, dict)]
    return []


def _serialize_element(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


class _JoinPlan:
    """Aliases and outer joins for the relation paths a statement touches."""

    def __init__(self, executor: QueryExecutor, root: EntityModel, root_from: FromClause):
        self.executor = executor
        self.root = root
        self.root_from = root_from
        self.aliases: dict[tuple[str, ...], FromClause] = {(): root_from}
        self.joins: list[tuple[FromClause, ColumnElement]] = []

    def entity(self, path: tuple[str, ...]) -> EntityModel:
        return self.executor.registry.entity_at(self.root.name, path)

    def alias(self, path: tuple[str, ...]) -> FromClause:
        existing = self.aliases.get(path)
        if existing is not None:
            return existing
        parent = self.alias(path[:-1])
        parent_entity = self.entity(path[:-1])
        rel = parent_entity.get_relation(path[-1])
        if rel is None:
            raise ValueError(f"Unknown relation '{path[-1]}' on {parent_entity.name}")
        target = self.executor.registry.require_entity(rel.entity)
        aliased = self.executor.tables.table(target.name).alias("r_" + "_".join(path))
        self.aliases[path] = aliased
        self.joins.append((aliased, parent.c[rel.foreign_key] == aliased.c[target.primary_key]))
        return aliased

    def from_clause(self) -> FromClause:
        clause = self.root_from
        for aliased, on in self.joins:
            clause = clause.outerjoin(aliased, on)
        return clause


class _Projection:
    """Labelled columns plus the metadata needed to rebuild nested rows."""

    def __init__(self) -> None:
        self.columns: list[ColumnElement] = []
        # (label, relation path, key, hidden primary key marker)
        self.meta: list[tuple[str, tuple[str, ...], str, bool]] = []
        # (relation path, owner entity, relation, target sub-select)
        self.many_to_many: list[tuple[tuple[str, ...], EntityModel, ManyToManyConfig, dict]] = []

    def add(self, column: ColumnElement, path: tuple[str, ...], key: str, hidden: bool = False) -> None:
        label = f"c{len(self.columns)}"
        self.columns.append(column.label(label))
        self.meta.append((label, path, key, hidden))

    def pk_label(self, path: tuple[str, ...]) -> str | None:
        for label, p, _, hidden in self.meta:
            if hidden and p == path:
                return label
        return None


class QueryExecutor:
    """Executes query descriptors with SQLAlchemy Core."""

    def __init__(
        self,
        engine: Engine,
        registry: SchemaRegistry,
        tables: EntityTables | None = None,
    ):
        self._engine = engine
        self.registry = registry
        self.tables = tables or EntityTables(registry)

    def ensure_schema(self) -> None:
        """Create entity and join tables if they don't exist."""
        self.tables.create_all(self._engine)

    def _plan(self, entity: str) -> _JoinPlan:
        root = self.registry.require_entity(entity)
        return _JoinPlan(self, root, self.tables.table(root.name))

    # ------------------------------------------------------------------
    # Where
    # ------------------------------------------------------------------

    def _where(self, plan: _JoinPlan, path: tuple[str, ...], where: dict[str, Any]) -> ColumnElement:
        entity = plan.entity(path)
        clauses: list[ColumnElement] = []

        for key, value in where.items():
            if key == "AND":
                clauses.append(and_(true(), *[self._where(plan, path, w) for w in _items(value)]))
            elif key == "OR":
                clauses.append(or_(false(), *[self._where(plan, path, w) for w in _items(value)]))
            elif key == "NOT":
                clauses.extend(not_(self._where(plan, path, w)) for w in _items(value))
            elif (rel := entity.get_relation(key)) is not None:
                clauses.append(self._relation_condition(plan, path, rel.foreign_key, key, value))
            elif (m2m := entity.get_many_to_many(key)) is not None:
                clauses.append(self._many_to_many_condition(plan.alias(path), entity, m2m, value))
            elif (field_def := entity.get_field(key)) is not None:
                clauses.append(self._field_condition(plan.alias(path).c[key], field_def, value))
            else:
                raise ValueError(f"Unknown column '{key}' on {entity.name}")

        return and_(true(), *clauses)

    def _relation_condition(
        self,
        plan: _JoinPlan,
        path: tuple[str, ...],
        foreign_key: str,
        name: str,
        value: Any,
    ) -> ColumnElement:
        fk = plan.alias(path).c[foreign_key]
        if value is None:
            return fk.is_(None)
        if not isinstance(value, dict):
            raise ValueError(f"Relation filter on '{name}' must be an object")
        if set(value) <= {"is", "isNot"} and value:
            parts = []
            for op, inner in value.items():
                if inner is None:
                    cond = fk.is_(None)
                else:
                    cond = self._where(plan, path + (name,), inner)
                parts.append(cond if op == "is" else not_(cond))
            return and_(true(), *parts)
        return self._where(plan, path + (name,), value)

    def _many_to_many_condition(
        self,
        owner: FromClause,
        entity: EntityModel,
        m2m: ManyToManyConfig,
        value: Any,
    ) -> ColumnElement:
        if not isinstance(value, dict):
            raise ValueError(f"Relation filter on '{m2m.name}' must be an object")

        target = self.registry.require_entity(m2m.entity)
        join_table = self.tables.join_table(entity.name, m2m.name)
        target_table = self.tables.table(target.name).alias(f"m_{m2m.name}")
        owner_col, target_col = join_columns(entity, target)
        inner_plan = _JoinPlan(self, target, target_table)

        parts: list[ColumnElement] = []
        for op, inner in value.items():
            if op not in ("some", "none", "every"):
                raise ValueError(f"Unsupported relation operator '{op}' on '{m2m.name}'")
            inner_cond = self._where(inner_plan, (), inner or {})
            if inner_plan.joins:
                raise ValueError(f"Nested relations are not supported inside '{m2m.name}'")
            if op == "every":
                inner_cond = not_(inner_cond)
            linked = (
                select(join_table.c[owner_col])
                .select_from(
                    join_table.join(
                        target_table,
                        join_table.c[target_col] == target_table.c[target.primary_key],
                    )
                )
                .where(join_table.c[owner_col] == owner.c[entity.primary_key], inner_cond)
                .exists()
            )
            parts.append(linked if op == "some" else not_(linked))
        return and_(true(), *parts)

    def _field_condition(self, column: Any, field_def: FieldDefinition, value: Any) -> ColumnElement:
        if value is None:
            return column.is_(None)
        if not isinstance(value, dict):
            value = {"equals": value}

        insensitive = value.get("mode") == INSENSITIVE
        parts: list[ColumnElement] = []
        for op, operand in value.items():
            if op == "mode":
                continue
            try:
                parts.append(self._operator(column, field_def, op, operand, insensitive))
            except _Uncoercible as e:
                logger.debug("Operand for %s.%s not coercible (%s)", field_def.name, op, e)
                parts.append(false())
        return and_(true(), *parts)

    def _operator(
        self,
        column: Any,
        field_def: FieldDefinition,
        op: str,
        operand: Any,
        insensitive: bool,
    ) -> ColumnElement:
        if field_def.list or field_def.type == "Json":
            return self._json_operator(column, field_def, op, operand)

        if op == "equals":
            if operand is None:
                return column.is_(None)
            value = coerce_value(field_def, operand)
            if insensitive and isinstance(value, str):
                return func.lower(column) == value.lower()
            return column == value

        if op == "not":
            if operand is None:
                return column.is_not(None)
            if isinstance(operand, dict):
                return not_(self._field_condition(column, field_def, operand))
            return column != coerce_value(field_def, operand)

        if op in ("in", "notIn"):
            values = []
            for item in operand if isinstance(operand, list) else [operand]:
                try:
                    values.append(coerce_value(field_def, item))
                except _Uncoercible:
                    continue
            if insensitive and all(isinstance(v, str) for v in values):
                target = func.lower(column)
                values = [v.lower() for v in values]
            else:
                target = column
            return target.in_(values) if op == "in" else target.not_in(values)

        if op in _COMPARISONS:
            return _COMPARISONS[op](column, coerce_value(field_def, operand))

        if op in ("contains", "startsWith", "endsWith"):
            text = coerce_value(field_def, operand)
            if op == "contains":
                return column.icontains(text, autoescape=True) if insensitive else column.contains(text, autoescape=True)
            if op == "startsWith":
                return column.istartswith(text, autoescape=True) if insensitive else column.startswith(text, autoescape=True)
            return column.iendswith(text, autoescape=True) if insensitive else column.endswith(text, autoescape=True)

        raise ValueError(f"Unsupported operator '{op}' on '{field_def.name}'")

    def _json_operator(self, column: Any, field_def: FieldDefinition, op: str, operand: Any) -> ColumnElement:
        raw = type_coerce(column, Text)
        if op == "isEmpty":
            if operand:
                return or_(column.is_(None), raw == "[]")
            return and_(column.is_not(None), raw != "[]")
        if op == "hasSome":
            elements = operand if isinstance(operand, list) else [operand]
            return or_(false(), *[self._list_has(raw, e) for e in elements])
        if op == "equals":
            if operand is None:
                return column.is_(None)
            return raw == _serialize_element(operand)
        if op == "contains" and isinstance(operand, str):
            return raw.icontains(operand, autoescape=True)
        raise ValueError(f"Unsupported operator '{op}' on '{field_def.name}'")

    def _list_has(self, raw: Any, element: Any) -> ColumnElement:
        s = _serialize_element(element)
        return or_(
            raw == f"[{s}]",
            raw.startswith(f"[{s},", autoescape=True),
            raw.contains(f",{s},", autoescape=True),
            raw.endswith(f",{s}]", autoescape=True),
        )

    # ------------------------------------------------------------------
    # Select / order
    # ------------------------------------------------------------------

    def _collect(self, plan: _JoinPlan, path: tuple[str, ...], spec: dict[str, Any], out: _Projection) -> None:
        entity = plan.entity(path)
        aliased = plan.alias(path)
        out.add(aliased.c[entity.primary_key], path, entity.primary_key, hidden=True)

        for key, value in spec.items():
            if value is True:
                if entity.get_field(key) is None:
                    raise ValueError(f"Unknown column '{key}' on {entity.name}")
                out.add(aliased.c[key], path, key)
            elif isinstance(value, dict):
                sub = value.get("select") or {}
                if entity.get_relation(key) is not None:
                    self._collect(plan, path + (key,), sub, out)
                elif (m2m := entity.get_many_to_many(key)) is not None:
                    out.many_to_many.append((path, entity, m2m, sub))
                else:
                    raise ValueError(f"Unknown relation '{key}' on {entity.name}")

    def _order_by(self, plan: _JoinPlan, order_by: list[dict[str, Any]]) -> list[Any]:
        clauses = []
        for entry in order_by:
            path: tuple[str, ...] = ()
            node: Any = entry
            while isinstance(node, dict) and len(node) == 1:
                key, value = next(iter(node.items()))
                if isinstance(value, dict):
                    path += (key,)
                    node = value
                    continue
                column = plan.alias(path).c[key]
                clauses.append(column.desc() if value == "desc" else column.asc())
                break
        return clauses

    def _nest_rows(self, rows: list[Any], projection: _Projection) -> list[dict[str, Any]]:
        result = []
        for row in rows:
            nested: dict[str, Any] = {}
            for label, path, key, hidden in projection.meta:
                node = nested
                for name in path:
                    node = node.setdefault(name, {})
                if not hidden:
                    node[key] = row[label]
            # Relations with no matching row come back as None
            for label, path, _, hidden in sorted(projection.meta, key=lambda m: len(m[1])):
                if not hidden or not path or row[label] is not None:
                    continue
                parent: Any = nested
                for name in path[:-1]:
                    parent = parent.get(name) if isinstance(parent, dict) else None
                if isinstance(parent, dict):
                    parent[path[-1]] = None
            result.append(nested)
        return result

    def _attach_many_to_many(self, conn: Any, rows: list[Any], nested: list[dict[str, Any]], projection: _Projection) -> None:
        for path, entity, m2m, sub in projection.many_to_many:
            pk_label = projection.pk_label(path)
            owner_ids = {row[pk_label] for row in rows if pk_label and row[pk_label] is not None}

            target = self.registry.require_entity(m2m.entity)
            join_table = self.tables.join_table(entity.name, m2m.name)
            target_table = self.tables.table(target.name)
            owner_col, target_col = join_columns(entity, target)
            fields = [k for k, v in sub.items() if v is True and target.get_field(k)] or [target.primary_key]

            grouped: dict[Any, list[dict[str, Any]]] = {}
            if owner_ids:
                stmt = (
                    select(join_table.c[owner_col].label("owner"), *[target_table.c[f] for f in fields])
                    .select_from(
                        join_table.join(
                            target_table,
                            join_table.c[target_col] == target_table.c[target.primary_key],
                        )
                    )
                    .where(join_table.c[owner_col].in_(owner_ids))
                    .order_by(join_table.c[owner_col], join_table.c[target_col])
                )
                for linked in conn.execute(stmt).mappings():
                    grouped.setdefault(linked["owner"], []).append({f: linked[f] for f in fields})

            for row, out in zip(rows, nested):
                node: Any = out
                for name in path:
                    node = node.get(name) if isinstance(node, dict) else None
                if isinstance(node, dict):
                    node[m2m.name] = grouped.get(row[pk_label], []) if pk_label else []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def count(self, entity: str, where: dict[str, Any] | None = None) -> int:
        """Count rows matching ``where``."""
        plan = self._plan(entity)
        cond = self._where(plan, (), where or {})
        stmt = select(func.count()).select_from(plan.from_clause()).where(cond)
        with self._engine.connect() as conn:
            return int(conn.execute(stmt).scalar_one())

    def find_many(
        self,
        entity: str,
        select_spec: dict[str, Any],
        where: dict[str, Any] | None = None,
        order_by: list[dict[str, Any]] | None = None,
        skip: int = 0,
        take: int | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch nested rows.

        Rows are ordered by ``order_by`` and then by primary key, so paging
        is stable when sort keys tie.
        """
        plan = self._plan(entity)
        projection = _Projection()
        self._collect(plan, (), select_spec, projection)
        cond = self._where(plan, (), where or {})
        order = self._order_by(plan, order_by or [])
        order.append(plan.alias(()).c[plan.root.primary_key].asc())

        stmt = (
            select(*projection.columns)
            .select_from(plan.from_clause())
            .where(cond)
            .order_by(*order)
            .offset(skip)
        )
        if take is not None:
            stmt = stmt.limit(take)

        with self._engine.connect() as conn:
            rows = conn.execute(stmt).mappings().all()
            nested = self._nest_rows(rows, projection)
            self._attach_many_to_many(conn, rows, nested, projection)
        return nested

    def group_by(
        self,
        entity: str,
        by: list[str],
        where: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Count rows per distinct combination of the ``by`` columns."""
        plan = self._plan(entity)
        columns = []
        for path in by:
            resolved = self.registry.resolve_path(plan.root.name, path)
            if resolved is None or resolved.field is None:
                raise ValueError(f"Cannot group by '{path}'")
            columns.append(plan.alias(resolved.relation_path).c[resolved.column].label(f"g{len(columns)}"))
        if not columns:
            raise ValueError("group_by requires at least one column")

        cond = self._where(plan, (), where or {})
        stmt = (
            select(*columns, func.count().label("count"))
            .select_from(plan.from_clause())
            .where(cond)
            .group_by(*columns)
            .order_by(*columns)
        )
        with self._engine.connect() as conn:
            rows = conn.execute(stmt).mappings().all()

        return [
            {
                "values": {path: row[f"g{i}"] for i, path in enumerate(by)},
                "count": row["count"],
            }
            for row in rows
        ]

    def distinct_values(
        self,
        entity: str,
        column: str,
        where: dict[str, Any] | None = None,
        limit: int = 10,
    ) -> list[Any]:
        """Distinct non-null values of one column, sorted ascending."""
        plan = self._plan(entity)
        resolved = self.registry.resolve_path(plan.root.name, column)
        if resolved is None or resolved.field is None:
            raise ValueError(f"Unknown column '{column}'")
        target = plan.alias(resolved.relation_path).c[resolved.column]
        cond = self._where(plan, (), where or {})
        stmt = (
            select(target)
            .distinct()
            .select_from(plan.from_clause())
            .where(cond, target.is_not(None))
            .order_by(target)
            .limit(limit)
        )
        with self._engine.connect() as conn:
            return [row[0] for row in conn.execute(stmt)]

    def insert(self, entity: str, values: dict[str, Any]) -> Any:
        """Insert one row and return its primary key."""
        model = self.registry.require_entity(entity)
        coerced = {}
        for key, value in values.items():
            field_def = model.get_field(key)
            if field_def is None:
                raise ValueError(f"Unknown column '{key}' on {model.name}")
            coerced[key] = to_utc_naive(value) if field_def.type == "DateTime" and value is not None else value
        with self._engine.connect() as conn:
            result = conn.execute(self.tables.table(model.name).insert().values(**coerced))
            conn.commit()
            return result.inserted_primary_key[0]

    def link(self, entity: str, relation: str, owner_id: Any, target_ids: list[Any]) -> None:
        """Attach many-to-many targets to one owner row."""
        model = self.registry.require_entity(entity)
        m2m = model.get_many_to_many(relation)
        if m2m is None:
            raise ValueError(f"Unknown relation '{relation}' on {model.name}")
        target = self.registry.require_entity(m2m.entity)
        owner_col, target_col = join_columns(model, target)
        if not target_ids:
            return
        with self._engine.connect() as conn:
            conn.execute(
                self.tables.join_table(model.name, relation).insert(),
                [{owner_col: owner_id, target_col: t} for t in target_ids],
            )
            conn.commit()
