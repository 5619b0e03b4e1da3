"""Filter tree model and parsing of client filter payloads.

A filter is a recursive tagged variant: a ``Connector`` (AND / OR / NOT over
child nodes) or a ``Condition`` on a single dotted column path.

``parse_filter`` accepts the three shapes clients send:

* where-style dicts: ``{"AND": [...]}``, ``{"website": {"contains": "shop"}}``,
  ``{"website": "x"}`` (equals), ``{"remark": None}`` (isNull), and nested
  relation dicts such as ``{"vendor": {"name": {"equals": "Acme"}}}``;
* condition triples: ``{"column": "website", "operator": "contains", "value": "shop"}``;
* filter configs: ``{"filters": [triples...], "connector": "AND"}``.

Parsing is lenient: anything it cannot interpret is skipped, never raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

# Operators passed through to the where descriptor
WHERE_OPERATORS = frozenset({
    "equals", "not", "in", "notIn", "lt", "lte", "gt", "gte",
    "contains", "startsWith", "endsWith", "mode",
    "some", "every", "none", "is", "isNot",
})

# Operators the compiler rewrites into where operators
LOGICAL_OPERATORS = frozenset({"isNull", "isNotNull", "between", "hasSome", "isEmpty"})

ALLOWED_OPERATORS = WHERE_OPERATORS | LOGICAL_OPERATORS


class ConnectorOp(str, Enum):
    AND = "AND"
    OR = "OR"
    NOT = "NOT"


@dataclass
class Condition:
    """A predicate on one column.

    Attributes:
        column: Dotted column path (``website`` or ``vendor.name``)
        operator: Operator name, e.g. ``contains`` or ``between``
        value: Operand; shape depends on the operator
        mode: Optional comparison mode sent by the client
    """

    column: str
    operator: str
    value: Any = None
    mode: str | None = None


@dataclass
class Connector:
    op: ConnectorOp
    children: list[FilterNode] = field(default_factory=list)


FilterNode = Union[Condition, Connector]


def _connector_op(key: Any) -> ConnectorOp | None:
    if not isinstance(key, str):
        return None
    try:
        return ConnectorOp(key.upper())
    except ValueError:
        return None


def _is_operator_dict(value: dict) -> bool:
    return any(isinstance(k, str) and k in ALLOWED_OPERATORS for k in value)


def _wrap(nodes: list[FilterNode]) -> FilterNode | None:
    """Several sibling nodes form an implicit AND."""
    if not nodes:
        return None
    if len(nodes) == 1:
        return nodes[0]
    return Connector(op=ConnectorOp.AND, children=nodes)


def _parse_triple(raw: dict) -> Condition | None:
    column = raw.get("column")
    operator = raw.get("operator")
    if not isinstance(column, str) or not isinstance(operator, str):
        return None
    return Condition(column=column, operator=operator, value=raw.get("value"), mode=raw.get("mode"))


def _parse_column(column: str, value: Any) -> list[FilterNode]:
    if value is None:
        return [Condition(column=column, operator="isNull", value=True)]
    if not isinstance(value, dict):
        return [Condition(column=column, operator="equals", value=value)]

    if not _is_operator_dict(value):
        # Nested relation filter: {"vendor": {"name": {...}}}
        nodes: list[FilterNode] = []
        for inner_key, inner_value in value.items():
            if not isinstance(inner_key, str) or _connector_op(inner_key):
                continue
            nodes.extend(_parse_column(f"{column}.{inner_key}", inner_value))
        return nodes

    mode = value.get("mode") if isinstance(value.get("mode"), str) else None
    return [
        Condition(column=column, operator=op, value=operand, mode=mode)
        for op, operand in value.items()
        if isinstance(op, str) and op != "mode"
    ]


def _parse_where(raw: dict) -> list[FilterNode]:
    nodes: list[FilterNode] = []
    for key, value in raw.items():
        op = _connector_op(key)
        if op is not None:
            items = value if isinstance(value, list) else [value]
            children = [child for item in items if (child := parse_filter(item)) is not None]
            if children:
                nodes.append(Connector(op=op, children=children))
            continue
        if isinstance(key, str):
            nodes.extend(_parse_column(key, value))
    return nodes


def parse_filter(raw: Any) -> FilterNode | None:
    """Parse a client filter payload into a filter tree (None when empty)."""
    if isinstance(raw, (Condition, Connector)):
        return raw
    if isinstance(raw, list):
        return _wrap([n for item in raw if (n := parse_filter(item)) is not None])
    if not isinstance(raw, dict) or not raw:
        return None

    if isinstance(raw.get("filters"), list):
        op = _connector_op(raw.get("connector") or "AND")
        if op is None or op == ConnectorOp.NOT:
            return None
        conditions = [c for item in raw["filters"] if isinstance(item, dict) and (c := _parse_triple(item))]
        if not conditions:
            return None
        return Connector(op=op, children=list(conditions))

    if "column" in raw and "operator" in raw:
        return _parse_triple(raw)

    return _wrap(_parse_where(raw))


def filter_to_dict(node: FilterNode | None) -> dict[str, Any] | None:
    """Serialize a filter tree back to the where-style dict form."""
    if node is None:
        return None
    if isinstance(node, Condition):
        body: dict[str, Any] = {node.operator: node.value}
        if node.mode:
            body["mode"] = node.mode
        return {node.column: body}
    return {node.op.value: [filter_to_dict(child) for child in node.children]}


def iter_conditions(node: FilterNode | None):
    """Yield every condition in the tree, depth first."""
    if node is None:
        return
    if isinstance(node, Condition):
        yield node
        return
    for child in node.children:
        yield from iter_conditions(child)
