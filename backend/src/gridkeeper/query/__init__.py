"""Filter parsing, sanitization, compilation and paged execution."""

from gridkeeper.query.compiler import QueryCompiler, QueryDescriptor
from gridkeeper.query.filters import (
    Condition,
    Connector,
    ConnectorOp,
    FilterNode,
    filter_to_dict,
    parse_filter,
)
from gridkeeper.query.pagination import GroupedResult, PageResult, Paginator, ResultKind
from gridkeeper.query.sanitizer import (
    AllowList,
    SortSpec,
    sanitize,
    sanitize_columns,
    sanitize_filter,
    sanitize_sort,
)

__all__ = [
    "AllowList",
    "Condition",
    "Connector",
    "ConnectorOp",
    "FilterNode",
    "GroupedResult",
    "PageResult",
    "Paginator",
    "QueryCompiler",
    "QueryDescriptor",
    "ResultKind",
    "SortSpec",
    "filter_to_dict",
    "parse_filter",
    "sanitize",
    "sanitize_columns",
    "sanitize_filter",
    "sanitize_sort",
]
