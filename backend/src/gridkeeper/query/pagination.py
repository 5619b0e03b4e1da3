"""Count + page execution of compiled descriptors."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from gridkeeper.persistence.executor import QueryExecutor
from gridkeeper.query.compiler import QueryDescriptor

logger = logging.getLogger(__name__)


class ResultKind(str, Enum):
    ROWS = "rows"
    GROUPED = "grouped"


@dataclass
class PageResult:
    """One page of rows plus the total matching count.

    The count and the page are read in separate round-trips, so under
    concurrent writes ``total_count`` may disagree with the rows actually
    returned across pages.
    """

    rows: list[dict[str, Any]]
    total_count: int
    page: int
    page_size: int
    kind: ResultKind = ResultKind.ROWS


@dataclass
class GroupedResult:
    groups: list[dict[str, Any]] = field(default_factory=list)
    total_count: int = 0
    kind: ResultKind = ResultKind.GROUPED


QueryResult = Union[PageResult, GroupedResult]


class Paginator:
    """Runs the count and data queries for a descriptor with the same predicate."""

    def __init__(
        self,
        executor: QueryExecutor,
        default_page_size: int = 25,
        max_page_size: int = 500,
    ):
        self._executor = executor
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    @property
    def executor(self) -> QueryExecutor:
        return self._executor

    def clamp(self, page: int | None, page_size: int | None) -> tuple[int, int]:
        """Normalize paging input: page >= 1, 1 <= page_size <= max_page_size."""
        page = page if page and page > 0 else 1
        if not page_size or page_size < 1:
            page_size = self.default_page_size
        return page, min(page_size, self.max_page_size)

    async def execute(
        self,
        descriptor: QueryDescriptor,
        page: int | None = 1,
        page_size: int | None = None,
    ) -> PageResult:
        page, page_size = self.clamp(page, page_size)
        where = descriptor.count_args()["where"]

        total = await asyncio.to_thread(self._executor.count, descriptor.entity, where)
        rows = await asyncio.to_thread(
            self._executor.find_many,
            descriptor.entity,
            descriptor.select,
            where,
            descriptor.order_by,
            (page - 1) * page_size,
            page_size,
        )
        logger.debug(
            "%s page %d/%d: %d of %d rows", descriptor.entity, page, page_size, len(rows), total
        )
        return PageResult(rows=rows, total_count=total, page=page, page_size=page_size)

    async def group(self, descriptor: QueryDescriptor, by: list[str]) -> GroupedResult:
        where = descriptor.count_args()["where"]
        groups = await asyncio.to_thread(self._executor.group_by, descriptor.entity, by, where)
        return GroupedResult(groups=groups, total_count=sum(g["count"] for g in groups))
