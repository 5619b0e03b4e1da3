"""View orchestration: authorize, sanitize, compile, execute, respond.

Every read goes through the same pipeline:

1. the caller must hold the resource's view capability;
2. the caller's allowed columns are resolved (cached);
3. stored or inline view parameters are pruned against that allow-list;
4. the compiler builds a descriptor and the paginator runs count + page;
5. rows are flattened to canonical column keys for the response.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from gridkeeper.auth.access import AccessResolver
from gridkeeper.auth.permissions import Action, can_access_resource, require_permission
from gridkeeper.metadata.loader import EntityModel
from gridkeeper.metadata.registry import EntityKind, SchemaRegistry
from gridkeeper.query.compiler import QueryCompiler
from gridkeeper.query.filters import Condition, filter_to_dict
from gridkeeper.query.pagination import GroupedResult, Paginator
from gridkeeper.query.sanitizer import (
    AllowList,
    sanitize_columns,
    sanitize_filter,
    sanitize_sort,
)
from gridkeeper.views.response import order_columns, shape_rows, to_jsonable
from gridkeeper.views.store import ViewStore
from gridkeeper.views.types import View

logger = logging.getLogger(__name__)

TYPEAHEAD_LIMIT = 10


@dataclass
class ViewParams:
    """Inline (unsaved) view parameters, as received from a client.

    Attributes:
        columns: Columns to select (None = every allowed column)
        filters: Raw filter payload
        sort: Raw sort payload
        column_order: Preferred column order for the response
        group_by: Columns to group and count by instead of returning rows
        exclude_columns: Select every allowed column except these
        global_search: Free text matched across text columns
        page: 1-based page number
        page_size: Rows per page
    """

    columns: list[str] | None = None
    filters: Any = None
    sort: Any = None
    column_order: list[str] = field(default_factory=list)
    group_by: list[str] = field(default_factory=list)
    exclude_columns: list[str] | None = None
    global_search: str | None = None
    page: int | None = 1
    page_size: int | None = None

    @classmethod
    def from_view(cls, view: View, **overrides: Any) -> ViewParams:
        params = cls(
            columns=view.columns or None,
            filters=view.filters,
            sort=view.sort,
            column_order=view.column_order,
            group_by=view.group_by,
        )
        for key, value in overrides.items():
            if value is not None:
                setattr(params, key, value)
        return params


class ViewService:
    """Runs view queries and manages saved views for a principal."""

    def __init__(
        self,
        registry: SchemaRegistry,
        resolver: AccessResolver,
        store: ViewStore,
        paginator: Paginator,
        compiler: QueryCompiler | None = None,
    ):
        self.registry = registry
        self.resolver = resolver
        self.store = store
        self.paginator = paginator
        self.compiler = compiler or QueryCompiler(registry)

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def authorize(
        self,
        user_id: str,
        resource: str,
        action: Action = Action.VIEW,
    ) -> tuple[EntityModel, list[str]]:
        """Check the caller's capability and return (entity, allowed columns).

        Raises:
            UnknownEntity: The resource is not a supported entity
            AccessDenied: The caller lacks the capability
        """
        entity = self.registry.require_entity(EntityKind.parse(resource))
        permissions = self.resolver.resolve_permissions(user_id)
        require_permission(permissions, entity.table, action)
        return entity, self.resolver.resolve_columns(user_id, entity.table)

    def _allow_list(self, entity: EntityModel, allowed: list[str]) -> AllowList:
        return AllowList(allowed, root=entity.name, registry=self.registry)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_view(
        self,
        user_id: str,
        resource: str,
        view_id: str | None = None,
        *,
        page: int | None = 1,
        page_size: int | None = None,
        global_search: str | None = None,
    ) -> dict[str, Any]:
        """Run a saved view (the default view when ``view_id`` is None)."""
        entity, allowed = self.authorize(user_id, resource)
        default = self.store.get_or_create_default(user_id, entity.table, allowed)
        view = default if view_id is None else self.store.get_owned(view_id, user_id, entity.table)
        params = ViewParams.from_view(
            view, page=page, page_size=page_size, global_search=global_search
        )
        return await self._run(user_id, entity, allowed, params, view)

    async def query(
        self,
        user_id: str,
        resource: str,
        params: ViewParams,
    ) -> dict[str, Any]:
        """Run inline view parameters without saving them."""
        entity, allowed = self.authorize(user_id, resource)
        self.store.get_or_create_default(user_id, entity.table, allowed)
        return await self._run(user_id, entity, allowed, params, None)

    async def _run(
        self,
        user_id: str,
        entity: EntityModel,
        allowed: list[str],
        params: ViewParams,
        view: View | None,
    ) -> dict[str, Any]:
        allow = self._allow_list(entity, allowed)
        tree = sanitize_filter(params.filters, allow)
        sort = sanitize_sort(params.sort, allow)

        excluded: list[str] | None = None
        if params.exclude_columns is not None:
            excluded = sanitize_columns(params.exclude_columns, allow)
            columns = [c for c in allowed if c not in excluded]
        elif params.columns:
            columns = sanitize_columns(params.columns, allow)
        else:
            columns = list(allowed)
        columns = order_columns(columns, sanitize_columns(params.column_order, allow) or allowed)

        descriptor = self.compiler.compile(
            entity.name,
            list(allowed) if excluded is not None else columns,
            tree,
            sort,
            params.global_search,
            searchable=allowed,
            exclude=excluded,
        )

        group_by = [
            c for c in sanitize_columns(params.group_by, allow)
            if (resolved := self.registry.resolve_path(entity.name, c)) and resolved.field is not None
        ]

        payload: dict[str, Any] = {
            "viewId": view.id if view else None,
            "viewName": view.name if view else None,
            "availableColumns": allowed,
            "availableColumnTypes": {
                c: t for c, t in self.registry.columns(entity.name).items() if c in allow
            },
            "appliedColumns": columns,
            "appliedFilters": filter_to_dict(tree),
            "appliedSort": [s.to_dict() for s in sort],
            "appliedGroupBy": group_by,
            "views": self.store.summaries(user_id, entity.table),
        }

        if group_by:
            grouped: GroupedResult = await self.paginator.group(descriptor, group_by)
            payload.update({
                "kind": grouped.kind.value,
                "totalCount": grouped.total_count,
                "groups": to_jsonable(grouped.groups),
            })
            return payload

        result = await self.paginator.execute(descriptor, params.page, params.page_size)
        payload.update({
            "kind": result.kind.value,
            "totalCount": result.total_count,
            "page": result.page,
            "pageSize": result.page_size,
            "rows": shape_rows(self.registry, entity.name, result.rows, columns),
        })
        return payload

    def list_views(self, user_id: str, resource: str) -> list[dict[str, str]]:
        entity, allowed = self.authorize(user_id, resource)
        self.store.get_or_create_default(user_id, entity.table, allowed)
        return self.store.summaries(user_id, entity.table)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def list_resources(self, user_id: str) -> list[str]:
        """Entity names the caller holds the view capability for."""
        permissions = self.resolver.resolve_permissions(user_id)
        names = []
        for kind in EntityKind:
            entity = self.registry.require_entity(kind)
            allowed, _ = can_access_resource(permissions, entity.table, Action.VIEW)
            if allowed:
                names.append(entity.name)
        return names

    def describe(self, user_id: str, resource: str) -> dict[str, Any]:
        """Entity schema trimmed to what the caller may see.

        Fields, relations and the column map only mention allowed columns, so
        the response never reveals more of the schema than a view would.
        """
        entity, allowed = self.authorize(user_id, resource)
        visible = set(allowed)
        reachable = self.registry.reachable_tables(entity.name)
        relation_roots = {
            reachable[table][0]
            for table in (column.split(".", 1)[0] for column in allowed if "." in column)
            if reachable.get(table)
        }

        data = self.registry.loader.to_dict(entity.name)
        data["fields"] = [f for f in data["fields"] if f["name"] in visible]
        data["relations"] = [r for r in data["relations"] if r["name"] in relation_roots]
        data["manyToMany"] = [m for m in data["manyToMany"] if m["name"] in visible]
        data["columns"] = {
            column: label
            for column, label in self.registry.columns(entity.name).items()
            if column in visible
        }
        return data

    async def typeahead(
        self,
        user_id: str,
        resource: str,
        column: str,
        value: str,
        limit: int = TYPEAHEAD_LIMIT,
    ) -> list[Any]:
        """Distinct values of an allowed text column containing ``value``."""
        entity, allowed = self.authorize(user_id, resource)
        canonical = self._allow_list(entity, allowed).canonical(column)
        if canonical is None:
            return []
        if not self.compiler.searchable_columns(entity.name, [canonical]):
            return []

        where = self.compiler.compile_where(
            entity.name, Condition(column=canonical, operator="contains", value=value)
        )
        values = await asyncio.to_thread(
            self.paginator.executor.distinct_values,
            entity.name,
            canonical,
            where,
            max(1, min(limit, TYPEAHEAD_LIMIT)),
        )
        return to_jsonable(values)

    # ------------------------------------------------------------------
    # Saved view lifecycle
    # ------------------------------------------------------------------

    def _sanitized_body(self, entity: EntityModel, allowed: list[str], body: dict[str, Any]) -> dict[str, Any]:
        allow = self._allow_list(entity, allowed)
        clean: dict[str, Any] = {}
        if "name" in body:
            clean["name"] = body["name"]
        if "columns" in body:
            clean["columns"] = sanitize_columns(body["columns"] or [], allow)
        if "filters" in body:
            clean["filters"] = filter_to_dict(sanitize_filter(body["filters"], allow))
        if "sort" in body:
            clean["sort"] = [s.to_dict() for s in sanitize_sort(body["sort"], allow)]
        if "column_order" in body:
            clean["column_order"] = sanitize_columns(body["column_order"] or [], allow)
        if "group_by" in body:
            clean["group_by"] = sanitize_columns(body["group_by"] or [], allow)
        return clean

    def create_view(self, user_id: str, resource: str, body: dict[str, Any]) -> View:
        """Save a new named view. Columns default to everything the caller may see."""
        entity, allowed = self.authorize(user_id, resource)
        self.store.get_or_create_default(user_id, entity.table, allowed)
        clean = self._sanitized_body(entity, allowed, body)
        return self.store.create(
            View(
                id="",
                owner_id=user_id,
                resource=entity.table,
                name=clean.get("name", ""),
                columns=clean.get("columns") or list(allowed),
                filters=clean.get("filters"),
                sort=clean.get("sort", []),
                column_order=clean.get("column_order", []),
                group_by=clean.get("group_by", []),
            )
        )

    def update_view(self, user_id: str, resource: str, view_id: str, body: dict[str, Any]) -> View:
        entity, allowed = self.authorize(user_id, resource)
        clean = self._sanitized_body(entity, allowed, body)
        return self.store.update(view_id, user_id, clean, resource=entity.table)

    def delete_view(self, user_id: str, resource: str, view_id: str) -> View:
        """Delete a view and return the default view the caller falls back to."""
        entity, allowed = self.authorize(user_id, resource)
        fallback = self.store.delete(view_id, user_id, resource=entity.table, default_columns=allowed)
        logger.info("User '%s' deleted view '%s' on '%s'", user_id, view_id, entity.table)
        return fallback
