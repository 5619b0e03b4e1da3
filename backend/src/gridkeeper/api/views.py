"""View API endpoints."""

import logging
from typing import Any, Callable

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from gridkeeper.auth.types import UserContext
from gridkeeper.errors import (
    AccessDenied,
    GridkeeperError,
    NotFound,
    UnknownEntity,
    ValidationFailure,
)
from gridkeeper.views.service import ViewParams, ViewService

logger = logging.getLogger(__name__)


class ViewQueryRequest(BaseModel):
    """Request body for running inline view parameters."""

    columns: list[str] | None = None
    excludeColumns: list[str] | None = None
    filters: dict[str, Any] | list[Any] | None = None
    sort: list[dict[str, Any]] | dict[str, Any] | None = None
    columnOrder: list[str] = []
    groupBy: list[str] = []
    globalSearch: str | None = None
    page: int = 1
    pageSize: int | None = None


class ViewCreateRequest(BaseModel):
    """Request body for saving a new view."""

    viewName: str
    columns: list[str] | None = None
    filters: dict[str, Any] | list[Any] | None = None
    sort: list[dict[str, Any]] | dict[str, Any] | None = None
    columnOrder: list[str] | None = None
    groupBy: list[str] | None = None


class ViewUpdateRequest(BaseModel):
    """Request body for a partial view update. Only fields sent are changed."""

    viewName: str | None = None
    columns: list[str] | None = None
    filters: dict[str, Any] | list[Any] | None = None
    sort: list[dict[str, Any]] | dict[str, Any] | None = None
    columnOrder: list[str] | None = None
    groupBy: list[str] | None = None


_BODY_FIELDS = {
    "viewName": "name",
    "columns": "columns",
    "filters": "filters",
    "sort": "sort",
    "columnOrder": "column_order",
    "groupBy": "group_by",
}


def _get_user_context(request: Request) -> UserContext | None:
    """Extract user context from request state."""
    return getattr(request.state, "user_context", None)


def _require_user(request: Request) -> str:
    user_context = _get_user_context(request)
    if not user_context or not user_context.user_id:
        raise HTTPException(401, "Authentication required")
    return user_context.user_id


def _to_http(error: GridkeeperError) -> HTTPException:
    if isinstance(error, AccessDenied):
        return HTTPException(403, str(error) or "Access denied")
    if isinstance(error, (NotFound, UnknownEntity)):
        return HTTPException(404, str(error))
    if isinstance(error, ValidationFailure):
        return HTTPException(400, str(error))
    logger.error("Unhandled view error: %s", error)
    return HTTPException(500, str(error))


def _body(model: BaseModel) -> dict[str, Any]:
    sent = model.model_dump(exclude_unset=True)
    return {_BODY_FIELDS[k]: v for k, v in sent.items() if k in _BODY_FIELDS}


def create_views_router(
    get_view_service: Callable[[], ViewService | None],
) -> APIRouter:
    """Create the views router with injected dependencies."""
    router = APIRouter(prefix="/api/views", tags=["views"])

    def _service() -> ViewService:
        service = get_view_service()
        if not service:
            raise HTTPException(500, "View service not initialized")
        return service

    @router.get("/{resource}")
    async def get_default_view(
        resource: str,
        request: Request,
        page: int = 1,
        pageSize: int | None = None,
        search: str | None = None,
    ) -> dict[str, Any]:
        """Run the caller's default view for a resource."""
        user_id = _require_user(request)
        try:
            data = await _service().get_view(
                user_id, resource, page=page, page_size=pageSize, global_search=search
            )
        except GridkeeperError as e:
            raise _to_http(e) from e
        return {"data": data}

    @router.get("/{resource}/views")
    async def list_views(resource: str, request: Request) -> dict[str, Any]:
        """List the caller's saved views for a resource."""
        user_id = _require_user(request)
        try:
            return {"data": _service().list_views(user_id, resource)}
        except GridkeeperError as e:
            raise _to_http(e) from e

    @router.get("/{resource}/typeahead")
    async def typeahead(
        resource: str,
        request: Request,
        column: str = Query(...),
        value: str = Query(""),
    ) -> dict[str, Any]:
        """Suggest distinct values of a text column."""
        user_id = _require_user(request)
        try:
            values = await _service().typeahead(user_id, resource, column, value)
        except GridkeeperError as e:
            raise _to_http(e) from e
        return {"data": values}

    @router.post("/{resource}/query")
    async def query_view(
        resource: str, body: ViewQueryRequest, request: Request
    ) -> dict[str, Any]:
        """Run inline view parameters without saving them."""
        user_id = _require_user(request)
        params = ViewParams(
            columns=body.columns,
            filters=body.filters,
            sort=body.sort,
            column_order=body.columnOrder,
            group_by=body.groupBy,
            exclude_columns=body.excludeColumns,
            global_search=body.globalSearch,
            page=body.page,
            page_size=body.pageSize,
        )
        try:
            data = await _service().query(user_id, resource, params)
        except GridkeeperError as e:
            raise _to_http(e) from e
        return {"data": data}

    @router.get("/{resource}/{view_id}")
    async def get_view(
        resource: str,
        view_id: str,
        request: Request,
        page: int = 1,
        pageSize: int | None = None,
        search: str | None = None,
    ) -> dict[str, Any]:
        """Run a saved view."""
        user_id = _require_user(request)
        try:
            data = await _service().get_view(
                user_id, resource, view_id, page=page, page_size=pageSize, global_search=search
            )
        except GridkeeperError as e:
            raise _to_http(e) from e
        return {"data": data}

    @router.post("/{resource}", status_code=201)
    async def create_view(
        resource: str, body: ViewCreateRequest, request: Request
    ) -> dict[str, Any]:
        """Save a new view."""
        user_id = _require_user(request)
        try:
            view = _service().create_view(user_id, resource, _body(body))
        except GridkeeperError as e:
            raise _to_http(e) from e
        return {"data": view.to_dict()}

    @router.put("/{resource}/{view_id}")
    async def update_view(
        resource: str, view_id: str, body: ViewUpdateRequest, request: Request
    ) -> dict[str, Any]:
        """Partially update a saved view."""
        user_id = _require_user(request)
        try:
            view = _service().update_view(user_id, resource, view_id, _body(body))
        except GridkeeperError as e:
            raise _to_http(e) from e
        return {"data": view.to_dict()}

    @router.delete("/{resource}/{view_id}")
    async def delete_view(resource: str, view_id: str, request: Request) -> dict[str, Any]:
        """Delete a saved view; responds with the default view to fall back to."""
        user_id = _require_user(request)
        try:
            fallback = _service().delete_view(user_id, resource, view_id)
        except GridkeeperError as e:
            raise _to_http(e) from e
        return {"data": fallback.to_dict()}

    return router
