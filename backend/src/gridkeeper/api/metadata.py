"""Metadata API endpoints, scoped to the caller's access."""

from typing import Any, Callable

from fastapi import APIRouter, HTTPException, Request

from gridkeeper.api.views import _require_user, _to_http
from gridkeeper.errors import GridkeeperError
from gridkeeper.views import ViewService


def create_metadata_router(
    get_view_service: Callable[[], ViewService | None],
) -> APIRouter:
    """Create the metadata router with injected dependencies."""
    router = APIRouter(prefix="/api/metadata", tags=["metadata"])

    def _service() -> ViewService:
        service = get_view_service()
        if not service:
            raise HTTPException(500, "Metadata not initialized")
        return service

    @router.get("")
    async def list_entities(request: Request) -> dict[str, Any]:
        """Entities the caller can open views on."""
        user_id = _require_user(request)
        return {"data": _service().list_resources(user_id)}

    @router.get("/{entity}")
    async def get_entity_metadata(entity: str, request: Request) -> dict[str, Any]:
        """Entity schema with the caller's column map."""
        user_id = _require_user(request)
        try:
            data = _service().describe(user_id, entity)
        except GridkeeperError as e:
            raise _to_http(e) from e
        return {"data": data}

    return router
