"""FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from gridkeeper.api.metadata import create_metadata_router
from gridkeeper.api.views import create_views_router
from gridkeeper.auth import AccessResolver, AccessStore, TTLCache, UserContext
from gridkeeper.config import GridConfig
from gridkeeper.metadata.registry import SchemaRegistry
from gridkeeper.persistence import QueryExecutor, create_db_engine
from gridkeeper.query.pagination import Paginator
from gridkeeper.views import ViewService, ViewStore

logger = logging.getLogger(__name__)

# Identity is established by the gateway in front of this service
USER_ID_HEADER = "X-User-Id"


def create_app(grid_config: GridConfig | None = None) -> FastAPI:
    """Build the API. Configuration is read from the environment when not given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize on startup, cleanup on shutdown."""
        config = grid_config or GridConfig.from_env()

        registry = SchemaRegistry.load(config.metadata_path)
        engine = create_db_engine(config.database)

        executor = QueryExecutor(engine, registry)
        executor.ensure_schema()
        access_store = AccessStore(engine)
        resolver = AccessResolver(
            access_store, registry, TTLCache(ttl=config.access_cache_ttl)
        )

        app.state.config = config
        app.state.registry = registry
        app.state.executor = executor
        app.state.access_store = access_store
        app.state.view_service = ViewService(
            registry,
            resolver,
            ViewStore(engine),
            Paginator(executor, config.default_page_size, config.max_page_size),
        )
        logger.info(
            "Gridkeeper API ready: %d entities, access cache TTL %ss",
            len(registry.list_entities()),
            config.access_cache_ttl,
        )

        yield

        # Cleanup
        engine.dispose()

    app = FastAPI(title="Gridkeeper API", lifespan=lifespan)

    @app.middleware("http")
    async def identity_middleware(request: Request, call_next):
        """Set the user context from the upstream identity header."""
        user_id = request.headers.get(USER_ID_HEADER)
        request.state.user_context = UserContext(user_id=user_id) if user_id else None
        return await call_next(request)

    app.include_router(
        create_views_router(get_view_service=lambda: getattr(app.state, "view_service", None))
    )
    app.include_router(
        create_metadata_router(get_view_service=lambda: getattr(app.state, "view_service", None))
    )

    return app


app = create_app()
