"""
Docscope Server

Generic document CRUD and association API with per-document scope
authorization.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import build_router, register_error_handlers
from .config import Settings, settings
from .registry import CollectionRegistry
from .storage import DocumentStore, MemoryStore, PostgresStore

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def build_store(config: Settings) -> DocumentStore:
    """PostgreSQL when DATABASE_URL is set, in-memory otherwise"""
    if config.database_url:
        return PostgresStore(
            config.database_url,
            pool_min=config.database_pool_min,
            pool_max=config.database_pool_max,
        )
    return MemoryStore()


def create_app(
    registry: Optional[CollectionRegistry] = None,
    config: Settings = settings,
) -> FastAPI:
    """
    Build the application for a set of registered collections.

    Args:
        registry: Collections to expose (an empty in-memory registry if None)
        config: Server settings

    Returns:
        FastAPI application
    """
    if registry is None:
        registry = CollectionRegistry(build_store(config))
    registry.resolve()
    options = config.engine_options()
    store = registry.store

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown lifecycle"""
        logging.basicConfig(level=config.log_level.upper())
        logger.info("Docscope Server starting...")

        await store.connect()
        if isinstance(store, PostgresStore):
            await store.ensure_schema()
            logger.info("PostgreSQL connected")
        else:
            logger.info("Running in memory-only mode (PostgreSQL not configured)")

        logger.info(
            "Serving %d collections on %s:%s", len(registry), config.host, config.port
        )

        yield

        logger.info("Shutting down gracefully...")
        await store.disconnect()
        logger.info("Server shut down")

    app = FastAPI(
        title="Docscope Server",
        description="Generic document API with document scope authorization",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.options = options

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    @app.get("/")
    async def root():
        """Server info endpoint"""
        return {
            "name": "Docscope Server",
            "version": VERSION,
            "description": "Generic document API with document scope authorization",
            "endpoints": {
                "health": "/health",
                "collections": [f"/{collection.name}" for collection in registry],
            },
            "features": {
                "auth": "JWT bearer tokens carrying scope claims",
                "documentScope": "Per-document read/update/delete/associate scope",
                "associations": "ONE_MANY and MANY_MANY relationships",
                "softDelete": options.enable_soft_delete,
            },
        }

    @app.get("/health")
    async def health():
        """Health check endpoint"""
        healthy = await store.health_check()
        return JSONResponse(
            {
                "status": "healthy" if healthy else "degraded",
                "timestamp": time.time(),
                "version": VERSION,
                "storage": "postgres" if isinstance(store, PostgresStore) else "memory-only",
            },
            status_code=200 if healthy else 503,
        )

    for collection in registry:
        app.include_router(build_router(collection, options))

    return app


app = create_app()
