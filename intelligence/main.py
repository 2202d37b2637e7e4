"""
FastAPI application entry point for the intelligence pipeline.

The pipeline itself is a library; this module is a thin host that exposes it
over HTTP. It configures logging from Settings, manages the asyncpg pool
lifecycle when the PostgreSQL store is selected, and registers the routers.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from intelligence import __version__
from intelligence.api import api_router
from intelligence.core.config import get_settings
from intelligence.core.database import close_db, init_db, init_schema
from intelligence.sql.schema import get_schema_ddl


logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def _uses_postgres() -> bool:
    return get_settings().storage_backend.lower() != 'memory'


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    On startup, open the pool and apply the schema (PostgreSQL store only).
    On shutdown, close the pool.
    """
    logger.info("Intelligence API starting")
    if _uses_postgres():
        try:
            await init_db()
            await init_schema(get_schema_ddl())
            logger.info("Database connection pool initialized")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")

    yield

    logger.info("Intelligence API shutting down")
    if _uses_postgres():
        try:
            await close_db()
            logger.info("Database connection pool closed")
        except Exception as e:
            logger.error(f"Error closing database pool: {e}")


app = FastAPI(
    title="Agency Intelligence API",
    version=__version__,
    description=(
        "Signal ingestion, anomaly detection, insight aggregation, "
        "priority scoring and outcome feedback for agency clients."
    ),
    lifespan=lifespan,
)

app.include_router(api_router)


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring and load balancer probes."""
    return {"status": "healthy"}


@app.get("/")
async def root():
    return {
        "name": "Agency Intelligence API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "intelligence.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
