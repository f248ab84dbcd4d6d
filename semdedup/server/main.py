"""Semantic dedup HTTP server entry point.

Lifespan initialises the embedding provider at startup so a misconfigured
provider is reported before the first request, and disposes the database
engine on shutdown.

Entry point:
    uvicorn semdedup.server.main:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute

from semdedup import __version__
from semdedup.api.router import api_router
from semdedup.config import settings
from semdedup.errors import ConfigurationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan: warm up the embedding provider, dispose the engine on shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    from semdedup.db.session import engine  # noqa: PLC0415
    from semdedup.pipeline.embedder import close_embedder, get_embedder  # noqa: PLC0415

    logging.basicConfig(level=settings.log_level)
    logger.info("Semantic dedup server starting up...")

    try:
        get_embedder()
    except ConfigurationError as exc:
        # Keep serving /health; dedup runs answer 503 until fixed
        logger.error("Embedding provider not configured: %s", exc)

    yield

    logger.info("Semantic dedup server shutting down...")
    await close_embedder()
    await engine.dispose()
    logger.info("Database engine disposed.")


def custom_generate_unique_id(route: APIRoute) -> str:
    """Generate deterministic, SDK-friendly operation IDs for REST routes."""
    if route.tags:
        return f"{route.tags[0]}-{route.name}"
    return route.name


app = FastAPI(
    title="Semantic Dedup",
    description="Near-duplicate detection and clustering of inbound CRM messages",
    version=__version__,
    lifespan=lifespan,
    generate_unique_id_function=custom_generate_unique_id,
)


@app.get("/health")
async def health() -> JSONResponse:
    """Simple health check endpoint for load balancers and readiness probes."""
    return JSONResponse({"status": "ok", "service": "semdedup"})


# Mounted AFTER /health so it does not shadow the health endpoint.
app.include_router(api_router)
