"""Top-level FastAPI APIRouter for the semantic dedup REST API (v1).

Prefix:  /api/v1

Sub-routers included:
- dedup_router     — POST /api/v1/dedup/run
- clusters_router  — GET /api/v1/clusters
"""

from __future__ import annotations

from fastapi import APIRouter

from semdedup.api.routes.clusters import clusters_router
from semdedup.api.routes.dedup import dedup_router

api_router = APIRouter(prefix="/api/v1", tags=["rest-api"])

api_router.include_router(dedup_router)
api_router.include_router(clusters_router)
