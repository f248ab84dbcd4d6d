"""Cluster listing endpoint.

Endpoint:
- GET /clusters — newest clusters for a tenant

Downstream consumers read canonicals from here to make one language-model call
per distinct intent instead of one per message.
"""

from __future__ import annotations

import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from semdedup.api.auth import require_api_key
from semdedup.db.store import ClusterStore, SqlAlchemyClusterStore

clusters_router = APIRouter(prefix="/clusters", tags=["clusters"])


class ClusterResponse(BaseModel):
    id: str
    canonical_text: str
    member_count: int
    avg_similarity: float
    created_at: datetime.datetime

    model_config = {"from_attributes": True}


class ClusterListResponse(BaseModel):
    tenant_id: str
    clusters: list[ClusterResponse]


def get_cluster_store() -> ClusterStore:
    """FastAPI dependency returning the database-backed cluster store."""
    from semdedup.db.session import AsyncSessionFactory  # noqa: PLC0415

    return SqlAlchemyClusterStore(AsyncSessionFactory)


@clusters_router.get(
    "",
    response_model=ClusterListResponse,
    operation_id="list_clusters",
    summary="List a tenant's semantic clusters, newest first",
    dependencies=[Depends(require_api_key)],
)
async def list_clusters_endpoint(
    tenant_id: Annotated[str, Query(min_length=1, description="Tenant (organization) id")],
    limit: Annotated[int, Query(ge=1, le=200, description="Max clusters (1-200)")] = 50,
    store: ClusterStore = Depends(get_cluster_store),
) -> ClusterListResponse:
    summaries = await store.list_clusters(tenant_id, limit=limit)
    return ClusterListResponse(
        tenant_id=tenant_id,
        clusters=[ClusterResponse.model_validate(s) for s in summaries],
    )
