"""Semantic dedup run endpoint.

Endpoint:
- POST /dedup/run — run one dedup pass for a tenant and return its counters

The tenant may be passed as ``tenant_id`` or, as the CRM front end
sends it, ``organization_id``. A missing tenant is a client error (400); a
run with nothing to cluster is a success with zeroed counters and a note.
Partial success (some clusters, some errors) is a normal 200 response.
"""

from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import AliasChoices, BaseModel, Field

from semdedup.api.auth import require_api_key
from semdedup.config import settings
from semdedup.dedup.pipeline import DedupRequest, SemanticDedupPipeline, build_pipeline
from semdedup.errors import ConfigurationError, DedupError, SourceUnavailableError

logger = logging.getLogger(__name__)

dedup_router = APIRouter(prefix="/dedup", tags=["dedup"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class DedupRunRequest(BaseModel):
    """Request body for POST /dedup/run."""

    tenant_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("tenant_id", "organization_id"),
    )
    source: Literal["raw_messages", "segments"] = "raw_messages"
    limit: int = Field(default_factory=lambda: settings.default_message_limit, ge=1)


class DedupRunResponse(BaseModel):
    """Response body for POST /dedup/run."""

    clusters_created: int
    messages_processed: int
    unique_after_hash_dedup: int
    duplicates_skipped: int
    embeddings_created: int
    errors: int
    cancelled: bool = False
    message: str | None = None


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_pipeline() -> SemanticDedupPipeline:
    """FastAPI dependency returning a pipeline wired from settings."""
    try:
        return build_pipeline()
    except ConfigurationError as exc:
        logger.error("semantic dedup is not configured: %s", exc)
        raise HTTPException(status_code=503, detail=f"Service misconfigured: {exc}") from exc


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@dedup_router.post(
    "/run",
    response_model=DedupRunResponse,
    operation_id="run_semantic_dedup",
    summary="Cluster a tenant's new client messages",
    description=(
        "Collapses exact and near-duplicate client messages of one tenant into "
        "canonical clusters. Messages already clustered by earlier runs are skipped, "
        "so repeated calls are idempotent."
    ),
    dependencies=[Depends(require_api_key)],
)
async def run_dedup_endpoint(
    body: DedupRunRequest | None = None,
    pipeline: SemanticDedupPipeline = Depends(get_pipeline),
) -> DedupRunResponse:
    body = body or DedupRunRequest()
    if not body.tenant_id:
        raise HTTPException(status_code=400, detail="tenant_id required")

    try:
        report = await pipeline.run(
            DedupRequest(org_id=body.tenant_id, source=body.source, limit=body.limit)
        )
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except SourceUnavailableError as exc:
        logger.error("semantic dedup source unavailable for org=%s: %s", body.tenant_id, exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except DedupError as exc:
        logger.exception("semantic dedup failed for org=%s", body.tenant_id)
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    return DedupRunResponse(**report.as_dict())
