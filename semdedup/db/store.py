"""Cluster store: the only shared mutable resource of the pipeline.

Answers "which of these digests already belong to a cluster for tenant X" and
persists newly formed clusters. Each cluster and all of its members are written
in one transaction, so a concurrent reader never sees members without their
cluster row or a cluster with only part of its members.

The store is growth-only: normal operation never updates or deletes clusters.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from semdedup.db.models import SemanticCluster, SemanticClusterMember
from semdedup.errors import SourceUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_LOOKUP_CHUNK_SIZE = 500


@dataclass
class MemberDraft:
    """A cluster member ready to be inserted."""

    message_text: str
    digest: str
    similarity: float
    source_type: str
    source_id: str


@dataclass
class ClusterDraft:
    """A formed cluster ready to be inserted; members[0] is the canonical."""

    canonical_text: str
    canonical_vector: list[float]
    avg_similarity: float
    members: list[MemberDraft] = field(default_factory=list)

    @property
    def member_count(self) -> int:
        return len(self.members)


@dataclass(frozen=True)
class ClusterSummary:
    id: str
    canonical_text: str
    member_count: int
    avg_similarity: float
    created_at: datetime.datetime


class ClusterStore(ABC):
    """Persistence interface for clusters and their members."""

    @abstractmethod
    async def existing_digests(self, org_id: str, digests: Sequence[str]) -> set[str]:
        """Return the subset of *digests* already clustered for *org_id*."""
        ...

    @abstractmethod
    async def save_cluster(self, org_id: str, draft: ClusterDraft) -> uuid.UUID:
        """Insert one cluster row and all of its member rows atomically."""
        ...

    @abstractmethod
    async def list_clusters(self, org_id: str, limit: int = 50) -> list[ClusterSummary]:
        """Return the newest clusters for *org_id*."""
        ...


class SqlAlchemyClusterStore(ClusterStore):
    """ClusterStore backed by the semantic_clusters / semantic_cluster_members tables.

    Args:
        session_factory:   Async session factory (one session per operation).
        lookup_chunk_size: Max digests per IN (...) lookup; bounds both round
                           trips and statement size.
        query_timeout:     Seconds allowed for each chunk query of the lookup,
                           or None for no limit.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lookup_chunk_size: int = DEFAULT_LOOKUP_CHUNK_SIZE,
        query_timeout: float | None = None,
    ) -> None:
        if lookup_chunk_size < 1:
            raise ValueError("lookup_chunk_size must be positive")
        self._session_factory = session_factory
        self._lookup_chunk_size = lookup_chunk_size
        self._query_timeout = query_timeout

    async def existing_digests(self, org_id: str, digests: Sequence[str]) -> set[str]:
        """Return digests already present as members for *org_id*.

        Queries in chunks of ``lookup_chunk_size`` digests, each chunk under its
        own ``query_timeout``.

        Raises:
            SourceUnavailableError: If any chunk query fails or times out. The
                caller cannot tell new messages from clustered ones without a
                complete answer.
        """
        found: set[str] = set()
        if not digests:
            return found

        unique = list(dict.fromkeys(digests))
        try:
            async with self._session_factory() as session:
                for start in range(0, len(unique), self._lookup_chunk_size):
                    chunk = unique[start:start + self._lookup_chunk_size]
                    result = await asyncio.wait_for(
                        session.execute(
                            select(SemanticClusterMember.message_hash)
                            .where(SemanticClusterMember.org_id == org_id)
                            .where(SemanticClusterMember.message_hash.in_(chunk))
                        ),
                        self._query_timeout,
                    )
                    found.update(result.scalars().all())
        except TimeoutError as exc:
            raise SourceUnavailableError(
                f"already-clustered lookup timed out after {self._query_timeout}s per chunk"
            ) from exc
        except SQLAlchemyError as exc:
            raise SourceUnavailableError(f"already-clustered lookup failed: {exc}") from exc

        logger.debug(
            "existing_digests: %d of %d digests already clustered for org=%s",
            len(found),
            len(unique),
            org_id,
        )
        return found

    async def save_cluster(self, org_id: str, draft: ClusterDraft) -> uuid.UUID:
        """Insert the cluster and its members in a single transaction.

        The unit of work inserts the cluster row before its members; nothing
        is visible to other sessions until commit.

        Raises:
            SQLAlchemyError: On any insert failure (e.g. a digest already
                clustered by a concurrent run). The transaction is rolled back.
        """
        cluster = SemanticCluster(
            org_id=org_id,
            canonical_text=draft.canonical_text,
            canonical_embedding=list(draft.canonical_vector),
            member_count=draft.member_count,
            avg_similarity=draft.avg_similarity,
        )
        cluster.members = [
            SemanticClusterMember(
                org_id=org_id,
                message_text=member.message_text,
                message_hash=member.digest,
                similarity_score=member.similarity,
                source_type=member.source_type,
                source_id=member.source_id,
            )
            for member in draft.members
        ]

        async with self._session_factory() as session:
            async with session.begin():
                session.add(cluster)
        return cluster.id

    async def list_clusters(self, org_id: str, limit: int = 50) -> list[ClusterSummary]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SemanticCluster)
                .where(SemanticCluster.org_id == org_id)
                .order_by(SemanticCluster.created_at.desc())
                .limit(limit)
            )
            clusters = result.scalars().all()

        return [
            ClusterSummary(
                id=str(c.id),
                canonical_text=c.canonical_text,
                member_count=c.member_count,
                avg_similarity=c.avg_similarity,
                created_at=c.created_at,
            )
            for c in clusters
        ]
