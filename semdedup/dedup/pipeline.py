"""Semantic dedup pipeline orchestrator.

One invocation is a single synchronous pass for one tenant:

  1. Fetch candidates from the selected source (newest first, up to ``limit``)
  2. Exact dedup: length filter + batch-local digest dedup
  3. Drop digests already clustered for the tenant (batched lookup)
  4. Embed the remaining normalized texts (sub-batches, per-item failures)
  5. Greedy threshold clustering over the embedded batch
  6. Persist each cluster with its members in one transaction per cluster

Steps 2–3 finish before any embedding request is made, and clustering finishes
before persistence starts. Per-item failures (embedding, one cluster's insert)
are counted in ``errors`` and never raised; configuration and source errors
abort the run before any work is done.

A run stops early when its deadline expires or when the caller sets the
cancellation event. Clusters already persisted stay; the report carries the
counters reached so far with ``cancelled=True``.

Only messages not yet clustered are grouped, and only with each other: a new
message is never merged into a cluster formed by an earlier run.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from functools import partial
from typing import Awaitable, Callable, Sequence, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from semdedup.db.sources import CandidateSource
from semdedup.db.store import ClusterDraft, ClusterStore, MemberDraft
from semdedup.dedup.cluster_stage import DEFAULT_THRESHOLD, Cluster, greedy_threshold_cluster
from semdedup.dedup.embedding_stage import EmbeddedMessage, acquire_embeddings
from semdedup.dedup.exact_stage import DEFAULT_MIN_LENGTH, exact_dedup
from semdedup.errors import ConfigurationError, SourceUnavailableError
from semdedup.pipeline.embedder import EmbeddingProvider
from semdedup.pipeline.normalize import DEFAULT_ALPHABET

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SOURCE = "raw_messages"
DEFAULT_LIMIT = 5000


@dataclass
class DedupRequest:
    org_id: str | None
    source: str = DEFAULT_SOURCE
    limit: int = DEFAULT_LIMIT


@dataclass
class DedupReport:
    """Counters returned to the caller for every run, including partial ones."""

    clusters_created: int = 0
    messages_processed: int = 0
    unique_after_hash_dedup: int = 0
    duplicates_skipped: int = 0
    embeddings_created: int = 0
    errors: int = 0
    cancelled: bool = False
    message: str | None = None

    def as_dict(self) -> dict:
        return asdict(self)


class SemanticDedupPipeline:
    """Wires exact dedup, embedding, clustering and persistence into one run.

    Args:
        store:          Cluster store (already-clustered lookup + inserts).
        embedder:       Embedding capability; failures are per item.
        source_factory: Maps a source name to a CandidateSource; raises
                        ConfigurationError for unknown names.

    Keyword args mirror the ``Settings`` fields of the same meaning.
    """

    def __init__(
        self,
        store: ClusterStore,
        embedder: EmbeddingProvider,
        source_factory: Callable[[str], CandidateSource],
        *,
        similarity_threshold: float = DEFAULT_THRESHOLD,
        min_message_length: int = DEFAULT_MIN_LENGTH,
        alphabet: str = DEFAULT_ALPHABET,
        max_message_limit: int = 20000,
        embedding_batch_size: int = 50,
        embedding_batch_delay: float = 0.2,
        embedding_concurrency: int = 5,
        embedding_max_chars: int = 8000,
        embedding_timeout: float = 10.0,
        store_timeout: float = 10.0,
        run_timeout: float | None = 600.0,
    ) -> None:
        if store is None:
            raise ConfigurationError("cluster store is not configured")
        if embedder is None:
            raise ConfigurationError("embedding provider is not configured")
        self._store = store
        self._embedder = embedder
        self._source_factory = source_factory
        self._threshold = similarity_threshold
        self._min_length = min_message_length
        self._alphabet = alphabet
        self._max_limit = max_message_limit
        self._batch_size = embedding_batch_size
        self._batch_delay = embedding_batch_delay
        self._concurrency = embedding_concurrency
        self._max_chars = embedding_max_chars
        self._embedding_timeout = embedding_timeout
        self._store_timeout = store_timeout
        self._run_timeout = run_timeout

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(
        self,
        request: DedupRequest,
        cancel_event: asyncio.Event | None = None,
    ) -> DedupReport:
        """Execute one dedup pass for ``request.org_id``.

        Raises:
            ConfigurationError:     Missing tenant, bad limit or unknown source.
            SourceUnavailableError: Candidates or existing digests could not be read.
        """
        org_id, source, limit = self._resolve(request)
        report = DedupReport()

        logger.info(
            "[semantic-dedup] Starting for org=%s, source=%s, limit=%d",
            org_id,
            request.source,
            limit,
        )
        deadline = asyncio.timeout(self._run_timeout)
        try:
            async with deadline:
                await self._execute(org_id, source, limit, report, cancel_event)
        except TimeoutError:
            if not deadline.expired():
                raise
            report.cancelled = True
            report.message = f"Run deadline of {self._run_timeout}s reached"
            logger.warning(
                "[semantic-dedup] Deadline reached for org=%s after %d clusters",
                org_id,
                report.clusters_created,
            )

        logger.info("[semantic-dedup] Done: %s", report)
        return report

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _resolve(self, request: DedupRequest) -> tuple[str, CandidateSource, int]:
        org_id = (request.org_id or "").strip()
        if not org_id:
            raise ConfigurationError("tenant_id required")
        if request.limit < 1:
            raise ConfigurationError("limit must be a positive integer")

        limit = request.limit
        if limit > self._max_limit:
            logger.warning(
                "[semantic-dedup] limit %d above ceiling, clamped to %d",
                limit,
                self._max_limit,
            )
            limit = self._max_limit

        return org_id, self._source_factory(request.source), limit

    async def _execute(
        self,
        org_id: str,
        source: CandidateSource,
        limit: int,
        report: DedupReport,
        cancel_event: asyncio.Event | None,
    ) -> None:
        # Step 1: candidates
        candidates = await self._read(
            source.fetch_candidates(org_id, limit), "fetching candidates"
        )
        logger.info("[semantic-dedup] Raw messages: %d", len(candidates))

        # Step 2: exact dedup
        exact = exact_dedup(candidates, min_length=self._min_length, alphabet=self._alphabet)
        report.messages_processed = exact.eligible
        report.unique_after_hash_dedup = len(exact.unique)
        report.duplicates_skipped = exact.duplicates_skipped

        if not exact.unique:
            report.message = "No messages to process"
            return

        # Step 3: already clustered
        # The store bounds each chunk query of the lookup on its own
        existing = await self._store.existing_digests(
            org_id, [m.digest for m in exact.unique]
        )
        fresh = [m for m in exact.unique if m.digest not in existing]
        logger.info("[semantic-dedup] New messages to cluster: %d", len(fresh))

        if not fresh:
            report.message = "All messages already clustered"
            return

        # Step 4: embeddings
        embedded: list[EmbeddedMessage] = []
        async for outcome in acquire_embeddings(
            fresh,
            self._embedder,
            batch_size=self._batch_size,
            batch_delay=self._batch_delay,
            concurrency=self._concurrency,
            max_chars=self._max_chars,
            timeout=self._embedding_timeout,
        ):
            embedded.extend(outcome.embedded)
            report.embeddings_created += len(outcome.embedded)
            report.errors += outcome.failures
            if self._cancelled(cancel_event, report):
                return

        logger.info("[semantic-dedup] Embeddings created: %d", len(embedded))

        # Step 5: clustering
        clusters = greedy_threshold_cluster(
            [e.vector for e in embedded], threshold=self._threshold
        )
        logger.info(
            "[semantic-dedup] Clusters formed: %d from %d messages",
            len(clusters),
            len(embedded),
        )

        # Step 6: persistence
        for cluster in clusters:
            if self._cancelled(cancel_event, report):
                return
            draft = self._draft(cluster, embedded, source.source_type)
            try:
                await asyncio.wait_for(
                    self._store.save_cluster(org_id, draft), self._store_timeout
                )
            except TimeoutError:
                logger.error(
                    "[semantic-dedup] Cluster insert timed out after %ss (canonical=%r)",
                    self._store_timeout,
                    draft.canonical_text[:80],
                )
                report.errors += 1
                continue
            except SQLAlchemyError as exc:
                logger.error(
                    "[semantic-dedup] Cluster insert error (canonical=%r): %s",
                    draft.canonical_text[:80],
                    exc,
                )
                report.errors += 1
                continue
            report.clusters_created += 1

    async def _read(self, call: Awaitable[T], what: str) -> T:
        try:
            return await asyncio.wait_for(call, self._store_timeout)
        except TimeoutError as exc:
            raise SourceUnavailableError(
                f"{what} timed out after {self._store_timeout}s"
            ) from exc

    @staticmethod
    def _cancelled(cancel_event: asyncio.Event | None, report: DedupReport) -> bool:
        if cancel_event is None or not cancel_event.is_set():
            return False
        report.cancelled = True
        report.message = "Run cancelled"
        logger.warning(
            "[semantic-dedup] Cancelled after %d clusters", report.clusters_created
        )
        return True

    @staticmethod
    def _draft(
        cluster: Cluster,
        embedded: Sequence[EmbeddedMessage],
        source_type: str,
    ) -> ClusterDraft:
        canonical = embedded[cluster.canonical]
        return ClusterDraft(
            canonical_text=canonical.message.normalized_text,
            canonical_vector=canonical.vector,
            avg_similarity=cluster.avg_similarity,
            members=[
                MemberDraft(
                    message_text=embedded[index].message.raw_text,
                    digest=embedded[index].message.digest,
                    similarity=similarity,
                    source_type=source_type,
                    source_id=embedded[index].message.id,
                )
                for index, similarity in zip(cluster.members, cluster.similarities)
            ],
        )


# ---------------------------------------------------------------------------
# Production wiring
# ---------------------------------------------------------------------------


def build_pipeline() -> SemanticDedupPipeline:
    """Build a pipeline from settings with the database store and the configured embedder.

    Raises:
        ConfigurationError: If the embedding provider cannot be configured.
    """
    from semdedup.config import settings  # noqa: PLC0415
    from semdedup.db.session import AsyncSessionFactory  # noqa: PLC0415
    from semdedup.db.sources import get_source  # noqa: PLC0415
    from semdedup.db.store import SqlAlchemyClusterStore  # noqa: PLC0415
    from semdedup.pipeline.embedder import get_embedder  # noqa: PLC0415

    return SemanticDedupPipeline(
        store=SqlAlchemyClusterStore(
            AsyncSessionFactory,
            lookup_chunk_size=settings.existing_lookup_chunk_size,
            query_timeout=settings.store_timeout_seconds,
        ),
        embedder=get_embedder(),
        source_factory=partial(get_source, session_factory=AsyncSessionFactory),
        similarity_threshold=settings.similarity_threshold,
        min_message_length=settings.min_message_length,
        alphabet=settings.normalizer_alphabet,
        max_message_limit=settings.max_message_limit,
        embedding_batch_size=settings.embedding_batch_size,
        embedding_batch_delay=settings.embedding_batch_delay_seconds,
        embedding_concurrency=settings.embedding_concurrency,
        embedding_max_chars=settings.embedding_max_chars,
        embedding_timeout=settings.embedding_timeout_seconds,
        store_timeout=settings.store_timeout_seconds,
        run_timeout=settings.run_timeout_seconds,
    )


async def run_semantic_dedup(
    org_id: str,
    source: str = DEFAULT_SOURCE,
    limit: int | None = None,
) -> DedupReport:
    """Build the production pipeline and run it once for *org_id*."""
    from semdedup.config import settings  # noqa: PLC0415

    pipeline = build_pipeline()
    request = DedupRequest(
        org_id=org_id,
        source=source,
        limit=limit if limit is not None else settings.default_message_limit,
    )
    return await pipeline.run(request)
