"""Stage 2 of the dedup pipeline: embedding acquisition.

Requests one vector per new normalized message from the injected
EmbeddingProvider. Messages are processed in sub-batches with a pause between
sub-batches to respect provider rate limits; inside a sub-batch at most
``concurrency`` requests are in flight.

Failures are per item: a timeout, a provider error or any other exception
raised by the provider drops that message from clustering and is counted,
never raised. The stage is an async generator
yielding one result per sub-batch so the caller can update counters and stop
between sub-batches.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Sequence

from semdedup.dedup.exact_stage import NormalizedMessage
from semdedup.errors import EmbeddingError
from semdedup.pipeline.embedder import EmbeddingProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmbeddedMessage:
    message: NormalizedMessage
    vector: list[float]


@dataclass
class BatchOutcome:
    """Result of one sub-batch: successes in input order plus the failure count."""

    embedded: list[EmbeddedMessage]
    failures: int


async def _embed_one(
    message: NormalizedMessage,
    embedder: EmbeddingProvider,
    semaphore: asyncio.Semaphore,
    max_chars: int,
    timeout: float,
) -> EmbeddedMessage | None:
    async with semaphore:
        try:
            vector = await asyncio.wait_for(
                embedder.embed(message.normalized_text[:max_chars]),
                timeout,
            )
        except TimeoutError:
            logger.warning(
                "embedding timed out after %ss for message %s", timeout, message.id
            )
            return None
        except EmbeddingError as exc:
            logger.warning("embedding failed for message %s: %s", message.id, exc)
            return None
        except Exception:
            # A provider bug costs only this item
            logger.exception("embedding provider raised for message %s", message.id)
            return None
    return EmbeddedMessage(message=message, vector=vector)


async def acquire_embeddings(
    messages: Sequence[NormalizedMessage],
    embedder: EmbeddingProvider,
    *,
    batch_size: int = 50,
    batch_delay: float = 0.2,
    concurrency: int = 5,
    max_chars: int = 8000,
    timeout: float = 10.0,
) -> AsyncIterator[BatchOutcome]:
    """Embed *messages* sub-batch by sub-batch.

    Args:
        messages:    Messages to embed; output order follows this order.
        embedder:    Text-in / vector-out capability.
        batch_size:  Messages per sub-batch.
        batch_delay: Seconds to wait between sub-batches (not after the last).
        concurrency: Max in-flight requests within a sub-batch.
        max_chars:   Normalized text is truncated to this many characters.
        timeout:     Per-request timeout in seconds.

    Yields:
        BatchOutcome for every sub-batch.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be positive")

    semaphore = asyncio.Semaphore(max(1, concurrency))

    for start in range(0, len(messages), batch_size):
        batch = messages[start:start + batch_size]
        results = await asyncio.gather(
            *(_embed_one(m, embedder, semaphore, max_chars, timeout) for m in batch)
        )
        embedded = [r for r in results if r is not None]
        yield BatchOutcome(embedded=embedded, failures=len(batch) - len(embedded))

        # Rate limit protection
        if start + batch_size < len(messages) and batch_delay > 0:
            await asyncio.sleep(batch_delay)
