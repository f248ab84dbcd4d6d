"""Stage 1 of the dedup pipeline: length filter and exact (content-hash) dedup.

Each candidate is normalized and addressed by the SHA-256 digest of its
normalized text. Within the batch only the first occurrence of every digest is
kept, so input order decides which raw text represents a digest. This stage
needs no persisted state; the already-clustered check happens afterwards
against the cluster store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from semdedup.pipeline.normalize import DEFAULT_ALPHABET, compute_digest, normalize_text

logger = logging.getLogger(__name__)

# Raw texts shorter than this are too short to carry intent
DEFAULT_MIN_LENGTH = 5


@dataclass(frozen=True)
class CandidateMessage:
    """A raw unit of client text, read once per run and never mutated."""

    id: str
    raw_text: str
    org_id: str


@dataclass(frozen=True)
class NormalizedMessage:
    """A candidate message together with its normalized text and digest."""

    id: str
    raw_text: str
    normalized_text: str
    digest: str


@dataclass
class ExactDedupResult:
    unique: list[NormalizedMessage] = field(default_factory=list)
    duplicates_skipped: int = 0
    too_short: int = 0

    @property
    def eligible(self) -> int:
        """Messages that passed the length filter (unique + batch duplicates)."""
        return len(self.unique) + self.duplicates_skipped


def exact_dedup(
    messages: Iterable[CandidateMessage],
    *,
    min_length: int = DEFAULT_MIN_LENGTH,
    alphabet: str = DEFAULT_ALPHABET,
) -> ExactDedupResult:
    """Drop short messages and collapse batch-local exact duplicates.

    Args:
        messages:   Candidate messages in source order (newest first).
        min_length: Raw texts with fewer characters are discarded. Texts that
                    normalize to an empty string are discarded as well.
        alphabet:   Letters kept by the normalizer.

    Returns:
        ExactDedupResult with first occurrences in input order, the number of
        batch-local duplicates discarded and the number of too-short texts.
    """
    result = ExactDedupResult()
    seen: set[str] = set()

    for message in messages:
        if len(message.raw_text) < min_length:
            result.too_short += 1
            continue

        normalized = normalize_text(message.raw_text, alphabet)
        if not normalized:
            # Only punctuation, emoji or foreign script: nothing to compare
            result.too_short += 1
            continue

        digest = compute_digest(normalized)
        if digest in seen:
            result.duplicates_skipped += 1
            continue

        seen.add(digest)
        result.unique.append(
            NormalizedMessage(
                id=message.id,
                raw_text=message.raw_text,
                normalized_text=normalized,
                digest=digest,
            )
        )

    logger.info(
        "exact dedup: %d unique, %d duplicates, %d too short",
        len(result.unique),
        result.duplicates_skipped,
        result.too_short,
    )
    return result
