"""Exception hierarchy for semantic dedup.

Configuration and source errors abort an invocation before any embedding or
persistence work starts. Embedding errors are per-item: the pipeline counts
them and moves on.
"""

from __future__ import annotations


class DedupError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(DedupError):
    """Invocation cannot start: missing tenant, unknown source, missing credentials."""


class SourceUnavailableError(DedupError):
    """The candidate store or the cluster store could not be read."""


class EmbeddingError(DedupError):
    """A single embedding request failed or returned an unusable payload."""


class TenantBusyError(DedupError):
    """Another run already holds the per-tenant lock."""

    def __init__(self, org_id: str) -> None:
        super().__init__(f"semantic dedup already running for org {org_id}")
        self.org_id = org_id
