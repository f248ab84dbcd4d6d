"""
Embedding provider abstraction for semantic dedup.

Provides an abstract EmbeddingProvider interface so the pipeline depends on a
single fallible capability (text in, vector out) and tests can substitute a
deterministic fake without network access.

Implementations:
- OpenAIEmbeddingProvider: any OpenAI-compatible /embeddings endpoint over httpx
  (default: text-embedding-3-small, 1536 dimensions)
- SentenceTransformerProvider: local sentence-transformers model, requires the
  optional ``local`` extra

Design decisions:
- One attempt per call. A failure raises EmbeddingError and the pipeline drops
  that item; re-running the batch later is idempotent, so there is no retry loop.
- Every HTTP call carries its own timeout so one stuck request cannot stall a
  whole sub-batch.
- Module-level get_embedder() returns a singleton so the HTTP connection pool
  (or the local model) is created once per process.

Exports: EmbeddingProvider, OpenAIEmbeddingProvider, SentenceTransformerProvider,
         get_embedder, close_embedder
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

import httpx

from semdedup.errors import ConfigurationError, EmbeddingError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.openai.com/v1/embeddings"
DEFAULT_MODEL = "text-embedding-3-small"
DEFAULT_DIMENSIONS = 1536
DEFAULT_TIMEOUT_SECONDS = 10.0


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------


class EmbeddingProvider(ABC):
    """Abstract interface for embedding providers.

    Implementors must:
    - Embed a single text string to a list of floats, raising EmbeddingError on
      any per-call failure
    - Expose model_id and dimensions
    """

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed a single text and return its vector."""
        ...

    @property
    @abstractmethod
    def model_id(self) -> str:
        ...

    @property
    @abstractmethod
    def dimensions(self) -> int:
        ...

    async def aclose(self) -> None:
        """Release network or model resources. No-op by default."""


# ---------------------------------------------------------------------------
# OpenAI-compatible HTTP implementation
# ---------------------------------------------------------------------------


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """EmbeddingProvider backed by an OpenAI-compatible /embeddings endpoint.

    Args:
        api_key:    Bearer token. Empty or non-ASCII raises ConfigurationError.
        model:      Embedding model name.
        api_url:    Full URL of the /embeddings endpoint.
        dimensions: Expected vector length; other lengths raise EmbeddingError.
        timeout:    Per-call timeout in seconds.
        client:     Optional pre-built httpx.AsyncClient (tests pass one with a
                    MockTransport). When omitted, the provider owns its client.
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        api_url: str = DEFAULT_API_URL,
        dimensions: int = DEFAULT_DIMENSIONS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("embedding API key is not configured")
        if not api_key.isascii():
            # HTTP header values must be ASCII
            raise ConfigurationError("embedding API key contains non-ASCII characters")
        self._api_key = api_key
        self._model = model
        self._api_url = api_url
        self._dimensions = dimensions
        self._timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def embed(self, text: str) -> list[float]:
        """POST *text* to the embeddings endpoint and return the vector.

        Raises:
            EmbeddingError: On timeout, transport error, non-2xx status or a
                payload without a numeric vector of the expected length.
        """
        try:
            response = await self._client.post(
                self._api_url,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                json={"model": self._model, "input": text},
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise EmbeddingError(f"embedding request timed out after {self._timeout}s") from exc
        except httpx.HTTPStatusError as exc:
            raise EmbeddingError(
                f"embedding provider error ({exc.response.status_code}): {exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise EmbeddingError(f"embedding request failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise EmbeddingError(f"embedding response is not JSON: {exc}") from exc

        return self._parse_vector(payload)

    def _parse_vector(self, payload: object) -> list[float]:
        try:
            vector = payload["data"][0]["embedding"]  # type: ignore[index]
            vector = [float(x) for x in vector]
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise EmbeddingError(f"malformed embedding response: {exc!r}") from exc

        if len(vector) != self._dimensions:
            raise EmbeddingError(
                f"embedding has {len(vector)} dimensions, expected {self._dimensions}"
            )
        return vector

    @property
    def model_id(self) -> str:
        return self._model

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


# ---------------------------------------------------------------------------
# SentenceTransformer implementation
# ---------------------------------------------------------------------------


class SentenceTransformerProvider(EmbeddingProvider):
    """EmbeddingProvider backed by a local sentence-transformers model.

    The model is loaded once at construction. Encoding runs in a worker thread
    so the event loop keeps serving other coroutines. Vectors are normalized
    to unit length.
    """

    def __init__(self, model_name: str) -> None:
        from sentence_transformers import SentenceTransformer  # noqa: PLC0415

        # Suppress verbose logging from sentence-transformers
        logging.getLogger("sentence_transformers").setLevel(logging.WARNING)
        self._model_name = model_name
        self._model = SentenceTransformer(model_name)
        self._dimensions: int = self._model.get_sentence_embedding_dimension()

    async def embed(self, text: str) -> list[float]:
        try:
            vector = await asyncio.to_thread(
                self._model.encode, text, normalize_embeddings=True
            )
        except Exception as exc:
            raise EmbeddingError(f"local embedding failed: {exc}") from exc
        return vector.tolist()

    @property
    def model_id(self) -> str:
        return self._model_name

    @property
    def dimensions(self) -> int:
        return self._dimensions


# ---------------------------------------------------------------------------
# Module-level singleton accessor
# ---------------------------------------------------------------------------


class _EmbedderSingleton:
    """Internal singleton holder; prevents repeated client/model setup."""

    _instance: EmbeddingProvider | None = None


def get_embedder() -> EmbeddingProvider:
    """Return the process-wide embedding provider selected by settings.

    Raises:
        ConfigurationError: If the provider name is unknown or the OpenAI
            provider has no API key.
    """
    if _EmbedderSingleton._instance is None:
        from semdedup.config import settings  # noqa: PLC0415

        if settings.embedding_provider == "openai":
            provider: EmbeddingProvider = OpenAIEmbeddingProvider(
                api_key=settings.embedding_api_key,
                model=settings.embedding_model,
                api_url=settings.embedding_api_url,
                dimensions=settings.embedding_dimensions,
                timeout=settings.embedding_timeout_seconds,
            )
        elif settings.embedding_provider == "sentence-transformers":
            provider = SentenceTransformerProvider(settings.embedding_model)
        else:
            raise ConfigurationError(
                f"unknown embedding provider {settings.embedding_provider!r}"
            )
        logger.info(
            "Embedding provider ready: %s (dims=%d)", provider.model_id, provider.dimensions
        )
        _EmbedderSingleton._instance = provider
    return _EmbedderSingleton._instance


async def close_embedder() -> None:
    """Close and forget the singleton so the next get_embedder() builds a fresh one.

    Needed wherever each run gets its own event loop (CLI, Celery tasks): pooled
    HTTP connections must not outlive the loop that opened them.
    """
    instance = _EmbedderSingleton._instance
    _EmbedderSingleton._instance = None
    if instance is not None:
        await instance.aclose()
