"""Shared-secret authentication dependency for the semantic dedup REST API.

The ``require_api_key`` FastAPI dependency:
1. Returns immediately when ``settings.api_key`` is empty (auth disabled, e.g.
   behind a private network or in local development).
2. Reads the ``X-API-Key`` header from the incoming request.
3. Hashes both the presented and the configured key with SHA-256 and compares
   the digests in constant time.
"""

from __future__ import annotations

import hashlib
import hmac

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader

from semdedup.config import settings

# auto_error=False so a missing header yields our 401 instead of FastAPI's 403
API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)


def _digest(value: str) -> bytes:
    return hashlib.sha256(value.encode()).digest()


async def require_api_key(api_key: str | None = Security(API_KEY_HEADER)) -> None:
    """FastAPI dependency that validates the ``X-API-Key`` header.

    Raises:
        HTTPException(401): If a key is configured and the header is absent or wrong.
    """
    if not settings.api_key:
        return

    if not api_key or not hmac.compare_digest(_digest(api_key), _digest(settings.api_key)):
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
