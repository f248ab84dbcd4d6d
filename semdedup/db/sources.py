"""Candidate message sources for the semantic dedup pipeline.

A source is selected once per invocation and answers a single question:
"the most recent N client texts for tenant X". Two variants exist:

- ``raw_messages`` → ChatMessageSource: incoming messenger messages
- ``segments``     → SegmentSource: client text of indexed conversation segments

Sources never mutate the CRM tables they read.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from semdedup.db.models import ChatMessage, ConversationSegment
from semdedup.dedup.exact_stage import CandidateMessage
from semdedup.errors import ConfigurationError, SourceUnavailableError

logger = logging.getLogger(__name__)


class CandidateSource(ABC):
    """Capability that fetches candidate messages for one tenant."""

    #: Tag stored on cluster members as the back-reference kind
    source_type: str = ""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @abstractmethod
    def _statement(self, org_id: str, limit: int):
        """Return a SELECT yielding (id, text) rows, newest first."""
        ...

    async def fetch_candidates(self, org_id: str, limit: int) -> list[CandidateMessage]:
        """Return up to *limit* candidate messages for *org_id*, newest first.

        Raises:
            SourceUnavailableError: If the source table cannot be queried.
        """
        try:
            async with self._session_factory() as session:
                result = await session.execute(self._statement(org_id, limit))
                rows = result.all()
        except SQLAlchemyError as exc:
            raise SourceUnavailableError(
                f"failed to read {self.source_type} candidates: {exc}"
            ) from exc

        return [
            CandidateMessage(id=str(row_id), raw_text=text, org_id=org_id)
            for row_id, text in rows
            if text
        ]


class ChatMessageSource(CandidateSource):
    """Incoming messenger messages (WhatsApp, Telegram, MAX)."""

    source_type = "chat"

    def _statement(self, org_id: str, limit: int):
        return (
            select(ChatMessage.id, ChatMessage.content)
            .where(ChatMessage.organization_id == org_id)
            .where(ChatMessage.direction == "incoming")
            .where(ChatMessage.content.isnot(None))
            .order_by(ChatMessage.created_at.desc())
            .limit(limit)
        )


class SegmentSource(CandidateSource):
    """Client text extracted from indexed conversation segments."""

    source_type = "segment"

    def _statement(self, org_id: str, limit: int):
        return (
            select(ConversationSegment.id, ConversationSegment.client_text)
            .where(ConversationSegment.organization_id == org_id)
            .where(ConversationSegment.client_text.isnot(None))
            .order_by(ConversationSegment.created_at.desc())
            .limit(limit)
        )


SOURCES: dict[str, type[CandidateSource]] = {
    "raw_messages": ChatMessageSource,
    "segments": SegmentSource,
}


def get_source(
    name: str,
    session_factory: async_sessionmaker[AsyncSession],
) -> CandidateSource:
    """Instantiate the candidate source registered under *name*.

    Raises:
        ConfigurationError: If *name* is not a known source.
    """
    try:
        source_cls = SOURCES[name]
    except KeyError:
        raise ConfigurationError(
            f"unknown source {name!r}; expected one of {sorted(SOURCES)}"
        ) from None
    return source_cls(session_factory)
