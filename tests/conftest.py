"""Shared fixtures: in-memory SQLite store, seeding helpers, fake embedder."""

from __future__ import annotations

import asyncio
import datetime
from functools import partial

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from semdedup.db.models import Base, ChatMessage, ConversationSegment, SourceBase
from semdedup.db.sources import get_source
from semdedup.db.store import SqlAlchemyClusterStore
from semdedup.dedup.pipeline import SemanticDedupPipeline
from semdedup.errors import EmbeddingError
from semdedup.pipeline.embedder import EmbeddingProvider

ORG = "school-1"
_EPOCH = datetime.datetime(2026, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)


class FakeEmbedder(EmbeddingProvider):
    """Deterministic embedder keyed by normalized text.

    Texts without a configured vector, or listed in ``fail_on``, raise
    EmbeddingError like a failed provider call.
    """

    def __init__(
        self,
        vectors: dict[str, list[float]] | None = None,
        fail_on: set[str] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.vectors = dict(vectors or {})
        self.fail_on = set(fail_on or ())
        self.delay = delay
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if text in self.fail_on or text not in self.vectors:
            raise EmbeddingError(f"no vector for {text!r}")
        return list(self.vectors[text])

    @property
    def model_id(self) -> str:
        return "fake"

    @property
    def dimensions(self) -> int:
        return 3


@pytest.fixture
def fake_embedder_cls():
    return FakeEmbedder


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.run_sync(SourceBase.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def store(session_factory):
    return SqlAlchemyClusterStore(session_factory)


async def seed_chat_messages(
    session_factory,
    texts: list[str],
    org_id: str = ORG,
    direction: str = "incoming",
    id_prefix: str = "msg",
) -> list[str]:
    """Insert chat messages so that the source returns them in list order.

    The first text is the newest. Returns the inserted ids.
    """
    async with session_factory() as session:
        async with session.begin():
            existing = len(
                (await session.execute(ChatMessage.__table__.select())).all()
            )
            ids = []
            for i, text in enumerate(texts):
                row_id = f"{id_prefix}-{existing + i}"
                ids.append(row_id)
                session.add(
                    ChatMessage(
                        id=row_id,
                        organization_id=org_id,
                        content=text,
                        direction=direction,
                        # Later rows in a call are older; each call is newer than the last
                        created_at=_EPOCH
                        + datetime.timedelta(hours=existing)
                        - datetime.timedelta(minutes=i),
                    )
                )
    return ids


async def seed_segments(session_factory, texts: list[str | None], org_id: str = ORG) -> None:
    async with session_factory() as session:
        async with session.begin():
            for i, text in enumerate(texts):
                session.add(
                    ConversationSegment(
                        id=f"seg-{org_id}-{i}",
                        organization_id=org_id,
                        client_text=text,
                        created_at=_EPOCH - datetime.timedelta(minutes=i),
                    )
                )


def make_pipeline(session_factory, embedder, store=None, **overrides) -> SemanticDedupPipeline:
    options = {
        "embedding_batch_delay": 0.0,
        "embedding_timeout": 2.0,
        "store_timeout": 5.0,
        "run_timeout": 30.0,
    }
    options.update(overrides)
    return SemanticDedupPipeline(
        store=store or SqlAlchemyClusterStore(session_factory),
        embedder=embedder,
        source_factory=partial(get_source, session_factory=session_factory),
        **options,
    )
