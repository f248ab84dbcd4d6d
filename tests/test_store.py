"""Tests for the SQLAlchemy cluster store."""

import asyncio

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from semdedup.db.models import SemanticCluster, SemanticClusterMember
from semdedup.db.store import ClusterDraft, MemberDraft, SqlAlchemyClusterStore
from semdedup.errors import SourceUnavailableError
from semdedup.pipeline.normalize import compute_digest


def _draft(*texts: str, avg: float = 0.95) -> ClusterDraft:
    return ClusterDraft(
        canonical_text=texts[0],
        canonical_vector=[1.0, 0.0, 0.0],
        avg_similarity=avg,
        members=[
            MemberDraft(
                message_text=t,
                digest=compute_digest(t),
                similarity=1.0 if i == 0 else 0.95,
                source_type="chat",
                source_id=f"msg-{i}",
            )
            for i, t in enumerate(texts)
        ],
    )


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.mark.asyncio
async def test_save_cluster_writes_cluster_and_members(store, session_factory):
    cluster_id = await store.save_cluster("org", _draft("сколько стоит курс", "сколько стоит ваш курс"))

    async with session_factory() as session:
        cluster = await session.get(SemanticCluster, cluster_id)
        members = (
            await session.execute(
                select(SemanticClusterMember).where(SemanticClusterMember.cluster_id == cluster_id)
            )
        ).scalars().all()

    assert cluster.member_count == 2
    assert cluster.canonical_text == "сколько стоит курс"
    assert list(cluster.canonical_embedding) == [1.0, 0.0, 0.0]
    assert {m.message_hash for m in members} == {
        compute_digest("сколько стоит курс"),
        compute_digest("сколько стоит ваш курс"),
    }
    assert all(m.org_id == "org" for m in members)


@pytest.mark.asyncio
async def test_existing_digests_is_scoped_by_tenant(store):
    await store.save_cluster("org-a", _draft("где находится школа"))
    digest = compute_digest("где находится школа")

    assert await store.existing_digests("org-a", [digest]) == {digest}
    assert await store.existing_digests("org-b", [digest]) == set()


@pytest.mark.asyncio
async def test_existing_digests_in_chunks(session_factory):
    store = SqlAlchemyClusterStore(session_factory, lookup_chunk_size=2)
    texts = [f"вопрос номер {i}" for i in range(5)]
    await store.save_cluster("org", _draft(*texts))
    digests = [compute_digest(t) for t in texts] + [compute_digest("новый вопрос")]

    found = await store.existing_digests("org", digests + digests[:2])

    assert found == set(digests[:5])


@pytest.mark.asyncio
async def test_existing_digests_empty_input(store):
    assert await store.existing_digests("org", []) == set()


def test_lookup_chunk_size_must_be_positive(session_factory):
    with pytest.raises(ValueError):
        SqlAlchemyClusterStore(session_factory, lookup_chunk_size=0)


@pytest.mark.asyncio
async def test_digest_can_belong_to_one_cluster_only(store, session_factory):
    await store.save_cluster("org", _draft("первый вопрос"))

    with pytest.raises(SQLAlchemyError):
        await store.save_cluster("org", _draft("второй вопрос", "первый вопрос"))

    # The failed cluster left nothing behind
    assert await _count(session_factory, SemanticCluster) == 1
    assert await _count(session_factory, SemanticClusterMember) == 1
    assert await store.existing_digests("org", [compute_digest("второй вопрос")]) == set()


@pytest.mark.asyncio
async def test_same_digest_allowed_in_other_tenant(store):
    await store.save_cluster("org-a", _draft("первый вопрос"))
    await store.save_cluster("org-b", _draft("первый вопрос"))

    assert len(await store.list_clusters("org-a")) == 1
    assert len(await store.list_clusters("org-b")) == 1


@pytest.mark.asyncio
async def test_list_clusters_newest_first(store):
    for text in ["старый вопрос", "средний вопрос", "новый вопрос"]:
        await store.save_cluster("org", _draft(text))

    summaries = await store.list_clusters("org", limit=2)

    assert [s.canonical_text for s in summaries] == ["новый вопрос", "средний вопрос"]
    assert summaries[0].member_count == 1


class _Rows:
    def __init__(self, values):
        self._values = values

    def scalars(self):
        return self

    def all(self):
        return self._values


class _StubSession:
    """Stands in for an AsyncSession whose execute() is scripted per test."""

    def __init__(self, execute):
        self._execute = execute

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def execute(self, statement):
        return await self._execute(statement)


@pytest.mark.asyncio
async def test_lookup_database_error_is_source_unavailable():
    async def broken(statement):
        raise OperationalError("SELECT message_hash", {}, Exception("connection reset"))

    store = SqlAlchemyClusterStore(lambda: _StubSession(broken))

    with pytest.raises(SourceUnavailableError, match="lookup failed"):
        await store.existing_digests("org", [compute_digest("вопрос")])


@pytest.mark.asyncio
async def test_lookup_timeout_applies_per_chunk():
    calls = 0

    async def slowish(statement):
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.05)
        return _Rows([])

    store = SqlAlchemyClusterStore(
        lambda: _StubSession(slowish), lookup_chunk_size=1, query_timeout=0.5
    )
    digests = [compute_digest(f"вопрос {i}") for i in range(12)]

    # 12 chunks take longer in total than one chunk's budget
    assert await store.existing_digests("org", digests) == set()
    assert calls == 12


@pytest.mark.asyncio
async def test_stuck_lookup_chunk_is_source_unavailable():
    async def stuck(statement):
        await asyncio.sleep(5)

    store = SqlAlchemyClusterStore(lambda: _StubSession(stuck), query_timeout=0.05)

    with pytest.raises(SourceUnavailableError, match="timed out"):
        await store.existing_digests("org", [compute_digest("вопрос")])
