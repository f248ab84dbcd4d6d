"""Tests for the candidate message sources."""

import pytest

from conftest import ORG, seed_chat_messages, seed_segments
from semdedup.db.sources import ChatMessageSource, SegmentSource, get_source
from semdedup.errors import ConfigurationError


@pytest.mark.asyncio
async def test_chat_source_reads_incoming_messages_newest_first(session_factory):
    await seed_chat_messages(session_factory, ["третье", "второе", "первое"])
    await seed_chat_messages(session_factory, ["ответ менеджера"], direction="outgoing")
    await seed_chat_messages(session_factory, ["чужое сообщение"], org_id="other-org")

    candidates = await ChatMessageSource(session_factory).fetch_candidates(ORG, 10)

    assert [c.raw_text for c in candidates] == ["третье", "второе", "первое"]
    assert all(c.org_id == ORG for c in candidates)


@pytest.mark.asyncio
async def test_chat_source_respects_limit(session_factory):
    await seed_chat_messages(session_factory, ["один", "два", "три", "четыре"])

    candidates = await ChatMessageSource(session_factory).fetch_candidates(ORG, 2)

    assert [c.raw_text for c in candidates] == ["один", "два"]


@pytest.mark.asyncio
async def test_segment_source_skips_missing_text(session_factory):
    await seed_segments(session_factory, ["Хочу записаться", None, "", "Есть рассрочка?"])

    source = SegmentSource(session_factory)
    candidates = await source.fetch_candidates(ORG, 10)

    assert source.source_type == "segment"
    assert [c.raw_text for c in candidates] == ["Хочу записаться", "Есть рассрочка?"]


def test_get_source_by_name(session_factory):
    assert isinstance(get_source("raw_messages", session_factory), ChatMessageSource)
    assert isinstance(get_source("segments", session_factory), SegmentSource)


def test_get_source_unknown_name(session_factory):
    with pytest.raises(ConfigurationError, match="unknown source"):
        get_source("emails", session_factory)
