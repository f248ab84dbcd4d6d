"""SQLAlchemy ORM models for semantic dedup.

Two declarative bases are defined:

- ``Base`` — tables owned by this package (semantic_clusters,
  semantic_cluster_members). Alembic's target metadata.
- ``SourceBase`` — read-only mappings of CRM tables that feed the pipeline
  (chat_messages, conversation_segments). They are created and migrated by the
  CRM, never by this package, so they live on a separate MetaData.

Design notes:
- canonical_embedding uses pgvector VECTOR(embedding_dimensions) on PostgreSQL
  and falls back to JSON on SQLite so the store can be exercised in-process.
- unique(org_id, message_hash) makes "a digest belongs to at most one cluster per
  tenant" hold at the database level, even if two runs race.
- Members are owned by their cluster: ON DELETE CASCADE plus an ORM
  delete-orphan cascade.
"""

from __future__ import annotations

import datetime
import uuid

import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from semdedup.config import settings


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for tables owned by semantic dedup."""


class SourceBase(DeclarativeBase):
    """Declarative base for CRM-owned tables read as candidate sources."""


# ---------------------------------------------------------------------------
# Cluster store
# ---------------------------------------------------------------------------


class SemanticCluster(Base):
    """One semantic group of client messages, represented by its canonical member."""

    __tablename__ = "semantic_clusters"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[str] = mapped_column(sa.String(255), nullable=False, index=True)
    canonical_text: Mapped[str] = mapped_column(sa.Text, nullable=False)
    canonical_embedding: Mapped[list[float]] = mapped_column(
        Vector(settings.embedding_dimensions).with_variant(sa.JSON(), "sqlite"),
        nullable=False,
    )
    member_count: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    avg_similarity: Mapped[float] = mapped_column(sa.Float, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=sa.func.now(),
    )

    members: Mapped[list["SemanticClusterMember"]] = relationship(
        back_populates="cluster",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class SemanticClusterMember(Base):
    """A distinct normalized message assigned to a cluster."""

    __tablename__ = "semantic_cluster_members"
    __table_args__ = (
        sa.UniqueConstraint("org_id", "message_hash", name="uq_semantic_cluster_members_org_hash"),
    )

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    cluster_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        sa.ForeignKey("semantic_clusters.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    org_id: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    message_text: Mapped[str] = mapped_column(sa.Text, nullable=False)
    message_hash: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    similarity_score: Mapped[float] = mapped_column(sa.Float, nullable=False)
    source_type: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    source_id: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=sa.func.now(),
    )

    cluster: Mapped[SemanticCluster] = relationship(back_populates="members")


# ---------------------------------------------------------------------------
# CRM source tables (read-only)
# ---------------------------------------------------------------------------


class ChatMessage(SourceBase):
    """Messenger message as stored by the CRM webhooks."""

    __tablename__ = "chat_messages"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    organization_id: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    content: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    direction: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow
    )


class ConversationSegment(SourceBase):
    """Client-side slice of an indexed conversation."""

    __tablename__ = "conversation_segments"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    organization_id: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    client_text: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow
    )
