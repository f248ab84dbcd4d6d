"""Semantic cluster tables.

Revision ID: 001
Revises:
Create Date: 2026-10-18

Creates:
- semantic_clusters         : one row per cluster, canonical text + vector
- semantic_cluster_members  : one row per distinct digest, owned by its cluster

Indexes:
- ix_semantic_clusters_org_created        : newest-first listing per tenant
- uq_semantic_cluster_members_org_hash    : a digest belongs to at most one cluster
                                            per tenant; also serves the batched
                                            already-clustered lookup
- ix_semantic_cluster_members_cluster_id  : member fetch / cascade delete

Design notes:
- canonical_embedding is vector(N) where N = SEMDEDUP_EMBEDDING_DIMENSIONS at
  migration time (1536 for text-embedding-3-small). Changing the embedding
  model to a different width needs a new migration.
- No HNSW index: clusters are compared in memory within a run, never searched.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from pgvector.sqlalchemy import Vector

from alembic import op
from semdedup.config import settings

# revision identifiers used by Alembic
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        "semantic_clusters",
        sa.Column("id", sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("org_id", sa.String(255), nullable=False),
        sa.Column("canonical_text", sa.Text, nullable=False),
        sa.Column("canonical_embedding", Vector(settings.embedding_dimensions), nullable=False),
        sa.Column("member_count", sa.Integer, nullable=False),
        sa.Column("avg_similarity", sa.Float, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_semantic_clusters_org_id", "semantic_clusters", ["org_id"])
    op.create_index(
        "ix_semantic_clusters_org_created",
        "semantic_clusters",
        ["org_id", sa.text("created_at DESC")],
    )

    op.create_table(
        "semantic_cluster_members",
        sa.Column("id", sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column(
            "cluster_id",
            sa.Uuid,
            sa.ForeignKey("semantic_clusters.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("org_id", sa.String(255), nullable=False),
        sa.Column("message_text", sa.Text, nullable=False),
        sa.Column("message_hash", sa.String(64), nullable=False),
        sa.Column("similarity_score", sa.Float, nullable=False),
        sa.Column("source_type", sa.String(32), nullable=False),
        sa.Column("source_id", sa.String(255), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_unique_constraint(
        "uq_semantic_cluster_members_org_hash",
        "semantic_cluster_members",
        ["org_id", "message_hash"],
    )
    op.create_index(
        "ix_semantic_cluster_members_cluster_id",
        "semantic_cluster_members",
        ["cluster_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_semantic_cluster_members_cluster_id", table_name="semantic_cluster_members")
    op.drop_constraint(
        "uq_semantic_cluster_members_org_hash", "semantic_cluster_members", type_="unique"
    )
    op.drop_table("semantic_cluster_members")
    op.drop_index("ix_semantic_clusters_org_created", table_name="semantic_clusters")
    op.drop_index("ix_semantic_clusters_org_id", table_name="semantic_clusters")
    op.drop_table("semantic_clusters")
    # The vector extension is left installed; other CRM tables may use it
