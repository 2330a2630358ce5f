"""Create profiles, items, topics and item_topics

Revision ID: 001
Revises: None
Create Date: 2026-10-18 00:00:00.000000+00:00

What:  Initial schema for bookmark ingestion.
How:   PostgreSQL: UUID primary keys, TIMESTAMP WITH TIME ZONE, JSONB metadata.

Rollback: downgrade() drops all four tables (destructive).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.TIMESTAMP(timezone=True),
        server_default=sa.text("CURRENT_TIMESTAMP"),
        nullable=False,
    )


def upgrade() -> None:
    # ── profiles ──────────────────────────────────────────────────────────
    op.create_table(
        "profiles",
        _uuid_pk(),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("avatar_url", sa.String(2048), nullable=True),
        sa.Column("theme", sa.String(16), nullable=True),
        sa.Column("api_key", sa.String(128), nullable=True, comment="Per-user bearer token (pk_...)"),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sa.UniqueConstraint("api_key"),
    )
    op.create_index("ix_profiles_api_key", "profiles", ["api_key"])

    # ── items ─────────────────────────────────────────────────────────────
    op.create_table(
        "items",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("type", sa.String(16), nullable=False, server_default=sa.text("'article'")),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column(
            "status",
            sa.String(16),
            nullable=False,
            server_default=sa.text("'inbox'"),
            comment="Bucket: inbox, queue, library, archive",
        ),
        sa.Column("archived_from", sa.String(16), nullable=True, comment="Bucket to return to on restore"),
        sa.Column("is_favorite", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("kept_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("queued_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("archived_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("content", sa.Text(), nullable=True, comment="Markdown"),
        sa.Column("word_count", sa.Integer(), nullable=True),
        sa.Column("reading_time", sa.Integer(), nullable=True, comment="Minutes"),
        sa.Column("author", sa.Text(), nullable=True),
        sa.Column("publish_date", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("ai_summary", sa.Text(), nullable=True),
        sa.Column("ai_content_type", sa.String(32), nullable=True),
        sa.Column("processing_status", sa.String(16), nullable=True),
        sa.Column("processing_error", sa.Text(), nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "url", name="uq_items_user_url"),
    )
    # Every view query filters by user and bucket and sorts newest first
    op.create_index(
        "idx_items_user_status_created",
        "items",
        ["user_id", "status", sa.text("created_at DESC")],
    )

    # ── topics ────────────────────────────────────────────────────────────
    op.create_table(
        "topics",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "slug", name="uq_topics_user_slug"),
    )

    # ── item_topics ───────────────────────────────────────────────────────
    op.create_table(
        "item_topics",
        sa.Column("item_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("topic_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.PrimaryKeyConstraint("item_id", "topic_id"),
        sa.ForeignKeyConstraint(["item_id"], ["items.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["topic_id"], ["topics.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_item_topics_topic", "item_topics", ["topic_id"])


def downgrade() -> None:
    op.drop_index("idx_item_topics_topic", table_name="item_topics")
    op.drop_table("item_topics")
    op.drop_table("topics")
    op.drop_index("idx_items_user_status_created", table_name="items")
    op.drop_table("items")
    op.drop_index("ix_profiles_api_key", table_name="profiles")
    op.drop_table("profiles")
