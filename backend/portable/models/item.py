"""
Portable Backend — Item SQLAlchemy Model
==========================================

What:  ORM model representing the `items` table (one saved URL per row).
Why:   Items are the core entity: everything the ingestion pipeline produces
       (scraped metadata, extracted Markdown, AI summary and type) lands here.
How:   Inherits from the shared DeclarativeBase; Alembic reads it for migrations.
Who:   ItemService (CRUD and triage) and the background item processor.

Lifecycle:
    1. Created by POST /api/items in the `inbox` bucket with scraped metadata.
       processing_status = 'pending' when background processing is scheduled,
       NULL when the URL does not need it (videos, images, social posts).
    2. Background run: 'pending' → 'processing' → 'completed' | 'failed'.
    3. Triage moves the item between buckets:
           inbox → queue → library, any bucket → archive, archive → restore.
    4. Reprocess re-runs step 2 without touching title/description.

Status model:
    A single `status` column holds the bucket (inbox | queue | library | archive).
    `archived_from` remembers the bucket an item was archived from so restore
    can put it back where it was.

Indexes:
    (user_id, url) unique     → duplicate detection on create
    (user_id, status, created_at DESC) → the view queries
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from portable.database import Base

# ── Enumerations (stored as short strings) ────────────────────────────────
ITEM_TYPES = ("video", "article", "thread", "image", "product", "website")
ITEM_STATUSES = ("inbox", "queue", "library", "archive")
PROCESSING_STATUSES = ("pending", "processing", "completed", "failed")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Item(Base):
    """A saved URL plus everything the pipeline learned about it."""

    __tablename__ = "items"

    # ── Identity ──────────────────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )

    # ── Scraped Metadata ──────────────────────────────────────────────────
    url: Mapped[str] = mapped_column(Text, nullable=False)

    # Falls back to the URL itself when nothing could be scraped
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Values: video | article | thread | image | product | website
    type: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default="article",
        server_default=text("'article'"),
    )

    # Free-form JSON (oEmbed provider, extraction backend, ...)
    # Attribute is `extra` because `metadata` is reserved on declarative classes
    extra: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
    )

    # ── Triage State ──────────────────────────────────────────────────────
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default="inbox",
        server_default=text("'inbox'"),
        comment="Bucket: inbox, queue, library, archive",
    )
    archived_from: Mapped[Optional[str]] = mapped_column(
        String(16),
        nullable=True,
        comment="Bucket to return to on restore",
    )
    is_favorite: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    kept_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    queued_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # ── Extracted Content ─────────────────────────────────────────────────
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True, comment="Markdown")
    word_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    reading_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, comment="Minutes")
    author: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    publish_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # ── AI Enrichment ─────────────────────────────────────────────────────
    ai_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ai_content_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    # ── Processing State ──────────────────────────────────────────────────
    # NULL means "never needed processing"
    processing_status: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    processing_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # ── Timestamps ────────────────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        UniqueConstraint("user_id", "url", name="uq_items_user_url"),
        Index("idx_items_user_status_created", "user_id", "status", created_at.desc()),
    )

    @property
    def short_id(self) -> str:
        """First 8 chars of the id, used as a log prefix."""
        return str(self.id)[:8]

    def __repr__(self) -> str:
        return (
            f"<Item(id={self.id}, status='{self.status}', type='{self.type}', "
            f"processing_status='{self.processing_status}')>"
        )
