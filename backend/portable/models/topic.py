"""
Portable Backend — Topic and ItemTopic Models
===============================================

What:  Per-user topic tags and the item ↔ topic association table.
Why:   AI topic extraction produces broad lowercase labels ("productivity",
       "interior design"); storing them per user lets the UI browse items by topic.
How:   Topics are unique per (user_id, slug). The link table has a composite
       primary key, so linking the same topic twice is a no-op at the DB level.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from portable.database import Base


class Topic(Base):
    __tablename__ = "topics"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Display name as returned by the model, e.g. "Interior Design"
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    # Normalized key, e.g. "interior-design"
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        UniqueConstraint("user_id", "slug", name="uq_topics_user_slug"),
    )

    def __repr__(self) -> str:
        return f"<Topic(slug='{self.slug}')>"


class ItemTopic(Base):
    __tablename__ = "item_topics"

    item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("items.id", ondelete="CASCADE"),
        primary_key=True,
    )
    topic_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("topics.id", ondelete="CASCADE"),
        primary_key=True,
    )
