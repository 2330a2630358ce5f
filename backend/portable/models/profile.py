"""
Portable Backend — Profile SQLAlchemy Model
=============================================

What:  ORM model for the `profiles` table, one row per end user.
Why:   Sign-in is handled by the hosted auth provider; this table holds the
       app-side data for a user, most importantly the API key the browser
       extension presents as a bearer token.
Who:   Read by the API-key dependency on every authenticated request;
       updated by ProfileService when a key is rotated.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from portable.database import Base


class Profile(Base):
    """An end user. `id` matches the user id issued by the auth provider."""

    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        comment="User id shared with the hosted auth provider",
    )

    email: Mapped[str] = mapped_column(
        String(320),
        nullable=False,
        unique=True,
    )

    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)

    # Values: light | dark | system | NULL (client default)
    theme: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    # ── API Key ───────────────────────────────────────────────────────────
    # What: Bearer token for the extension and other API clients
    # Why unique: The key alone identifies the caller
    api_key: Mapped[Optional[str]] = mapped_column(
        String(128),
        nullable=True,
        unique=True,
        index=True,
        comment="Per-user bearer token (pk_...)",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, email='{self.email}')>"
