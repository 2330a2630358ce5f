"""
Portable Backend — Item Request/Response Schemas
==================================================

What:  Pydantic models for the items, views and topics API contract.
Why:   Strict input validation, automatic serialization, and OpenAPI docs.
Who:   Route handlers (request bodies, response_model) and ItemService
       (builds the response objects from ORM rows).

Request bodies are deliberately lenient (`url: Optional[str]`) so that a
missing field is reported with the extension's expected 400 message
("URL is required") instead of FastAPI's generic 422.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════

class CreateItemRequest(BaseModel):
    """Body of POST /api/items (sent by the extension and the web app)."""

    url: Optional[str] = Field(default=None, description="Absolute http(s) URL to save")


class ReprocessItemRequest(BaseModel):
    """Body of POST /api/items/reprocess. The extension sends camelCase."""

    model_config = ConfigDict(populate_by_name=True)

    item_id: Optional[str] = Field(
        default=None,
        alias="itemId",
        description="ID of the item to re-run extraction and AI enrichment for",
    )


class UpdateItemRequest(BaseModel):
    """
    Body of PATCH /api/items/{id}. Omitted fields are left untouched.

    description: an empty string clears the description.
    """

    title: Optional[str] = Field(default=None, max_length=1000)
    url: Optional[str] = Field(default=None)
    description: Optional[str] = Field(default=None, max_length=5000)


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════

class TopicRef(BaseModel):
    """Topic as embedded in an item."""

    id: uuid.UUID
    name: str
    slug: str

    model_config = {"from_attributes": True}


class ItemSummary(BaseModel):
    """Minimal item shape returned by the existence check."""

    id: uuid.UUID
    url: str
    title: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ItemResponse(BaseModel):
    """
    Item as shown in lists and returned after create/update.

    Excludes the extracted Markdown body, which can be large; fetch
    GET /api/items/{id} for that.
    """

    id: uuid.UUID
    url: str
    title: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    type: str = Field(description="video | article | thread | image | product | website")
    status: str = Field(description="inbox | queue | library | archive")
    is_favorite: bool = False
    kept_at: Optional[datetime] = None
    queued_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    word_count: Optional[int] = None
    reading_time: Optional[int] = Field(default=None, description="Minutes")
    author: Optional[str] = None
    publish_date: Optional[datetime] = None
    ai_summary: Optional[str] = None
    ai_content_type: Optional[str] = None
    processing_status: Optional[str] = Field(
        default=None,
        description="pending | processing | completed | failed | null (not needed)",
    )
    processing_error: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="extra")
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ItemDetailResponse(ItemResponse):
    """Full item including extracted content and topics (reader view)."""

    content: Optional[str] = Field(default=None, description="Extracted article body (Markdown)")
    topics: List[TopicRef] = Field(default_factory=list)


class ItemExistsResponse(BaseModel):
    """GET /api/items?url=: `item` is omitted when `exists` is false."""

    exists: bool
    item: Optional[ItemSummary] = None


class CreateItemResponse(BaseModel):
    success: bool = True
    item: ItemResponse


class ReprocessResponse(BaseModel):
    success: bool = True
    message: str = "Reprocessing started"


class FavoriteResponse(BaseModel):
    id: uuid.UUID
    is_favorite: bool


class ViewResponse(BaseModel):
    """
    Paginated bucket listing (GET /api/views/{view}).

    Cursor-based pagination on the view's ordering column: next_cursor is
    `<ISO timestamp>|<item id>` of the last item on the page, so rows sharing a
    timestamp are never skipped; pass it back as ?cursor=.
    """

    view: str
    items: List[ItemResponse]
    total_count: int
    next_cursor: Optional[str] = None
    has_more: bool


class TopicResponse(BaseModel):
    id: uuid.UUID
    name: str
    slug: str
    item_count: int = 0


class TopicListResponse(BaseModel):
    topics: List[TopicResponse]
