"""
Portable Backend — Item Service (Business Logic Orchestrator)
===============================================================

What:  Everything a caller can do with their saved items: existence check,
       create, read, edit, delete, triage between buckets, views and topics.
Why:   Keeps business rules (ownership, duplicate detection, bucket
       transitions, pagination) independent of HTTP concerns.
How:   Stateless methods taking the request's AsyncSession and the caller's
       profile id. Every query is scoped by user_id.
Who:   Route handlers in routes/items.py, routes/views.py and routes/topics.py.

Create Flow (POST /api/items):
    ┌──────────┐    ┌─────────────┐    ┌──────────────┐    ┌──────────┐
    │ Validate │───▶│  Duplicate  │───▶│  Scrape meta │───▶│  Insert  │
    │   URL    │    │   check     │    │  (≤ 5 s)     │    │  (inbox) │
    └──────────┘    └─────────────┘    └──────────────┘    └──────────┘
    The route then schedules background processing when it is needed.

Bucket Transitions:
    keep     any → library   (kept_at = now)
    queue    any → queue     (queued_at = now)
    archive  any → archive   (archived_at = now, archived_from = previous bucket)
    restore  archive → archived_from (default inbox)

Ownership:
    An item that exists but belongs to someone else is reported exactly like a
    missing one (404), so ids cannot be probed.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple, Union
from uuid import UUID

from sqlalchemy import and_, delete, desc, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from portable.config import settings
from portable.exceptions import (
    DatabaseError,
    DuplicateItemError,
    NotFoundError,
    ValidationError,
)
from portable.models.item import Item
from portable.models.topic import ItemTopic, Topic
from portable.schemas.item import (
    FavoriteResponse,
    ItemDetailResponse,
    ItemExistsResponse,
    ItemResponse,
    ItemSummary,
    TopicListResponse,
    TopicRef,
    TopicResponse,
    UpdateItemRequest,
    ViewResponse,
)
from portable.services.metadata_scraper import scrape_metadata
from portable.services.url_rules import detect_type_from_url, is_likely_article, validate_url

logger = logging.getLogger(__name__)

VIEWS = ("inbox", "queue", "library", "archive", "everything")
# Names still sent by older extension builds → (view, favorites)
VIEW_ALIASES = {
    "later": ("library", False),
    "favorites": ("library", True),
}
FAVORITE_VIEWS = ("library", "everything")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_item_id(item_id: Union[str, UUID]) -> Optional[UUID]:
    if isinstance(item_id, UUID):
        return item_id
    try:
        return UUID(str(item_id))
    except ValueError:
        return None


def resolve_view(view: str, favorites: bool = False) -> Tuple[str, bool]:
    """
    Normalize a view name and the favorites flag.

    Raises:
        ValidationError: unknown view name
    """
    name = view.lower()
    if name in VIEW_ALIASES:
        name, alias_favorites = VIEW_ALIASES[name]
        favorites = favorites or alias_favorites
    if name not in VIEWS:
        raise ValidationError(
            message=f"Unknown view '{view}'. Expected one of: {', '.join(VIEWS)}",
            field="view",
        )
    return name, favorites and name in FAVORITE_VIEWS


def _ordering_column(view: str):
    """
    Column a view is sorted and paginated on.

    Timestamps that may be NULL fall back to created_at so every row has a
    cursor value.
    """
    if view == "queue":
        return func.coalesce(Item.queued_at, Item.created_at)
    if view == "library":
        return func.coalesce(Item.kept_at, Item.created_at)
    if view == "archive":
        return func.coalesce(Item.archived_at, Item.created_at)
    return Item.created_at


def _ordering_value(item: Item, view: str) -> datetime:
    column = {"queue": "queued_at", "library": "kept_at", "archive": "archived_at"}.get(view)
    value = getattr(item, column) if column else None
    return value or item.created_at


def _parse_cursor(cursor: str) -> Optional[Tuple[datetime, Optional[UUID]]]:
    """
    `<iso timestamp>|<item id>` -> (timestamp, id). A bare timestamp from an
    older client parses with id None. Anything else returns None.
    """
    # '+' in a UTC offset arrives as a space when the client forgot to encode it
    value, _, id_part = cursor.replace(" ", "+").partition("|")
    try:
        timestamp = datetime.fromisoformat(value)
        item_id = UUID(id_part) if id_part else None
    except ValueError:
        return None
    return timestamp, item_id


def _next_cursor(item: Item, view: str) -> str:
    return f"{_ordering_value(item, view).isoformat()}|{item.id}"


class ItemService:
    """
    Business logic layer for items.

    Error Handling Strategy:
        Domain errors (ValidationError, NotFoundError, DuplicateItemError)
        propagate unchanged. Unexpected database failures are wrapped in
        DatabaseError so internals never reach the client.
    """

    # ── Lookup ────────────────────────────────────────────────────────────

    async def get_owned_item(self, db: AsyncSession, user_id: UUID, item_id: Union[str, UUID]) -> Item:
        """
        Fetch an item belonging to `user_id`.

        Raises:
            NotFoundError: unknown id, malformed id, or someone else's item
        """
        parsed = _parse_item_id(item_id)
        if parsed is None:
            raise NotFoundError(resource="item", resource_id=str(item_id))

        result = await db.execute(
            select(Item).where(Item.id == parsed, Item.user_id == user_id)
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise NotFoundError(resource="item", resource_id=str(item_id))
        return item

    async def find_by_url(self, db: AsyncSession, user_id: UUID, url: str) -> Optional[Item]:
        result = await db.execute(
            select(Item).where(Item.user_id == user_id, Item.url == url)
        )
        return result.scalar_one_or_none()

    async def check_exists(self, db: AsyncSession, user_id: UUID, url: Optional[str]) -> ItemExistsResponse:
        """GET /api/items?url=, used by the extension to show the "saved" badge."""
        url = validate_url(url, required_message="URL parameter is required")
        item = await self.find_by_url(db, user_id, url)
        if item is None:
            return ItemExistsResponse(exists=False)
        return ItemExistsResponse(exists=True, item=ItemSummary.model_validate(item))

    # ── Create ────────────────────────────────────────────────────────────

    async def create_item(self, db: AsyncSession, user_id: UUID, url: Optional[str]) -> Tuple[Item, bool]:
        """
        Save a URL to the caller's inbox.

        Returns:
            (item, needs_processing). The caller commits and, when
            needs_processing is True, schedules process_item_in_background.

        Raises:
            ValidationError: missing or malformed URL
            DuplicateItemError: the caller already saved this URL
            DatabaseError: insert failed
        """
        url = validate_url(url)

        # Duplicate check happens before any network work
        if await self.find_by_url(db, user_id, url) is not None:
            raise DuplicateItemError(url=url)

        metadata = await scrape_metadata(url)
        item_type = detect_type_from_url(url)
        needs_processing = is_likely_article(url) and settings.content_processing_enabled

        item = Item(
            user_id=user_id,
            url=url,
            title=metadata.title or url,
            description=metadata.description,
            image_url=metadata.image_url,
            type=item_type,
            status="inbox",
            processing_status="pending" if needs_processing else None,
            extra={"metadata_source": metadata.source},
        )

        try:
            db.add(item)
            await db.flush()
        except IntegrityError:
            # Lost a race with a concurrent save of the same URL
            await db.rollback()
            raise DuplicateItemError(url=url)
        except Exception as e:
            logger.error("Database error creating item for %s: %s", url, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not save the bookmark. Please try again.",
                context={"error_type": type(e).__name__},
            )

        logger.info(
            "Item %s created (type=%s, processing=%s, metadata=%s)",
            item.short_id,
            item_type,
            "pending" if needs_processing else "skipped",
            metadata.source,
        )
        return item, needs_processing

    # ── Read / Update / Delete ────────────────────────────────────────────

    async def get_item_topics(self, db: AsyncSession, user_id: UUID, item_id: Union[str, UUID]) -> List[TopicRef]:
        item = await self.get_owned_item(db, user_id, item_id)
        result = await db.execute(
            select(Topic)
            .join(ItemTopic, ItemTopic.topic_id == Topic.id)
            .where(ItemTopic.item_id == item.id)
            .order_by(Topic.name)
        )
        return [TopicRef.model_validate(topic) for topic in result.scalars().all()]

    async def get_item_detail(self, db: AsyncSession, user_id: UUID, item_id: Union[str, UUID]) -> ItemDetailResponse:
        item = await self.get_owned_item(db, user_id, item_id)
        detail = ItemDetailResponse.model_validate(item)
        detail.topics = await self.get_item_topics(db, user_id, item.id)
        return detail

    async def update_item(
        self,
        db: AsyncSession,
        user_id: UUID,
        item_id: Union[str, UUID],
        changes: UpdateItemRequest,
    ) -> Item:
        """
        Apply user edits. Only fields present in the request are touched.

        Raises:
            ValidationError: empty title or malformed URL
            DuplicateItemError: new URL is already saved by the caller
        """
        item = await self.get_owned_item(db, user_id, item_id)
        provided = changes.model_fields_set

        if "title" in provided:
            title = (changes.title or "").strip()
            if not title:
                raise ValidationError(message="Title cannot be empty", field="title")
            item.title = title

        if "url" in provided:
            url = validate_url(changes.url)
            if url != item.url:
                if await self.find_by_url(db, user_id, url) is not None:
                    raise DuplicateItemError(url=url)
                item.url = url

        if "description" in provided:
            description = (changes.description or "").strip()
            item.description = description or None

        url = item.url
        try:
            await db.flush()
        except IntegrityError:
            # A concurrent save took this URL after the lookup above
            await db.rollback()
            raise DuplicateItemError(url=url)
        logger.info("Item %s updated: %s", item.short_id, ", ".join(sorted(provided)) or "no changes")
        return item

    async def delete_item(self, db: AsyncSession, user_id: UUID, item_id: Union[str, UUID]) -> None:
        item = await self.get_owned_item(db, user_id, item_id)
        # Explicit so SQLite (no FK enforcement by default) behaves like Postgres
        await db.execute(delete(ItemTopic).where(ItemTopic.item_id == item.id))
        await db.delete(item)
        await db.flush()
        logger.info("Item %s deleted", item.short_id)

    # ── Triage ────────────────────────────────────────────────────────────

    def _leave_archive(self, item: Item) -> None:
        item.archived_from = None
        item.archived_at = None

    async def keep(self, db: AsyncSession, user_id: UUID, item_id: Union[str, UUID]) -> Item:
        item = await self.get_owned_item(db, user_id, item_id)
        item.status = "library"
        item.kept_at = _now()
        self._leave_archive(item)
        await db.flush()
        return item

    async def queue(self, db: AsyncSession, user_id: UUID, item_id: Union[str, UUID]) -> Item:
        item = await self.get_owned_item(db, user_id, item_id)
        item.status = "queue"
        item.queued_at = _now()
        self._leave_archive(item)
        await db.flush()
        return item

    async def archive(self, db: AsyncSession, user_id: UUID, item_id: Union[str, UUID]) -> Item:
        item = await self.get_owned_item(db, user_id, item_id)
        if item.status != "archive":
            item.archived_from = item.status
            item.status = "archive"
            item.archived_at = _now()
            await db.flush()
        return item

    async def restore(self, db: AsyncSession, user_id: UUID, item_id: Union[str, UUID]) -> Item:
        """
        Move an archived item back to the bucket it came from.

        Raises:
            ValidationError: item is not archived
        """
        item = await self.get_owned_item(db, user_id, item_id)
        if item.status != "archive":
            raise ValidationError(message="Item is not archived", field="status")
        item.status = item.archived_from or "inbox"
        self._leave_archive(item)
        await db.flush()
        return item

    async def toggle_favorite(self, db: AsyncSession, user_id: UUID, item_id: Union[str, UUID]) -> FavoriteResponse:
        item = await self.get_owned_item(db, user_id, item_id)
        item.is_favorite = not item.is_favorite
        await db.flush()
        return FavoriteResponse(id=item.id, is_favorite=item.is_favorite)

    # ── Views ─────────────────────────────────────────────────────────────

    async def list_view(
        self,
        db: AsyncSession,
        user_id: UUID,
        view: str,
        limit: int = 20,
        cursor: Optional[str] = None,
        favorites: bool = False,
    ) -> ViewResponse:
        """
        One page of a bucket, newest first on the bucket's timestamp.

        Pagination is cursor-based on the ordering column (see ViewResponse);
        an unparseable cursor is ignored and the first page is returned.
        """
        view, favorites = resolve_view(view, favorites)
        order_column = _ordering_column(view)

        filters = [Item.user_id == user_id]
        if view == "everything":
            filters.append(Item.status != "archive")
        else:
            filters.append(Item.status == view)
        if favorites:
            filters.append(Item.is_favorite.is_(True))

        try:
            query = select(Item).where(*filters)

            position = _parse_cursor(cursor) if cursor else None
            if position:
                cursor_dt, cursor_id = position
                if cursor_id is None:
                    query = query.where(order_column < cursor_dt)
                else:
                    # Rows sharing the cursor timestamp continue on the id tiebreak
                    query = query.where(
                        or_(
                            order_column < cursor_dt,
                            and_(order_column == cursor_dt, Item.id < cursor_id),
                        )
                    )

            # Fetch one extra to determine if there are more pages
            query = query.order_by(desc(order_column), desc(Item.id)).limit(limit + 1)
            result = await db.execute(query)
            items = list(result.scalars().all())

            count_result = await db.execute(select(func.count(Item.id)).where(*filters))
            total_count = count_result.scalar() or 0
        except Exception as e:
            logger.error("Database error listing view %s: %s", view, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve items. Please try again.",
                context={"view": view, "error_type": type(e).__name__},
            )

        has_more = len(items) > limit
        if has_more:
            items = items[:limit]

        next_cursor = None
        if has_more and items:
            next_cursor = _next_cursor(items[-1], view)

        return ViewResponse(
            view=view,
            items=[ItemResponse.model_validate(item) for item in items],
            total_count=total_count,
            next_cursor=next_cursor,
            has_more=has_more,
        )

    # ── Topics ────────────────────────────────────────────────────────────

    async def list_topics(self, db: AsyncSession, user_id: UUID) -> TopicListResponse:
        """The caller's topics with the number of linked items, by name."""
        try:
            result = await db.execute(
                select(Topic, func.count(ItemTopic.item_id))
                .outerjoin(ItemTopic, ItemTopic.topic_id == Topic.id)
                .where(Topic.user_id == user_id)
                .group_by(Topic.id)
                .order_by(Topic.name)
            )
            rows = result.all()
        except Exception as e:
            logger.error("Database error listing topics: %s", str(e), exc_info=True)
            raise DatabaseError(message="Could not retrieve topics. Please try again.")

        return TopicListResponse(
            topics=[
                TopicResponse(id=topic.id, name=topic.name, slug=topic.slug, item_count=count)
                for topic, count in rows
            ]
        )


# ── Singleton Instance ────────────────────────────────────────────────────
item_service = ItemService()
