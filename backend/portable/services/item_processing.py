"""
Portable Backend — Background Item Processing
===============================================

What:  The slow half of ingestion: full content extraction plus AI enrichment
       for an item that has already been saved.
Why:   POST /api/items answers in well under a second with scraped metadata;
       everything that can take tens of seconds happens here, after the response.
How:   process_item_content() is a pure pipeline (no DB); save_processing_results()
       writes its outcome; process_item_in_background() wires both together
       with its own sessions and a hard PROCESSING_TIMEOUT.
Who:   Scheduled through FastAPI BackgroundTasks by POST /api/items and
       POST /api/items/reprocess.

Pipeline:
    ┌────────────┐    ┌──────────────┐    ┌────────────────────┐    ┌──────────┐
    │  Extract   │───▶│ Detect type  │───▶│ Summary ∥ Topics   │───▶│  Save    │
    │ (articles) │    │   (Gemini)   │    │ (content > 200 ch) │    │  (DB)    │
    └────────────┘    └──────────────┘    └────────────────────┘    └──────────┘

    Every stage is best-effort. A failed stage is logged and the next one
    runs with whatever is available.

Outcome:
    processing_status = 'failed' only when the URL looked like an article and
    no more than 100 characters of content came back; otherwise 'completed'.
    A timeout or unexpected error marks the item 'failed' with processing_error.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, List, MutableMapping, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from portable.config import settings
from portable.database import session_scope
from portable.exceptions import PortableError, ProcessingTimeoutError
from portable.models.item import Item
from portable.models.topic import ItemTopic, Topic
from portable.services.content_extractor import ContentExtractor, content_extractor
from portable.services.llm_base import EnrichmentService
from portable.services.url_rules import (
    detect_type_from_url,
    is_likely_article,
    map_to_item_type,
    slugify_topic,
)

logger = logging.getLogger(__name__)

# Below this, summary and topics are not worth a model call
MIN_CONTENT_FOR_AI = 200
# Article URLs with no more content than this are marked failed
MIN_CONTENT_FOR_SUCCESS = 100


class ItemLogAdapter(logging.LoggerAdapter):
    """Prefixes every message with [item:xxxxxxxx] so one run can be grepped."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"[item:{self.extra['item_id']}] {msg}", kwargs


def item_logger(item_id: Any) -> ItemLogAdapter:
    return ItemLogAdapter(logger, {"item_id": str(item_id)[:8]})


class ProcessingResult(BaseModel):
    """Everything one pipeline run learned. None means "leave the column alone"."""

    type: str
    processing_status: str = "completed"

    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None

    content: Optional[str] = None
    word_count: Optional[int] = None
    reading_time: Optional[int] = None
    author: Optional[str] = None
    publish_date: Optional[datetime] = None

    ai_content_type: Optional[str] = None
    ai_summary: Optional[str] = None
    topics: List[str] = Field(default_factory=list)


# ══════════════════════════════════════════════════════════════════════════
# Pipeline
# ══════════════════════════════════════════════════════════════════════════

async def process_item_content(
    url: str,
    current_title: str,
    current_description: Optional[str],
    update_metadata: bool,
    extractor: Optional[ContentExtractor] = None,
    enrichment: Optional[EnrichmentService] = None,
    log: Optional[logging.LoggerAdapter] = None,
) -> ProcessingResult:
    """
    Run extraction and enrichment for one URL.

    Args:
        url: Item URL
        current_title: Title already stored on the item
        current_description: Description already stored on the item
        update_metadata: Copy the extracted title/description into the result.
            False on reprocess so user edits survive.
        extractor: Defaults to the shared ContentExtractor
        enrichment: Defaults to the Gemini service
        log: Logger adapter carrying the item prefix

    Returns:
        ProcessingResult. Never raises for extraction or AI failures.
    """
    extractor = extractor or content_extractor
    if enrichment is None:
        from portable.services.gemini_service import gemini_service
        enrichment = gemini_service
    log = log or item_logger("-")

    url_type = detect_type_from_url(url)
    result = ProcessingResult(type=url_type)

    # ── Step 1: Content extraction (articles only) ────────────────────────
    if is_likely_article(url):
        try:
            extracted = await extractor.extract(url)
        except Exception as e:
            log.warning("Content extraction raised: %s", str(e))
            extracted = None

        if extracted:
            result.content = extracted.content
            result.word_count = extracted.word_count
            result.reading_time = extracted.reading_time
            result.author = extracted.author
            result.publish_date = extracted.publish_date
            if update_metadata:
                result.title = extracted.title
                result.description = extracted.description
                result.image_url = extracted.image_url
            log.info(
                "Extracted %d words via %s (%d min read)",
                extracted.word_count,
                extracted.parser,
                extracted.reading_time,
            )
        else:
            log.info("No usable content extracted")
    else:
        log.info("Skipping extraction for %s URL", url_type)

    # ── Step 2: AI enrichment ─────────────────────────────────────────────
    if settings.ai_enabled:
        title = result.title or current_title or url
        description = result.description or current_description
        try:
            detection = await enrichment.detect_content_type(url, title, description, result.content)
            result.ai_content_type = detection.content_type
            result.type = map_to_item_type(detection.content_type, url)
            log.info(
                "Content type %s (confidence %.2f) → %s",
                detection.content_type,
                detection.confidence,
                result.type,
            )

            if result.content and len(result.content) > MIN_CONTENT_FOR_AI:
                summary, topics = await asyncio.gather(
                    enrichment.generate_summary(title, result.content),
                    enrichment.extract_topics(title, result.content),
                    return_exceptions=True,
                )
                if isinstance(summary, BaseException):
                    log.warning("Summary generation failed: %s", str(summary))
                else:
                    result.ai_summary = summary
                if isinstance(topics, BaseException):
                    log.warning("Topic extraction failed: %s", str(topics))
                else:
                    result.topics = list(topics)
        except Exception as e:
            message = e.message if isinstance(e, PortableError) else str(e)
            log.warning("AI enrichment failed: %s", message)

    # ── Step 3: Outcome ───────────────────────────────────────────────────
    content_length = len(result.content or "")
    if url_type == "article" and content_length <= MIN_CONTENT_FOR_SUCCESS:
        result.processing_status = "failed"
    else:
        result.processing_status = "completed"

    return result


# ══════════════════════════════════════════════════════════════════════════
# Persistence
# ══════════════════════════════════════════════════════════════════════════

async def _get_or_create_topic(db: AsyncSession, user_id: UUID, name: str, slug: str) -> Topic:
    existing = await db.execute(
        select(Topic).where(Topic.user_id == user_id, Topic.slug == slug)
    )
    topic = existing.scalar_one_or_none()
    if topic is None:
        topic = Topic(user_id=user_id, name=name, slug=slug)
        db.add(topic)
        await db.flush()
    return topic


async def link_topics(db: AsyncSession, item: Item, names: List[str], clear_existing: bool) -> int:
    """
    Attach topics to an item, creating them for the user as needed.

    Returns the number of new links. Names whose slug is empty are skipped.
    """
    if clear_existing:
        await db.execute(delete(ItemTopic).where(ItemTopic.item_id == item.id))

    linked = 0
    for name in names:
        slug = slugify_topic(name)
        if not slug:
            continue
        topic = await _get_or_create_topic(db, item.user_id, name, slug)

        link = await db.execute(
            select(ItemTopic).where(ItemTopic.item_id == item.id, ItemTopic.topic_id == topic.id)
        )
        if link.scalar_one_or_none() is None:
            db.add(ItemTopic(item_id=item.id, topic_id=topic.id))
            linked += 1

    await db.flush()
    return linked


async def save_processing_results(
    db: AsyncSession,
    item: Item,
    result: ProcessingResult,
    clear_topics: bool = False,
) -> None:
    """
    Write a ProcessingResult onto the item.

    processing_status and type are always written and processing_error is
    cleared; every other field only when the pipeline produced a value.
    Topic persistence failures are logged and do not fail the run.
    """
    log = item_logger(item.id)

    item.processing_status = result.processing_status
    item.processing_error = None
    item.type = result.type

    for field in (
        "title",
        "description",
        "image_url",
        "content",
        "word_count",
        "reading_time",
        "author",
        "publish_date",
        "ai_content_type",
        "ai_summary",
    ):
        value = getattr(result, field)
        if value:
            setattr(item, field, value)

    await db.flush()

    if result.topics:
        try:
            linked = await link_topics(db, item, result.topics, clear_existing=clear_topics)
            log.info("Linked %d new topics: %s", linked, ", ".join(result.topics))
        except Exception as e:
            log.error("Saving topics failed: %s", str(e), exc_info=True)


# ══════════════════════════════════════════════════════════════════════════
# Background Entry Point
# ══════════════════════════════════════════════════════════════════════════

async def _mark_failed(item_id: UUID, message: str, log: logging.LoggerAdapter) -> None:
    try:
        async with session_scope() as db:
            item = await db.get(Item, item_id)
            if item is not None:
                item.processing_status = "failed"
                item.processing_error = message
    except Exception as e:
        log.error("Could not record processing failure: %s", str(e), exc_info=True)


async def process_item_in_background(item_id: UUID, update_metadata: bool = True) -> None:
    """
    Process one item end to end. Never raises.

    No database connection is held while the pipeline talks to the network:
    one session marks the item 'processing', a second saves the result.

    Args:
        item_id: Item to process
        update_metadata: True for new items; False for reprocess, which keeps
            title/description and replaces topics instead of merging them.
    """
    log = item_logger(item_id)

    try:
        async with session_scope() as db:
            item = await db.get(Item, item_id)
            if item is None:
                log.warning("Item no longer exists, skipping processing")
                return
            item.processing_status = "processing"
            item.processing_error = None
            url, title, description = item.url, item.title, item.description

        log.info("Processing started (update_metadata=%s)", update_metadata)

        try:
            result = await asyncio.wait_for(
                process_item_content(
                    url=url,
                    current_title=title,
                    current_description=description,
                    update_metadata=update_metadata,
                    log=log,
                ),
                timeout=settings.processing_timeout,
            )
        except asyncio.TimeoutError:
            raise ProcessingTimeoutError(timeout=settings.processing_timeout)

        async with session_scope() as db:
            item = await db.get(Item, item_id)
            if item is None:
                log.warning("Item was deleted during processing, discarding result")
                return
            await save_processing_results(db, item, result, clear_topics=not update_metadata)

        log.info("Processing finished: %s (type=%s)", result.processing_status, result.type)

    except ProcessingTimeoutError as e:
        log.warning(e.message)
        await _mark_failed(item_id, e.message, log)
    except Exception as e:
        log.error("Processing failed: %s", str(e), exc_info=True)
        await _mark_failed(item_id, str(e) or type(e).__name__, log)
