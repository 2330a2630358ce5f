"""
Portable Backend — Items Route Handlers
=========================================

What:  /api/items: existence check, save, reprocess, detail, edit, delete,
       triage actions and per-item topics.
Why:   The browser extension saves pages here; the web app triages them.
How:   Thin handlers: authenticate, delegate to ItemService, shape the response.
Who:   Browser extension (GET ?url=, POST, reprocess) and the web app.

Request Flow (POST /api/items):
    1. Authenticate the API key (401 otherwise)
    2. ItemService.create_item(): validate → duplicate check → scrape → insert
    3. Commit explicitly so the background run can see the row
    4. Respond 201; FastAPI then runs process_item_in_background()
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from portable.database import get_db_session
from portable.dependencies.auth import get_current_profile
from portable.exceptions import ValidationError
from portable.models.profile import Profile
from portable.schemas.common import ErrorResponse
from portable.schemas.item import (
    CreateItemRequest,
    CreateItemResponse,
    FavoriteResponse,
    ItemDetailResponse,
    ItemExistsResponse,
    ItemResponse,
    ReprocessItemRequest,
    ReprocessResponse,
    TopicRef,
    UpdateItemRequest,
)
from portable.services.item_processing import process_item_in_background
from portable.services.item_service import item_service

logger = logging.getLogger(__name__)

# ── Router Configuration ──────────────────────────────────────────────────
router = APIRouter(prefix="/api/items", tags=["Items"])

_AUTH_ERRORS = {401: {"description": "Missing or invalid API key", "model": ErrorResponse}}
_NOT_FOUND = {404: {"description": "Item not found", "model": ErrorResponse}}


@router.get(
    "",
    response_model=ItemExistsResponse,
    response_model_exclude_none=True,
    responses={
        400: {"description": "Missing or invalid url", "model": ErrorResponse},
        **_AUTH_ERRORS,
    },
    summary="Check whether a URL is already saved",
)
async def check_item_exists(
    url: Optional[str] = Query(default=None, description="URL to look up"),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> ItemExistsResponse:
    """Extension badge check: `{"exists": false}` or the saved item's summary."""
    return await item_service.check_exists(db, profile.id, url)


@router.post(
    "",
    status_code=201,
    response_model=CreateItemResponse,
    responses={
        201: {"description": "Item saved to the inbox", "model": CreateItemResponse},
        400: {"description": "Missing or invalid url", "model": ErrorResponse},
        409: {"description": "URL already saved", "model": ErrorResponse},
        **_AUTH_ERRORS,
    },
    summary="Save a URL",
    description=(
        "Saves a URL to the caller's inbox with quickly scraped metadata. "
        "Article URLs are then extracted and enriched in the background; poll "
        "GET /api/items/{id} for processing_status."
    ),
)
async def create_item(
    background_tasks: BackgroundTasks,
    body: Optional[CreateItemRequest] = Body(default=None),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> CreateItemResponse:
    item, needs_processing = await item_service.create_item(
        db, profile.id, body.url if body else None
    )

    # Committed before the response so the background session finds the row
    await db.commit()

    if needs_processing:
        background_tasks.add_task(process_item_in_background, item.id, True)

    return CreateItemResponse(item=ItemResponse.model_validate(item))


@router.post(
    "/reprocess",
    response_model=ReprocessResponse,
    responses={
        400: {"description": "Missing itemId", "model": ErrorResponse},
        **_AUTH_ERRORS,
        **_NOT_FOUND,
    },
    summary="Re-run extraction and AI enrichment",
    description=(
        "Re-runs content extraction and AI enrichment for an existing item. "
        "Title and description are left as they are; topics are replaced."
    ),
)
async def reprocess_item(
    background_tasks: BackgroundTasks,
    body: Optional[ReprocessItemRequest] = Body(default=None),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> ReprocessResponse:
    if body is None or not body.item_id:
        raise ValidationError(message="Item ID is required", field="itemId")

    item = await item_service.get_owned_item(db, profile.id, body.item_id)
    item.processing_status = "pending"
    item.processing_error = None
    await db.commit()

    background_tasks.add_task(process_item_in_background, item.id, False)
    logger.info("Reprocessing scheduled for item %s", item.short_id)
    return ReprocessResponse()


@router.get(
    "/{item_id}",
    response_model=ItemDetailResponse,
    responses={**_AUTH_ERRORS, **_NOT_FOUND},
    summary="Get an item with its content and topics",
)
async def get_item(
    item_id: str,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> ItemDetailResponse:
    return await item_service.get_item_detail(db, profile.id, item_id)


@router.patch(
    "/{item_id}",
    response_model=ItemResponse,
    responses={
        400: {"description": "Empty title or invalid url", "model": ErrorResponse},
        409: {"description": "New URL already saved", "model": ErrorResponse},
        **_AUTH_ERRORS,
        **_NOT_FOUND,
    },
    summary="Edit title, URL or description",
)
async def update_item(
    item_id: str,
    body: UpdateItemRequest,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> ItemResponse:
    item = await item_service.update_item(db, profile.id, item_id, body)
    return ItemResponse.model_validate(item)


@router.delete(
    "/{item_id}",
    status_code=204,
    responses={**_AUTH_ERRORS, **_NOT_FOUND},
    summary="Delete an item permanently",
)
async def delete_item(
    item_id: str,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    await item_service.delete_item(db, profile.id, item_id)
    return Response(status_code=204)


# ── Triage ────────────────────────────────────────────────────────────────

@router.post("/{item_id}/keep", response_model=ItemResponse, responses={**_AUTH_ERRORS, **_NOT_FOUND},
             summary="Move to the library")
async def keep_item(
    item_id: str,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> ItemResponse:
    return ItemResponse.model_validate(await item_service.keep(db, profile.id, item_id))


@router.post("/{item_id}/queue", response_model=ItemResponse, responses={**_AUTH_ERRORS, **_NOT_FOUND},
             summary="Move to the reading queue")
async def queue_item(
    item_id: str,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> ItemResponse:
    return ItemResponse.model_validate(await item_service.queue(db, profile.id, item_id))


@router.post("/{item_id}/archive", response_model=ItemResponse, responses={**_AUTH_ERRORS, **_NOT_FOUND},
             summary="Archive (remembers the bucket it came from)")
async def archive_item(
    item_id: str,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> ItemResponse:
    return ItemResponse.model_validate(await item_service.archive(db, profile.id, item_id))


@router.post(
    "/{item_id}/restore",
    response_model=ItemResponse,
    responses={400: {"description": "Item is not archived", "model": ErrorResponse}, **_AUTH_ERRORS, **_NOT_FOUND},
    summary="Restore an archived item to its previous bucket",
)
async def restore_item(
    item_id: str,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> ItemResponse:
    return ItemResponse.model_validate(await item_service.restore(db, profile.id, item_id))


@router.post("/{item_id}/favorite", response_model=FavoriteResponse, responses={**_AUTH_ERRORS, **_NOT_FOUND},
             summary="Toggle favorite")
async def toggle_favorite(
    item_id: str,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> FavoriteResponse:
    return await item_service.toggle_favorite(db, profile.id, item_id)


@router.get("/{item_id}/topics", response_model=list[TopicRef], responses={**_AUTH_ERRORS, **_NOT_FOUND},
            summary="Topics linked to an item")
async def get_item_topics(
    item_id: str,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> list[TopicRef]:
    return await item_service.get_item_topics(db, profile.id, item_id)
