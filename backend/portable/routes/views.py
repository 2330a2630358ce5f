"""
Portable Backend — Views Route Handler
========================================

What:  GET /api/views/{view}: one page of a triage bucket.
Who:   The web app's Inbox / Queue / Library / Archive / Everything tabs.

Example client usage (infinite scroll):
    Page 1: GET /api/views/library?limit=20
    Page 2: GET /api/views/library?limit=20&cursor=2024-01-15T12:00:00%2B00:00|<item id>
    (cursor value comes from next_cursor in the previous response)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from portable.database import get_db_session
from portable.dependencies.auth import get_current_profile
from portable.models.profile import Profile
from portable.schemas.common import ErrorResponse
from portable.schemas.item import ViewResponse
from portable.services.item_service import item_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/views", tags=["Views"])


@router.get(
    "/{view}",
    response_model=ViewResponse,
    responses={
        400: {"description": "Unknown view", "model": ErrorResponse},
        401: {"description": "Missing or invalid API key", "model": ErrorResponse},
    },
    summary="List the items in a bucket",
    description=(
        "view: inbox, queue, library, archive or everything (all non-archived items). "
        "`later` and `favorites` are accepted as aliases for the library. "
        "Total count is returned in the X-Total-Count header."
    ),
)
async def list_view(
    view: str,
    response: Response,
    limit: int = Query(default=20, ge=1, le=100, description="Items per page (max 100)"),
    cursor: Optional[str] = Query(
        default=None,
        description="next_cursor from the previous page. Omit for the first page.",
    ),
    favorites: bool = Query(default=False, description="Only favorites (library / everything)"),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> ViewResponse:
    result = await item_service.list_view(
        db,
        profile.id,
        view,
        limit=limit,
        cursor=cursor,
        favorites=favorites,
    )
    response.headers["X-Total-Count"] = str(result.total_count)
    return result
