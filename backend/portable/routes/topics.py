"""
Portable Backend — Topics Route Handler
=========================================

What:  GET /api/topics, the caller's AI-assigned topics with item counts.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from portable.database import get_db_session
from portable.dependencies.auth import get_current_profile
from portable.models.profile import Profile
from portable.schemas.item import TopicListResponse
from portable.services.item_service import item_service

router = APIRouter(prefix="/api", tags=["Topics"])


@router.get("/topics", response_model=TopicListResponse, summary="List topics with item counts")
async def list_topics(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> TopicListResponse:
    return await item_service.list_topics(db, profile.id)
