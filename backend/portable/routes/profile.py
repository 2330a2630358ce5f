"""
Portable Backend — Profile Route Handlers
===========================================

What:  GET /api/profile and POST /api/profile/api-key (rotation).
Why:   Users copy a fresh API key into the extension settings; the full key
       is only shown in the rotation response.
"""

import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from portable.database import get_db_session
from portable.dependencies.auth import get_current_profile
from portable.models.profile import Profile
from portable.schemas.common import ApiKeyResponse, ProfileResponse
from portable.services.profile_service import profile_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profile", tags=["Profile"])


@router.get("", response_model=ProfileResponse, summary="The caller's profile (API key masked)")
async def get_profile(profile: Profile = Depends(get_current_profile)) -> ProfileResponse:
    return profile_service.to_response(profile)


@router.post(
    "/api-key",
    response_model=ApiKeyResponse,
    summary="Rotate the API key",
    description="Issues a new API key and invalidates the one used for this request.",
)
async def rotate_api_key(
    response: Response,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> ApiKeyResponse:
    result = await profile_service.rotate_api_key(db, profile)
    # Secrets must not be cached anywhere along the way
    response.headers["Cache-Control"] = "no-store"
    return result
