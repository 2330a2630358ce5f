"""
Portable Backend — Profile Service
====================================

What:  Profile lookup by API key, profile view and API key rotation.
Who:   The auth dependency (every authenticated request) and routes/profile.py.

Key format:
    "pk_" + secrets.token_urlsafe(32)  → 46 characters, 256 bits of entropy.
    Only the first 8 characters are ever echoed back after issuance.
"""

import logging
import secrets
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portable.models.profile import Profile
from portable.schemas.common import ApiKeyResponse, ProfileResponse

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "pk_"
API_KEY_PREVIEW_CHARS = 8


def generate_api_key() -> str:
    return API_KEY_PREFIX + secrets.token_urlsafe(32)


def mask_api_key(api_key: Optional[str]) -> Optional[str]:
    if not api_key:
        return None
    return api_key[:API_KEY_PREVIEW_CHARS] + "..."


class ProfileService:

    async def get_by_api_key(self, db: AsyncSession, api_key: str) -> Optional[Profile]:
        result = await db.execute(select(Profile).where(Profile.api_key == api_key))
        return result.scalar_one_or_none()

    def to_response(self, profile: Profile) -> ProfileResponse:
        return ProfileResponse(
            id=profile.id,
            email=profile.email,
            full_name=profile.full_name,
            avatar_url=profile.avatar_url,
            theme=profile.theme,
            api_key_preview=mask_api_key(profile.api_key),
        )

    async def rotate_api_key(self, db: AsyncSession, profile: Profile) -> ApiKeyResponse:
        """Issue a fresh key. The previous key stops working immediately."""
        profile.api_key = generate_api_key()
        await db.flush()
        logger.info("API key rotated for profile %s", str(profile.id)[:8])
        return ApiKeyResponse(api_key=profile.api_key)


# ── Singleton Instance ────────────────────────────────────────────────────
profile_service = ProfileService()
