"""
Portable Backend — API Key Authentication
===========================================

What:  Resolves the `Authorization: Bearer <api key>` header to a Profile.
Why:   The browser extension and scripts authenticate with a per-user API key
       instead of a browser session.
Who:   Every /api route except GET /api/extension/version.

Failure messages (all 401, see the AuthenticationError handler in main.py):
    header missing or not "Bearer ..."  → "Missing or invalid Authorization header"
    "Bearer " with nothing after it      → "API key is required"
    key not found                        → "Invalid API key"
"""

from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from portable.database import get_db_session
from portable.exceptions import AuthenticationError
from portable.models.profile import Profile
from portable.services.profile_service import profile_service

BEARER_PREFIX = "Bearer "


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Key part of a bearer header, '' for "Bearer " alone, None if not a bearer header."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    return authorization[len(BEARER_PREFIX):].strip()


async def authenticate_api_key(db: AsyncSession, authorization: Optional[str]) -> Profile:
    """
    Raises:
        AuthenticationError: see module docstring for the three cases
    """
    api_key = parse_bearer_token(authorization)
    if api_key is None:
        raise AuthenticationError(message="Missing or invalid Authorization header")
    if not api_key:
        raise AuthenticationError(message="API key is required")

    profile = await profile_service.get_by_api_key(db, api_key)
    if profile is None:
        raise AuthenticationError(message="Invalid API key")
    return profile


async def get_current_profile(
    authorization: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db_session),
) -> Profile:
    """FastAPI dependency: the authenticated caller's profile."""
    return await authenticate_api_key(db, authorization)
