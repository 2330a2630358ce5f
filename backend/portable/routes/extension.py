"""
Portable Backend — Extension Version Route
============================================

What:  GET /api/extension/version, the latest published extension version.
Why:   The extension compares it with its own manifest version and shows an
       update hint. No auth: it is polled before the user has a key.
"""

from fastapi import APIRouter, Response

from portable.config import settings
from portable.schemas.common import ExtensionVersionResponse

router = APIRouter(prefix="/api/extension", tags=["Extension"])


@router.get("/version", response_model=ExtensionVersionResponse, summary="Latest extension version")
async def get_extension_version(response: Response) -> ExtensionVersionResponse:
    response.headers["Cache-Control"] = "public, max-age=3600"
    return ExtensionVersionResponse(version=settings.extension_version)
