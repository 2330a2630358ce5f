"""
Portable Backend — Shared Response Schemas
============================================

What:  Error, health, profile and extension response models used across routes.
"""

import uuid
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Standardized error response format for all API errors.

    Fields:
        error: Machine-readable error code (e.g., "validation_error", "not_found")
        message: Human-readable description for display to users
        details: Optional extra context (e.g., which field failed validation)
        request_id: Correlation ID for tracing this error in server logs

    Example:
        {
            "error": "duplicate_item",
            "message": "This bookmark already exists",
            "request_id": "a1b2c3d4"
        }
    """

    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[Dict[str, Any]] = Field(default=None)
    request_id: Optional[str] = Field(default=None)


class HealthResponse(BaseModel):
    """Service health: database probe, Gemini status and extraction backend."""

    status: str = Field(description="healthy | degraded | unhealthy")
    version: str
    database: str = Field(description="connected | disconnected")
    gemini: str = Field(description="available | unavailable | circuit_open | disabled")
    content_parser: str = Field(description="firecrawl | readability")
    uptime_seconds: float


class ExtensionVersionResponse(BaseModel):
    """Latest browser extension version; the extension compares it to its own."""

    version: str


class ProfileResponse(BaseModel):
    id: uuid.UUID
    email: str
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    theme: Optional[str] = None
    api_key_preview: Optional[str] = Field(
        default=None,
        description="First characters of the API key; the full key is only shown on rotation",
    )


class ApiKeyResponse(BaseModel):
    api_key: str
    message: str = "Store this key now; it will not be shown again"
