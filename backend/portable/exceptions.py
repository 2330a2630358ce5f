"""
Portable Backend — Custom Exception Hierarchy
===============================================

What:  Defines application-specific exceptions for different error scenarios.
Why:   Custom exceptions map cleanly onto HTTP status codes and keep internal
       details (SQL, upstream payloads) out of API responses.
How:   Each exception carries a message and optional context dict.
       Global exception handlers (registered in main.py) translate them into
       structured JSON error responses.
Who:   Raised by services, dependencies and middleware; caught by global handlers.
When:  During request processing and background item processing.

Exception Hierarchy:
    PortableError (base)
    ├── ValidationError          → 400 Bad Request
    ├── AuthenticationError      → 401 Unauthorized
    ├── NotFoundError            → 404 Not Found
    ├── DuplicateItemError       → 409 Conflict
    ├── RateLimitExceededError   → 429 Too Many Requests
    ├── DatabaseError            → 500 Internal Server Error
    ├── LLMServiceError          → 503 Service Unavailable
    ├── CircuitBreakerOpenError  → 503 Service Unavailable
    ├── ContentExtractionError   (internal; the extractor converts it to "no content")
    └── ProcessingTimeoutError   (internal; recorded on the item as processing_error)
"""

from typing import Any, Dict, Optional


class PortableError(Exception):
    """
    Base exception for all Portable application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned for 5xx errors)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(PortableError):
    """
    Raised when client input fails a business rule.

    When:    Missing or malformed URL, missing itemId, empty title on edit,
             restoring an item that is not archived.
    HTTP:    400 Bad Request

    Schema-level problems (wrong JSON types) are still answered by FastAPI
    with 422; this error covers rules the schema cannot express.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthenticationError(PortableError):
    """
    Raised when a request carries no usable API key.

    HTTP:    401 Unauthorized (with WWW-Authenticate: Bearer)

    The three messages the extension distinguishes:
        "Missing or invalid Authorization header"
        "API key is required"
        "Invalid API key"
    """

    def __init__(
        self,
        message: str = "Invalid API key",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(PortableError):
    """
    Raised when a requested resource does not exist for the caller.

    HTTP:    404 Not Found

    Items owned by another user are reported as not found so that IDs
    cannot be probed across accounts.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        if message is None:
            message = f"The requested {resource} was not found"
            if resource_id:
                message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class DuplicateItemError(PortableError):
    """
    Raised when the caller already saved the same URL.

    HTTP:    409 Conflict
    """

    def __init__(
        self,
        url: Optional[str] = None,
        message: str = "This bookmark already exists",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if url:
            ctx["url"] = url
        super().__init__(message=message, context=ctx)
        self.url = url


class ContentExtractionError(PortableError):
    """
    Raised inside the content extractor when a page cannot be fetched or parsed.

    Never reaches a client: ContentExtractor.extract() logs it and returns None.
    """

    def __init__(
        self,
        message: str = "Content extraction failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ProcessingTimeoutError(PortableError):
    """
    Raised when a background processing run exceeds PROCESSING_TIMEOUT.

    The message is stored verbatim in items.processing_error.
    """

    def __init__(
        self,
        timeout: float = 45,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"Processing timeout after {int(timeout)} seconds"
        ctx = context or {}
        ctx["timeout"] = timeout
        super().__init__(message=message, context=ctx)
        self.timeout = timeout


class LLMServiceError(PortableError):
    """
    Raised when the Gemini service fails after all retries.

    HTTP:    503 Service Unavailable
    In the ingestion pipeline it is caught and logged; the item still completes.
    """

    def __init__(
        self,
        message: str = "AI enrichment service is temporarily unavailable",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class CircuitBreakerOpenError(PortableError):
    """
    Raised when the Gemini circuit breaker is OPEN.

    HTTP:    503 Service Unavailable

    State machine:
        CLOSED → (threshold failures) → OPEN → (recovery timeout) → HALF_OPEN
        HALF_OPEN → success → CLOSED, failure → OPEN
    """

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"AI service is temporarily unavailable due to repeated failures. "
            f"The service will automatically retry in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time


class DatabaseError(PortableError):
    """
    Raised when database operations fail unexpectedly.

    HTTP:    500 Internal Server Error
    The client always sees a generic message; details are logged server-side.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(PortableError):
    """
    Raised when a client exceeds the sliding-window request limit.

    HTTP:    429 Too Many Requests (with Retry-After)
    """

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
