"""
Portable Backend — Google Gemini Enrichment Service
=====================================================

What:  EnrichmentService implementation backed by Google Gemini.
Why:   Classifies saved pages, writes short summaries and suggests topic tags.
How:   One prompt per task, JSON output (response_mime_type) where we need
       structure; every call goes through a circuit breaker and tenacity retry.
Who:   Singleton `gemini_service`, used by the background item processor and
       the health check.
When:  Only when GEMINI_API_KEY is configured (settings.ai_enabled).

Resilience Strategy:
    1. Tenacity retry with exponential backoff + jitter for transient failures
    2. Circuit breaker so an outage fails fast instead of stalling every
       processing run until PROCESSING_TIMEOUT
    3. Per-call request timeout (GEMINI_TIMEOUT)
"""

import asyncio
import json
import logging
import re
import time
import uuid
from typing import Any, List, Optional

import google.generativeai as genai
from tenacity import (
    RetryError,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from portable.config import settings
from portable.exceptions import CircuitBreakerOpenError, LLMServiceError
from portable.services.llm_base import AI_CONTENT_TYPES, ContentTypeResult, EnrichmentService

logger = logging.getLogger(__name__)

DETECT_CONTENT_CHARS = 2000
SUMMARY_CONTENT_CHARS = 4000
TOPICS_CONTENT_CHARS = 3000
MAX_TOPICS = 5


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker Implementation
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Circuit breaker guarding the Gemini API.

    State Machine:
        CLOSED (normal operation)
            → On failure: increment failure_count
            → When failure_count >= threshold: transition to OPEN
        OPEN (rejecting all requests)
            → All calls raise CircuitBreakerOpenError immediately
            → After recovery_timeout seconds: transition to HALF_OPEN
        HALF_OPEN (testing recovery)
            → On success: CLOSED; on failure: back to OPEN

    Not shared across worker processes; each uvicorn worker keeps its own.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        True if a call may proceed.

        Raises:
            CircuitBreakerOpenError if OPEN and the recovery timeout has not elapsed.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info("Circuit breaker transitioning to HALF_OPEN after %.1fs", elapsed)
                self.state = self.HALF_OPEN
                return True
            remaining = int(self.recovery_timeout - elapsed)
            raise CircuitBreakerOpenError(recovery_time=remaining)

        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker transitioning to CLOSED (service recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker returning to OPEN (test request failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker OPENING after %d consecutive failures", self.failure_count
            )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Response Parsing
# ══════════════════════════════════════════════════════════════════════════

def parse_json_response(text: str) -> Any:
    """
    Parse model output as JSON, tolerating ```json fences.

    Raises:
        ValueError: if the text is not valid JSON.
    """
    cleaned = text.strip()
    fenced = re.match(r"^```(?:json)?\s*([\s\S]*?)\s*```$", cleaned)
    if fenced:
        cleaned = fenced.group(1)
    return json.loads(cleaned)


def normalize_topics(raw: Any) -> List[str]:
    """
    Accept a bare list or {"topics": [...]}; return up to 5 unique lowercase names.
    """
    if isinstance(raw, dict):
        raw = raw.get("topics")
    if not isinstance(raw, list):
        return []

    topics: List[str] = []
    for entry in raw:
        if not isinstance(entry, str):
            continue
        name = " ".join(entry.split()).lower()
        if name and name not in topics:
            topics.append(name)
    return topics[:MAX_TOPICS]


# ══════════════════════════════════════════════════════════════════════════
# Gemini Service
# ══════════════════════════════════════════════════════════════════════════

class GeminiService(EnrichmentService):
    """
    Error Handling Chain:
        API call fails → tenacity retries (RETRY_MAX_ATTEMPTS with backoff)
        → all retries fail → circuit breaker failure + LLMServiceError
        → threshold reached → later calls rejected instantly (CircuitBreakerOpenError)
    """

    DETECT_PROMPT = """Analyze this web page and classify its content type.

URL: {url}
Title: {title}
Description: {description}
Content preview: {content}

Classify as one of these types:
- longform-article: In-depth articles, essays, long reads (1500+ words)
- news-article: News stories, current events
- tutorial: How-to guides, step-by-step instructions
- blog-post: Personal blogs, opinion pieces, shorter articles
- documentation: Technical docs, API references, manuals
- product-page: E-commerce product listings, SaaS landing pages with pricing
- landing-page: Marketing pages, company homepages without articles
- video: Video content pages (YouTube, Vimeo, etc.)
- social-post: Social media posts, tweets, threads
- forum-thread: Forum discussions, Q&A sites
- other: Doesn't fit other categories

Respond in JSON format:
{{
  "contentType": "<type>",
  "confidence": <0.0-1.0>,
  "reasoning": "<brief explanation>"
}}"""

    SUMMARY_PROMPT = """Summarize this article in 2-3 sentences. Be concise and capture the main point.

Title: {title}

Content:
{content}

Summary:"""

    TOPICS_PROMPT = """Extract 1-5 broad topics from this article for classification. Use generic category names that could apply to many similar articles, not specific names, brands, or details from this particular article.

Good examples: "architecture", "interior design", "technology", "cooking", "travel", "personal finance", "productivity"
Bad examples: "cloaked house", "trias architecture", "sydney renovation" (too specific to this article)

Title: {title}

Content:
{content}

Return a JSON object of the form {{"topics": [...]}} with 1-5 lowercase topic strings. Prefer fewer, broader topics over many specific ones."""

    def __init__(self):
        if settings.ai_enabled:
            genai.configure(api_key=settings.gemini_api_key)

        self.model = genai.GenerativeModel(settings.gemini_model)

        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

        logger.info(
            "GeminiService initialized with model=%s, enabled=%s, "
            "circuit_breaker(threshold=%d, recovery=%ds)",
            settings.gemini_model,
            settings.ai_enabled,
            settings.cb_failure_threshold,
            settings.cb_recovery_timeout,
        )

    # ── Public API ────────────────────────────────────────────────────────

    async def detect_content_type(
        self,
        url: str,
        title: str,
        description: Optional[str],
        content: Optional[str],
    ) -> ContentTypeResult:
        prompt = self.DETECT_PROMPT.format(
            url=url,
            title=title,
            description=description or "N/A",
            content=(content or "")[:DETECT_CONTENT_CHARS] or "N/A",
        )
        text = await self._generate(prompt, temperature=0.3, max_output_tokens=200, json_output=True)

        try:
            data = parse_json_response(text)
        except ValueError:
            logger.warning("Content type response was not JSON: %.200s", text)
            return ContentTypeResult(content_type="other", confidence=0.0, reasoning="Detection failed")

        if not isinstance(data, dict):
            return ContentTypeResult(content_type="other", confidence=0.0, reasoning="Detection failed")

        content_type = data.get("contentType") or "other"
        if content_type not in AI_CONTENT_TYPES:
            logger.info("Unknown content type %r from model, using 'other'", content_type)
            content_type = "other"

        try:
            confidence = float(data.get("confidence") or 0.5)
        except (TypeError, ValueError):
            confidence = 0.5

        return ContentTypeResult(
            content_type=content_type,
            confidence=min(max(confidence, 0.0), 1.0),
            reasoning=str(data.get("reasoning") or ""),
        )

    async def generate_summary(self, title: str, content: str) -> Optional[str]:
        prompt = self.SUMMARY_PROMPT.format(title=title, content=content[:SUMMARY_CONTENT_CHARS])
        text = await self._generate(prompt, temperature=0.5, max_output_tokens=150)
        return text.strip() or None

    async def extract_topics(self, title: str, content: str) -> List[str]:
        prompt = self.TOPICS_PROMPT.format(title=title, content=content[:TOPICS_CONTENT_CHARS])
        text = await self._generate(prompt, temperature=0.3, max_output_tokens=100, json_output=True)
        try:
            return normalize_topics(parse_json_response(text))
        except ValueError:
            logger.warning("Topics response was not JSON: %.200s", text)
            return []

    async def health_check(self) -> bool:
        """
        Lists models to verify the API key; no token cost.
        Returns False when AI is disabled or the API is unreachable.
        """
        if not settings.ai_enabled:
            return False
        try:
            # The SDK call is synchronous; keep it off the event loop
            models = await asyncio.to_thread(lambda: list(genai.list_models()))
            model_names = [m.name for m in models]
            target = f"models/{settings.gemini_model}"
            if target not in model_names:
                logger.warning("Configured model %s not found in available models", target)
            return True
        except Exception as e:
            logger.warning("Gemini health check failed: %s", str(e))
            return False

    # ── Internals ─────────────────────────────────────────────────────────

    async def _generate(
        self,
        prompt: str,
        temperature: float,
        max_output_tokens: int,
        json_output: bool = False,
    ) -> str:
        """
        Circuit breaker + retry wrapper around one generate_content_async call.

        Raises:
            CircuitBreakerOpenError: circuit is open
            LLMServiceError: all retries failed
        """
        request_id = str(uuid.uuid4())[:8]

        if not settings.ai_enabled:
            raise LLMServiceError(
                message="AI enrichment is disabled (GEMINI_API_KEY not set)",
                context={"request_id": request_id},
            )

        self.circuit_breaker.can_execute()

        generation_config = {
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
        }
        if json_output:
            generation_config["response_mime_type"] = "application/json"

        try:
            result = await self._call_gemini_with_retry(prompt, generation_config, request_id)
            self.circuit_breaker.record_success()
            return result
        except CircuitBreakerOpenError:
            raise
        except RetryError as e:
            self.circuit_breaker.record_failure()
            logger.error(
                "[%s] All Gemini retries exhausted: %s",
                request_id,
                str(e.last_attempt.exception()) if e.last_attempt else "Unknown error",
            )
            raise LLMServiceError(
                message="AI enrichment failed after multiple attempts.",
                retry_after=self.circuit_breaker.recovery_timeout,
                context={"request_id": request_id, "attempts": settings.retry_max_attempts},
            )
        except Exception as e:
            self.circuit_breaker.record_failure()
            logger.error("[%s] Gemini error: %s", request_id, str(e))
            raise LLMServiceError(
                message="An unexpected error occurred during AI enrichment.",
                context={"request_id": request_id, "error_type": type(e).__name__},
            )

    @retry(
        retry=retry_if_exception_type(Exception),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _call_gemini_with_retry(
        self,
        prompt: str,
        generation_config: dict,
        request_id: str,
    ) -> str:
        """The retried unit: a single API call, nothing else."""
        start_time = time.time()
        try:
            response = await self.model.generate_content_async(
                prompt,
                generation_config=generation_config,
                request_options={"timeout": settings.gemini_timeout},
            )
            text = response.text or ""
            logger.debug(
                "[%s] Gemini call completed in %.0fms, %d chars",
                request_id,
                (time.time() - start_time) * 1000,
                len(text),
            )
            return text
        except Exception as e:
            logger.warning(
                "[%s] Gemini API call failed after %.0fms: %s",
                request_id,
                (time.time() - start_time) * 1000,
                str(e),
            )
            raise


# ── Singleton Instance ────────────────────────────────────────────────────
# Holds the circuit breaker state, which must be shared by every caller
gemini_service = GeminiService()
