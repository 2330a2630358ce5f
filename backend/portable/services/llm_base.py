"""
Portable Backend — Abstract AI Enrichment Interface
=====================================================

What:  Abstract base class for the AI steps of the ingestion pipeline:
       content type detection, summary generation and topic extraction.
Why:   The item processor depends on this contract only, so the provider
       (Gemini today) can be swapped or replaced by a fake in tests.
Who:   Implemented by GeminiService; called by services/item_processing.py.

Error contract:
    detect_content_type / generate_summary / extract_topics degrade instead of
    raising on bad model output (unknown type → "other", unparseable topics → []).
    Transport failures surface as LLMServiceError or CircuitBreakerOpenError;
    the processor logs those and finishes the item without AI fields.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel

AI_CONTENT_TYPES = (
    "longform-article",
    "news-article",
    "tutorial",
    "blog-post",
    "documentation",
    "product-page",
    "landing-page",
    "video",
    "social-post",
    "forum-thread",
    "other",
)


class ContentTypeResult(BaseModel):
    content_type: str = "other"
    confidence: float = 0.0
    reasoning: str = ""


class EnrichmentService(ABC):
    """Provider-neutral interface for AI enrichment."""

    @abstractmethod
    async def detect_content_type(
        self,
        url: str,
        title: str,
        description: Optional[str],
        content: Optional[str],
    ) -> ContentTypeResult:
        """
        Classify a page into one of AI_CONTENT_TYPES.

        Only the first 2000 characters of `content` are sent.
        """
        ...

    @abstractmethod
    async def generate_summary(self, title: str, content: str) -> Optional[str]:
        """2-3 sentence summary of the article (first 4000 chars). None if empty."""
        ...

    @abstractmethod
    async def extract_topics(self, title: str, content: str) -> List[str]:
        """1-5 broad lowercase topics (first 3000 chars). [] when nothing usable."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Lightweight reachability check (no token cost)."""
        ...
