"""
Portable Backend — URL Classification Rules
=============================================

What:  Network-free helpers that classify a URL before (or instead of) any fetch.
Why:   Item creation must answer quickly; the URL alone tells us whether a page
       is a video, an image, a social thread, or probably an article worth
       extracting. The same rules later override the AI's verdict for URLs
       whose type is unambiguous.
Who:   ItemService (create), the item processor and the Gemini enrichment step.

Matching is substring-based on purpose: "youtube.com" catches m.youtube.com,
music.youtube.com and youtube.com/shorts alike.
"""

import re
from typing import Optional
from urllib.parse import urlparse

from portable.exceptions import ValidationError

# Path ends in an image extension, optionally followed by a query string
IMAGE_URL_PATTERN = re.compile(r"\.(jpg|jpeg|png|gif|webp|svg)(\?|$)", re.IGNORECASE)

VIDEO_HOSTS = ("youtube.com", "youtu.be", "vimeo.com")
# Streaming/short-video platforms that are never articles
NON_ARTICLE_VIDEO_HOSTS = VIDEO_HOSTS + ("twitch.tv", "tiktok.com")
SOCIAL_MARKERS = ("twitter.com/", "instagram.com", "facebook.com")

# AI content type → stored item type
AI_TYPE_TO_ITEM_TYPE = {
    "video": "video",
    "longform-article": "article",
    "news-article": "article",
    "tutorial": "article",
    "blog-post": "article",
    "documentation": "article",
    "forum-thread": "thread",
    "social-post": "thread",
    "product-page": "product",
}


def _is_x_host(url: str) -> bool:
    """x.com and its subdomains only; a plain substring test would match netflix.com."""
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return False
    return host == "x.com" or host.endswith(".x.com")


def detect_type_from_url(url: str) -> str:
    """
    Quick type guess used at creation time.

    Returns one of: video, image, thread, article.
    """
    if any(host in url for host in VIDEO_HOSTS):
        return "video"
    if IMAGE_URL_PATTERN.search(url):
        return "image"
    if "twitter.com" in url or _is_x_host(url):
        return "thread"
    return "article"


def is_likely_article(url: str) -> bool:
    """False for video platforms, social networks and direct image links."""
    lowered = url.lower()
    if any(host in lowered for host in NON_ARTICLE_VIDEO_HOSTS):
        return False
    if any(marker in lowered for marker in SOCIAL_MARKERS) or _is_x_host(url):
        return False
    if IMAGE_URL_PATTERN.search(url):
        return False
    return True


def map_to_item_type(ai_content_type: Optional[str], url: str) -> str:
    """
    Map the AI content type onto the item type enum.

    URL evidence wins over the model: video hosts are always `video` and
    image links always `image`. Unknown or landing-page types become `website`.
    """
    if any(host in url for host in VIDEO_HOSTS + ("twitch.tv",)):
        return "video"
    if IMAGE_URL_PATTERN.search(url):
        return "image"
    return AI_TYPE_TO_ITEM_TYPE.get(ai_content_type or "", "website")


def validate_url(url: Optional[str], required_message: str = "URL is required") -> str:
    """
    Validate a user-supplied URL and return it stripped.

    Raises:
        ValidationError: "URL is required" when empty, "Invalid URL format" when it
            is not an absolute http(s) URL with a host.
    """
    if url is None or not url.strip():
        raise ValidationError(message=required_message, field="url")

    candidate = url.strip()
    try:
        parsed = urlparse(candidate)
    except ValueError:
        raise ValidationError(message="Invalid URL format", field="url")

    if parsed.scheme not in ("http", "https") or not parsed.netloc or " " in candidate:
        raise ValidationError(message="Invalid URL format", field="url")
    return candidate


def slugify_topic(name: str) -> str:
    """'Interior Design' → 'interior-design'. May return '' for symbol-only names."""
    slug = re.sub(r"\s+", "-", name.strip().lower())
    return re.sub(r"[^a-z0-9-]", "", slug)
