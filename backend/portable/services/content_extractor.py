"""
Portable Backend — Article Content Extractor
==============================================

What:  Turns an article URL into clean Markdown plus reading metadata
       (word count, reading time, author, publish date).
Why:   The reader view and the AI summary/topic steps both need the article
       body without navigation, ads, share bars and newsletter chrome.
How:   Two interchangeable backends selected by CONTENT_PARSER:

       firecrawl   (default) Hosted scraper that renders JavaScript and gets past
                   most bot walls. We ask it for main-content HTML and convert
                   to Markdown ourselves with trafilatura. If the first pass is
                   thin (< 100 words) we retry with well-known content selectors.
       readability Local and free. Fetch the page with httpx, let trafilatura pick
                   the main content, fall back to readability-lxml when it finds
                   nothing.

       Firecrawl is only used when FIRECRAWL_API_KEY is set; otherwise the local
       backend runs even if CONTENT_PARSER=firecrawl.
Who:   The background item processor (services/item_processing.py).

Contract:
    ContentExtractor.extract() never raises. It returns None when the page
    could not be fetched, or when fewer than 50 words survive cleaning
    (galleries, directories, landing pages).
"""

import asyncio
import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import httpx
import trafilatura
from bs4 import BeautifulSoup
from pydantic import BaseModel
from readability import Document

from portable.config import settings
from portable.exceptions import ContentExtractionError

logger = logging.getLogger(__name__)

# ══════════════════════════════════════════════════════════════════════════
# Constants
# ══════════════════════════════════════════════════════════════════════════

WORDS_PER_MINUTE = 200
MIN_USEFUL_WORDS = 50
GOOD_CONTENT_WORDS = 100

# Elements Firecrawl should drop before isolating the main content
EXCLUDE_TAGS = [
    "nav", "footer", "header", "aside",
    "sidebar", ".sidebar", ".navigation", ".nav", ".menu",
    ".advertisement", ".ad", ".ads",
    ".social-share", ".share-buttons", ".related-posts", ".recommended",
    ".comments", "#comments", ".comment-section",
    # Design blog custom elements
    "nav-bar-v2", "mobile-nav-bar", "add-to-moods-button", "moods-modal",
    "image-gallery", "sticky-scroller", "display-card",
    ".design-details", ".design-detail",
    # Newsletter widgets
    ".newsletter", ".subscribe", ".subscription", "#newsletter",
]

# Tried one by one when the first pass is thin; most specific first
CONTENT_SELECTORS = [
    ".post-content",
    ".article-content",
    ".entry-content",
    ".post-body",
    "article",
    "[role='main']",
    "main",
]

PLATFORM_AUTHORS = {"substack", "medium"}

UI_IMAGE_KEYWORDS = (
    "icon", "logo", "avatar", "badge", "button", "emoji", "spinner", "loading",
    "arrow", "chevron", "thumbnail", "placeholder", "spacer", "pixel",
    "tracking", "analytics",
)
TINY_IMAGE_PATTERN = re.compile(r"\b\d{1,2}x\d{1,2}\b")
AD_IMAGE_PATTERN = re.compile(
    r"/ads?/|/banners?/|/promos?/|doubleclick|googlesyndication", re.IGNORECASE
)
IMAGE_LINE_PATTERN = re.compile(r"^!\[[^\]]*\]\([^)]+\)$")

NEWSLETTER_INTRO_MARKERS = (
    "Hey there, I'm",
    "Each week, I tackle",
    "Annual subscribers get",
    "Subscribe now",
    "while supplies last",
)

HIDDEN_ELEMENT_PATTERN = re.compile(
    r'<(div|span|code)[^>]*style="[^"]*display:\s*none[^"]*"[^>]*>[\s\S]*?</\1>',
    re.IGNORECASE,
)

# (pattern, replacement) pairs applied in order by strip_boilerplate()
_I = re.IGNORECASE
BOILERPLATE_PATTERNS: List[Tuple[re.Pattern, str]] = [
    # Paywall notices
    (re.compile(r"\n+This post is for paid subscribers[\s\S]*?Subscribe\s*\n*", _I), "\n\n"),
    (re.compile(r"\n+Already a paid subscriber\? Sign in\s*", _I), "\n\n"),
    # Trailing metadata tables
    (re.compile(r"\|.*\|(?:\n\|.*\|)+\s*$"), ""),
    (re.compile(r"\n{2,}(?:PreviousNext|Subscribe to [^\n]+)\s*$", _I), ""),
    # Share bars and continuation links
    (re.compile(r"\n+(?:Share|Tweet|Pin|Email|Copy link)(?:\s*\n)+", _I), "\n\n"),
    (re.compile(r"\n+(?:Read more|Continue reading|See also)[^\n]*\n*", _I), "\n\n"),
    # Design blog widgets
    (re.compile(r"\n*(?:Add to MOODS|Save Image to MOODS|ENQUIRE|Visit Website)\s*\n*", _I), "\n"),
    (re.compile(r"\n*(?:Saved!|Choose A Board|Save Into:|Create New Board:)\s*\n*", _I), "\n"),
    (re.compile(r"\n*▼\s*\n*"), "\n"),
    # Gallery counters on their own line ("01 / 21")
    (re.compile(r"\n+\s*\d{1,2}\s*/\s*\d{1,2}\s*(?=\n)"), "\n"),
    (re.compile(r"\n*As seen in image[^\n]*\n*", _I), "\n"),
    # Standalone social and footer navigation labels
    (re.compile(
        r"\n+(?:Pinterest|Instagram|Facebook|Tumblr|LinkedIn|TikTok|Twitter|YouTube)\s*(?=\n)", _I
    ), "\n"),
    (re.compile(
        r"\n+(?:Contact Us?|Submit|FAQ|Privacy|Terms?\s*&?\s*Conditions?|Trade Program|About"
        r"|Store|Stories|Home|Account|Cart|Open Menu|Close)\s*(?=\n)",
        _I,
    ), "\n"),
    # Everything after a related-posts block
    (re.compile(r"\n+Related Posts[\s\S]*$", _I), ""),
    (re.compile(r"\n+(?:Previous|Next)\s+Post[\s\S]*?(?=\n{2}[A-Z]|\n*$)", _I), "\n\n"),
    (re.compile(r"\n+If you would like to feature[\s\S]*?submissions page[^\n]*\n*", _I), "\n\n"),
    (re.compile(r"\n+\$[\d,]+ USD\s*(?=\n)", _I), "\n"),
    (re.compile(r"\n{4,}"), "\n\n\n"),
]


class ExtractedContent(BaseModel):
    """Output of a successful extraction. `title` is None when the page had none."""

    title: Optional[str] = None
    description: Optional[str] = None
    content: str
    author: Optional[str] = None
    publish_date: Optional[datetime] = None
    word_count: int
    reading_time: int
    image_url: Optional[str] = None
    parser: str = "readability"


# ══════════════════════════════════════════════════════════════════════════
# Markdown Helpers
# ══════════════════════════════════════════════════════════════════════════

def count_words(text: str) -> int:
    """
    Count prose words in Markdown.

    Code (fenced and inline), link targets and Markdown punctuation are
    removed first so they do not inflate the count.
    """
    cleaned = re.sub(r"```[\s\S]*?```", "", text)
    cleaned = re.sub(r"`[^`]+`", "", cleaned)
    cleaned = re.sub(r"\[([^\]]+)\]\([^)]+\)", r"\1", cleaned)
    cleaned = re.sub(r"[#*_~>\-|]", "", cleaned)
    return len(cleaned.split())


def calculate_reading_time(word_count: int) -> int:
    """Minutes at 200 wpm, never less than 1."""
    return max(1, math.ceil(word_count / WORDS_PER_MINUTE))


def parse_author(author: Union[str, Sequence[str], None]) -> Optional[str]:
    """
    Normalize an author field that may be a string or a list.

    From a list, the first entry that is not a platform name (Substack,
    Medium) wins; if all are platform names the first one is kept.
    """
    if not author:
        return None
    if isinstance(author, str):
        return author.strip() or None
    names = [a.strip() for a in author if isinstance(a, str) and a.strip()]
    for name in names:
        if name.lower() not in PLATFORM_AUTHORS:
            return name
    return names[0] if names else None


def parse_publish_date(value: Optional[str]) -> Optional[datetime]:
    """ISO 8601 date or datetime → aware datetime (UTC assumed). None if unparseable."""
    if not value:
        return None
    candidate = value.strip().replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        try:
            parsed = datetime.strptime(candidate[:10], "%Y-%m-%d")
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_image_line(line: str) -> bool:
    return line.startswith("![") or line.startswith("[![") or bool(IMAGE_LINE_PATTERN.match(line))


def filter_images(content: str) -> str:
    """Drop duplicate and decorative image lines; keep real article images."""
    result = []
    seen_urls = set()

    for line in content.split("\n"):
        trimmed = line.strip()
        if not _is_image_line(trimmed):
            result.append(line)
            continue

        lower = trimmed.lower()
        url_match = re.search(r"\(([^)]+)\)", trimmed)
        image_url = url_match.group(1) if url_match else ""

        if image_url and image_url in seen_urls:
            continue
        if any(keyword in lower for keyword in UI_IMAGE_KEYWORDS):
            continue
        if TINY_IMAGE_PATTERN.search(lower) or AD_IMAGE_PATTERN.search(image_url):
            continue

        if image_url:
            seen_urls.add(image_url)
        result.append(line)

    return "\n".join(result)


def find_article_start(lines: List[str]) -> int:
    """
    Index of the first line of the real article.

    Scans the first 50 lines for a paragraph of at least 80 characters that is
    not an image or a newsletter intro, then backs up to the heading right
    above it (blank lines in between are allowed). Returns 0 if none found.
    """
    for i, raw in enumerate(lines[:50]):
        line = raw.strip()
        if not line or line.startswith("![") or line.startswith("[!["):
            continue
        if len(line) < 80:
            continue
        if any(marker in line for marker in NEWSLETTER_INTRO_MARKERS):
            continue

        for j in range(i - 1, -1, -1):
            previous = lines[j].strip()
            if not previous:
                continue
            if previous.startswith("#"):
                return j
            break
        return i
    return 0


def _fix_image_url_spaces(match: re.Match) -> str:
    alt, url = match.group(1), match.group(2)
    if " " in url:
        fixed = re.sub(r"\s+", "", url)
        return f"![{alt}]({fixed})"
    return match.group(0)


def strip_boilerplate(content: str) -> str:
    """Remove paywall, share, navigation and footer noise; collapse blank runs."""
    cleaned = content
    for pattern, replacement in BOILERPLATE_PATTERNS:
        cleaned = pattern.sub(replacement, cleaned)
    return cleaned.strip()


def clean_content(content: str) -> str:
    """
    Full cleanup for Markdown converted from a whole page.

    1. Skip intro chrome before the real article start
    2. Filter decorative and duplicate images
    3. Drop leading byline/credit blocks and repair image URLs with spaces
    4. Strip trailing and inline boilerplate
    """
    lines = content.split("\n")
    cleaned = "\n".join(lines[find_article_start(lines):]).strip()
    cleaned = filter_images(cleaned)

    cleaned = re.sub(
        r"^([^\n]{1,50})\n+by\s+[^\n]+\n+(?:Photographer|Author|Category|Date)\n+[^\n]+\n+",
        "",
        cleaned,
        count=1,
        flags=re.IGNORECASE,
    )
    cleaned = re.sub(r"^by\s+[A-Z][^\n]{0,50}\n+", "", cleaned, count=1, flags=re.IGNORECASE)
    cleaned = re.sub(r"^\s*(?:Photographer|Author)\s*\n+", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"!\[([^\]]*)\]\(([^)]*)\)", _fix_image_url_spaces, cleaned)

    return strip_boilerplate(cleaned)


def is_content_useful(content: str) -> bool:
    """At least 50 words; anything less is a gallery, directory or stub."""
    return count_words(content) >= MIN_USEFUL_WORDS


def remove_hidden_elements(html: str) -> str:
    """Drop display:none div/span/code blocks (often duplicated code samples)."""
    return HIDDEN_ELEMENT_PATTERN.sub("", html)


def html_to_markdown(html: str) -> str:
    """
    Convert an HTML document or fragment to Markdown.

    trafilatura does the conversion with formatting, links, images and tables
    kept. For fragments it cannot score (very short, unusual markup) we fall
    back to the visible text, one block per paragraph.
    """
    processed = remove_hidden_elements(html)
    markdown = trafilatura.extract(
        processed,
        output_format="markdown",
        include_formatting=True,
        include_links=True,
        include_images=True,
        include_tables=True,
        include_comments=False,
        favor_recall=True,
    )
    if markdown:
        return markdown
    return BeautifulSoup(processed, "lxml").get_text("\n\n", strip=True)


def extract_page_metadata(html: str) -> Dict[str, Optional[str]]:
    """description, og:image and published time from <meta> tags."""
    soup = BeautifulSoup(html, "lxml")

    def meta(*keys: str) -> Optional[str]:
        for key in keys:
            tag = (
                soup.find("meta", attrs={"property": key})
                or soup.find("meta", attrs={"name": key})
                or soup.find("meta", attrs={"itemprop": key})
            )
            if tag is not None and (tag.get("content") or "").strip():
                return tag["content"].strip()
        return None

    return {
        "description": meta("og:description", "description"),
        "image_url": meta("og:image"),
        "published_time": meta("article:published_time", "datePublished"),
    }


# ══════════════════════════════════════════════════════════════════════════
# Extractor
# ══════════════════════════════════════════════════════════════════════════

class ContentExtractor:
    """
    Backend-selecting extractor. Stateless apart from the optional transport
    (tests inject httpx.MockTransport).
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    @property
    def backend(self) -> str:
        """Backend that extract() will use with the current settings."""
        return "firecrawl" if settings.firecrawl_enabled else "readability"

    async def extract(self, url: str) -> Optional[ExtractedContent]:
        """Extract article content from `url`. Returns None on any failure."""
        if settings.content_parser == "firecrawl" and not settings.firecrawl_enabled:
            logger.info("No FIRECRAWL_API_KEY configured, falling back to local extraction")

        try:
            if self.backend == "firecrawl":
                return await self._extract_with_firecrawl(url)
            return await self._extract_locally(url)
        except ContentExtractionError as e:
            logger.warning("Extraction failed for %s: %s", url, e.message)
        except Exception as e:
            logger.error("Unexpected extraction error for %s: %s", url, str(e), exc_info=True)
        return None

    # ── Firecrawl ─────────────────────────────────────────────────────────

    async def _call_firecrawl(
        self,
        client: httpx.AsyncClient,
        url: str,
        include_tags: Optional[List[str]] = None,
        exclude_tags: Optional[List[str]] = None,
    ) -> Optional[Dict[str, Any]]:
        payload: Dict[str, Any] = {
            "url": url,
            # HTML keeps <pre><code> blocks intact; we convert to Markdown ourselves
            "formats": ["html"],
            "onlyMainContent": True,
            "excludeTags": EXCLUDE_TAGS if exclude_tags is None else exclude_tags,
            "removeBase64Images": True,
            "blockAds": True,
            "waitFor": 3000,
        }
        if include_tags:
            payload["includeTags"] = include_tags

        try:
            response = await client.post(settings.firecrawl_api_url, json=payload)
        except httpx.TimeoutException:
            raise ContentExtractionError(
                message=f"Firecrawl request timed out after {settings.firecrawl_timeout}s",
                context={"url": url},
            )
        except httpx.HTTPError as e:
            raise ContentExtractionError(
                message=f"Firecrawl request failed: {e}",
                context={"url": url},
            )

        if response.status_code != 200:
            logger.error("Firecrawl error: %d - %s", response.status_code, response.text[:500])
            return None

        data = response.json()
        html = (data.get("data") or {}).get("html")
        logger.debug(
            "Firecrawl response: success=%s, html_length=%d", data.get("success"), len(html or "")
        )
        if not data.get("success") or not html:
            return None
        return data["data"]

    async def _markdown_from_firecrawl(self, data: Dict[str, Any]) -> Tuple[str, int]:
        markdown = await asyncio.to_thread(html_to_markdown, data["html"])
        content = clean_content(markdown)
        return content, count_words(content)

    async def _extract_with_firecrawl(self, url: str) -> Optional[ExtractedContent]:
        logger.info("Starting Firecrawl extraction for: %s", url)

        async with httpx.AsyncClient(
            transport=self._transport,
            timeout=settings.firecrawl_timeout,
            headers={"Authorization": f"Bearer {settings.firecrawl_api_key}"},
        ) as client:
            best = await self._call_firecrawl(client, url)
            content, word_count = "", 0
            if best:
                content, word_count = await self._markdown_from_firecrawl(best)
                logger.info("First attempt: %d words, %d chars", word_count, len(content))

            if word_count < GOOD_CONTENT_WORDS:
                logger.info("Only %d words, trying content selectors", word_count)
                for selector in CONTENT_SELECTORS:
                    candidate = await self._call_firecrawl(
                        client, url, include_tags=[selector], exclude_tags=[]
                    )
                    if not candidate:
                        continue
                    candidate_content, candidate_words = await self._markdown_from_firecrawl(candidate)
                    logger.debug("Selector %s: %d words", selector, candidate_words)
                    if candidate_words > word_count:
                        best, content, word_count = candidate, candidate_content, candidate_words
                        logger.info("Using selector %s with %d words", selector, word_count)
                        if word_count >= GOOD_CONTENT_WORDS:
                            break

        if not best:
            logger.error("All Firecrawl extraction attempts failed for %s", url)
            return None

        if not is_content_useful(content):
            logger.info("Content not useful (%d words), likely a gallery or directory page", word_count)
            return None

        metadata = best.get("metadata") or {}
        return ExtractedContent(
            title=metadata.get("title") or None,
            description=metadata.get("description") or None,
            content=content,
            author=parse_author(metadata.get("author")),
            publish_date=parse_publish_date(metadata.get("publishedTime")),
            word_count=word_count,
            reading_time=calculate_reading_time(word_count),
            # Preview image comes from the fast metadata scrape
            image_url=None,
            parser="firecrawl",
        )

    # ── Local (trafilatura + readability-lxml) ────────────────────────────

    async def _fetch_html(self, url: str) -> str:
        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=settings.extraction_timeout,
                follow_redirects=True,
                headers={
                    "User-Agent": settings.browser_user_agent,
                    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                    "Accept-Language": "en-US,en;q=0.5",
                },
            ) as client:
                # Deadline for the whole fetch, not just each read
                response = await asyncio.wait_for(client.get(url), timeout=settings.extraction_timeout)
        except (httpx.TimeoutException, asyncio.TimeoutError):
            raise ContentExtractionError(message="Request timed out", context={"url": url})
        except httpx.HTTPError as e:
            raise ContentExtractionError(message=f"Fetch failed: {e}", context={"url": url})

        if response.status_code >= 400:
            raise ContentExtractionError(
                message=f"Failed to fetch: HTTP {response.status_code}",
                context={"url": url, "status": response.status_code},
            )
        return response.text

    async def _extract_locally(self, url: str) -> Optional[ExtractedContent]:
        logger.info("Starting local extraction for: %s", url)
        html = await self._fetch_html(url)
        logger.debug("Fetched %d bytes", len(html))

        page_meta = extract_page_metadata(html)
        markdown, article_meta = await asyncio.to_thread(_local_extract, html, url)
        if not markdown:
            logger.info("No article body found for %s", url)
            return None

        content = strip_boilerplate(filter_images(markdown))
        word_count = count_words(content)
        logger.info("Local extraction: %d words", word_count)
        if word_count < MIN_USEFUL_WORDS:
            logger.info("Content too short (%d words), likely not an article", word_count)
            return None

        return ExtractedContent(
            title=article_meta.get("title") or None,
            description=article_meta.get("description") or page_meta["description"],
            content=content,
            author=parse_author(article_meta.get("author")),
            publish_date=parse_publish_date(
                page_meta["published_time"] or article_meta.get("date")
            ),
            word_count=word_count,
            reading_time=calculate_reading_time(word_count),
            image_url=page_meta["image_url"],
            parser=article_meta.get("parser", "trafilatura"),
        )


def _local_extract(html: str, url: str) -> Tuple[Optional[str], Dict[str, Any]]:
    """
    CPU-bound part of the local backend (runs in a worker thread).

    Returns (markdown, metadata). trafilatura first; readability-lxml when
    trafilatura cannot find a main block.
    """
    doc = trafilatura.bare_extraction(html, url=url, with_metadata=True)
    meta: Dict[str, Any] = {}
    if doc:
        doc_dict = doc if isinstance(doc, dict) else doc.as_dict()
        meta = {
            "title": doc_dict.get("title"),
            "author": doc_dict.get("author"),
            "date": doc_dict.get("date"),
            "description": doc_dict.get("description"),
        }

    markdown = trafilatura.extract(
        html,
        url=url,
        output_format="markdown",
        include_formatting=True,
        include_links=True,
        include_images=True,
        include_tables=True,
        include_comments=False,
    )
    if markdown:
        meta["parser"] = "trafilatura"
        return markdown, meta

    readable = Document(html)
    summary_html = readable.summary(html_partial=True)
    if not meta.get("title"):
        meta["title"] = readable.short_title()
    meta["parser"] = "readability"
    return html_to_markdown(summary_html), meta


# ── Singleton Instance ────────────────────────────────────────────────────
content_extractor = ContentExtractor()
