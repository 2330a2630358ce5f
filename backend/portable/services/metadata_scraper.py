"""
Portable Backend — Fast Metadata Scraper
==========================================

What:  Fetches title, description and preview image for a URL at save time.
Why:   The item must appear in the inbox immediately with something better
       than a bare URL, while full extraction and AI run in the background.
How:   YouTube and Vimeo expose oEmbed endpoints that answer in a few hundred
       milliseconds; every other URL is fetched once (short timeout) and its
       Open Graph / Twitter card / <title> tags are read with BeautifulSoup.
Who:   ItemService.create_item().
When:  Synchronously inside POST /api/items; the whole scrape is bounded by
       METADATA_TIMEOUT.

Failure policy:
    Never raises. Any network or parse failure yields PageMetadata(title=url)
    and a warning in the log; the item is saved regardless.

Tag precedence:
    title:       og:title → twitter:title → <title> → first <h1>
    description: og:description → twitter:description → meta[name=description]
    image:       og:image → og:image:url → og:image:secure_url → twitter:image
                 → link[rel=image_src]   (resolved against the page URL)
"""

import asyncio
import logging
from typing import Optional
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup
from pydantic import BaseModel

from portable.config import settings

logger = logging.getLogger(__name__)

YOUTUBE_OEMBED_URL = "https://www.youtube.com/oembed"
VIMEO_OEMBED_URL = "https://vimeo.com/api/oembed.json"

# Guards BeautifulSoup against multi-megabyte pages; <head> is always near the top
MAX_HTML_BYTES = 2_000_000


class PageMetadata(BaseModel):
    """Result of the fast scrape. `source` records which strategy produced it."""

    title: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    source: str = "fallback"


# ══════════════════════════════════════════════════════════════════════════
# HTML Parsing
# ══════════════════════════════════════════════════════════════════════════

def _meta_content(soup: BeautifulSoup, *keys: str) -> Optional[str]:
    """First non-empty <meta> content whose property or name matches one of keys."""
    for key in keys:
        tag = soup.find("meta", attrs={"property": key}) or soup.find("meta", attrs={"name": key})
        if tag is not None:
            content = (tag.get("content") or "").strip()
            if content:
                return content
    return None


def parse_metadata(html: str, url: str) -> PageMetadata:
    """
    Extract preview metadata from raw HTML.

    Args:
        html: Page source (may be partial)
        url:  Final page URL, used for the title fallback and to absolutize the image

    Returns:
        PageMetadata with source="html"; title falls back to `url`.
    """
    soup = BeautifulSoup(html[:MAX_HTML_BYTES], "lxml")

    title = _meta_content(soup, "og:title", "twitter:title")
    if not title and soup.title and soup.title.string:
        title = soup.title.string.strip()
    if not title:
        h1 = soup.find("h1")
        if h1 is not None:
            title = h1.get_text(" ", strip=True)

    description = _meta_content(soup, "og:description", "twitter:description", "description")

    image = _meta_content(
        soup, "og:image", "og:image:url", "og:image:secure_url", "twitter:image", "twitter:image:src"
    )
    if not image:
        link = soup.find("link", rel="image_src")
        if link is not None and link.get("href"):
            image = link["href"].strip()

    return PageMetadata(
        title=" ".join(title.split()) if title else url,
        description=description,
        image_url=urljoin(url, image) if image else None,
        source="html",
    )


# ══════════════════════════════════════════════════════════════════════════
# Scraper
# ══════════════════════════════════════════════════════════════════════════

class MetadataScraper:
    """
    Stateless scraper; one short-lived httpx client per call.

    `transport` exists for tests (httpx.MockTransport); production uses the
    default network transport.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": settings.scraper_user_agent},
        )

    async def scrape(self, url: str, timeout: Optional[float] = None) -> PageMetadata:
        """
        Best-effort metadata for `url`. Never raises.

        `timeout` bounds the whole scrape. httpx timeouts only bound each
        connect/read step, so a server trickling bytes would outlive them.
        """
        timeout = timeout or settings.metadata_timeout
        try:
            result = await asyncio.wait_for(self._scrape(url, timeout), timeout=timeout)
            if result:
                return result
        except asyncio.TimeoutError:
            logger.warning("Metadata scraping timed out after %ss for %s", timeout, url)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Metadata scraping failed for %s: %s", url, str(e))
        except Exception as e:
            logger.warning(
                "Unexpected metadata scraping error for %s: %s", url, str(e), exc_info=True
            )

        return PageMetadata(title=url)

    async def _scrape(self, url: str, timeout: float) -> Optional[PageMetadata]:
        if "youtube.com/watch" in url or "youtube.com/shorts/" in url or "youtu.be/" in url:
            result = await self._fetch_oembed(YOUTUBE_OEMBED_URL, url, timeout, {"format": "json"})
            if result:
                result.source = "oembed:youtube"
                logger.info("YouTube metadata fetched: %r", result.title)
            return result
        if "vimeo.com/" in url:
            result = await self._fetch_oembed(VIMEO_OEMBED_URL, url, timeout)
            if result:
                result.source = "oembed:vimeo"
            return result
        return await self._scrape_html(url, timeout)

    async def _fetch_oembed(
        self,
        endpoint: str,
        url: str,
        timeout: float,
        extra_params: Optional[dict] = None,
    ) -> Optional[PageMetadata]:
        params = {"url": url, **(extra_params or {})}
        async with self._client(timeout) as client:
            response = await client.get(endpoint, params=params)

        if response.status_code != 200:
            logger.info("oEmbed %s returned %d for %s", endpoint, response.status_code, url)
            return None

        data = response.json()
        author = data.get("author_name")
        return PageMetadata(
            title=data.get("title") or url,
            description=f"By {author}" if author else None,
            image_url=data.get("thumbnail_url") or None,
        )

    async def _scrape_html(self, url: str, timeout: float) -> PageMetadata:
        async with self._client(timeout) as client:
            response = await client.get(url)

        content_type = response.headers.get("content-type", "")
        if content_type and "html" not in content_type and "xml" not in content_type:
            # PDFs, images, JSON: nothing to parse, keep the URL as title
            logger.info("Skipping metadata parse for %s (content-type %s)", url, content_type)
            return PageMetadata(title=url, source="non-html")

        metadata = parse_metadata(response.text, str(response.url))
        if metadata.title == str(response.url):
            metadata.title = url
        logger.info("Metadata scraped: %r", metadata.title)
        return metadata


# ── Singleton Instance ────────────────────────────────────────────────────
metadata_scraper = MetadataScraper()


async def scrape_metadata(url: str) -> PageMetadata:
    """Fast-path metadata for `url` using the shared scraper."""
    return await metadata_scraper.scrape(url)
