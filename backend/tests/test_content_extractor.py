"""
Portable Backend — Content Extractor Tests
============================================

What:  Markdown cleanup helpers and both extraction backends.
How:   Network is replaced with httpx.MockTransport; trafilatura and
       readability-lxml run for real on small fixture pages.

What we test:
    ✅ Word counting, reading time, author/date normalization
    ✅ Image filtering, article start detection, boilerplate stripping
    ✅ Local backend: fetch → metadata → Markdown, HTTP errors → None
    ✅ Firecrawl backend: request payload, selector retries, metadata mapping
"""

import asyncio
import json
import time
from datetime import datetime, timezone
from unittest.mock import patch

import httpx
import pytest

from portable.config import settings
from portable.services.content_extractor import (
    CONTENT_SELECTORS,
    ContentExtractor,
    calculate_reading_time,
    clean_content,
    count_words,
    extract_page_metadata,
    filter_images,
    find_article_start,
    is_content_useful,
    parse_author,
    parse_publish_date,
    remove_hidden_elements,
    strip_boilerplate,
)

SENTENCE = (
    "Deep work is the ability to focus without distraction on a cognitively "
    "demanding task and it lets you master complicated information quickly. "
)
PARAGRAPH = SENTENCE * 4
PARAGRAPHS = "".join(
    f"<p>{opening} {PARAGRAPH}</p>" for opening in ("First of all,", "Beyond that,", "Finally,")
)

ARTICLE_HTML = f"""<!DOCTYPE html>
<html>
<head>
  <title>On Deep Work</title>
  <meta property="og:description" content="Why focus is a superpower">
  <meta property="og:image" content="https://cdn.example.com/cover.jpg">
  <meta property="article:published_time" content="2024-01-15T09:30:00Z">
</head>
<body>
  <nav><a href="/">Home</a> <a href="/about">About</a></nav>
  <article>
    <h1>On Deep Work</h1>
    {PARAGRAPHS}
  </article>
  <footer>Copyright Example Inc.</footer>
</body>
</html>"""


class TestMarkdownHelpers:

    def test_count_words_ignores_markup(self):
        text = "Hello **world** [link](https://example.com/a/b) `inline code`"
        assert count_words(text) == 3

    def test_count_words_ignores_fenced_code(self):
        text = "Intro words here\n\n```python\nprint('not counted at all')\n```\n\nOutro"
        assert count_words(text) == 4

    @pytest.mark.parametrize("words,minutes", [(0, 1), (1, 1), (200, 1), (201, 2), (1000, 5)])
    def test_reading_time(self, words, minutes):
        assert calculate_reading_time(words) == minutes

    def test_parse_author_string(self):
        assert parse_author("  Jane Doe ") == "Jane Doe"

    def test_parse_author_skips_platform_names(self):
        assert parse_author(["Substack", "Jane Doe"]) == "Jane Doe"

    def test_parse_author_only_platform_names(self):
        assert parse_author(["Medium"]) == "Medium"

    def test_parse_author_empty(self):
        assert parse_author(None) is None
        assert parse_author([]) is None

    def test_parse_publish_date_iso_with_z(self):
        assert parse_publish_date("2024-01-15T09:30:00Z") == datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc)

    def test_parse_publish_date_plain_date_is_utc(self):
        parsed = parse_publish_date("2024-01-15")
        assert parsed == datetime(2024, 1, 15, tzinfo=timezone.utc)

    def test_parse_publish_date_garbage(self):
        assert parse_publish_date("last Tuesday") is None
        assert parse_publish_date(None) is None


class TestFilterImages:

    def test_keeps_article_images(self):
        content = "Text\n![Diagram](https://cdn.example.com/diagram.png)\nMore"
        assert filter_images(content) == content

    def test_drops_duplicates(self):
        line = "![Diagram](https://cdn.example.com/diagram.png)"
        result = filter_images(f"{line}\ntext\n{line}")
        assert result.count(line) == 1

    @pytest.mark.parametrize("line", [
        "![logo](https://example.com/logo.png)",
        "![](https://example.com/avatar-jane.jpg)",
        "![pixel](https://example.com/1x1.gif)",
        "![](https://example.com/ads/banner-728.jpg)",
        "![](https://googlesyndication.com/x.png)",
    ])
    def test_drops_ui_and_ad_images(self, line):
        assert filter_images(f"Text\n{line}") == "Text"


class TestArticleStart:

    def test_skips_short_chrome_lines(self):
        lines = ["Menu", "Sign in", "", "A" * 90]
        assert find_article_start(lines) == 3

    def test_backs_up_to_heading(self):
        lines = ["Menu", "# The Title", "", "A" * 90]
        assert find_article_start(lines) == 1

    def test_skips_newsletter_intro(self):
        lines = ["Hey there, I'm the author of this newsletter and welcome back to another issue" + "!" * 10, "B" * 90]
        assert find_article_start(lines) == 1

    def test_defaults_to_zero(self):
        assert find_article_start(["short", "lines", "only"]) == 0


class TestBoilerplate:

    def test_removes_read_more_and_share(self):
        content = "Real paragraph.\n\nShare\n\nRead more about this topic\n\nNext real paragraph."
        cleaned = strip_boilerplate(content)
        assert "Read more" not in cleaned
        assert "Share" not in cleaned
        assert "Next real paragraph." in cleaned

    def test_truncates_related_posts(self):
        cleaned = strip_boilerplate("Body text.\n\nRelated Posts\n\n- Another post\n- And another")
        assert cleaned == "Body text."

    def test_keeps_inline_fractions(self):
        """Gallery counters are only removed when they stand alone on a line."""
        cleaned = strip_boilerplate("Mix 1 / 2 cup of flour into the bowl.\nStir.")
        assert "1 / 2 cup" in cleaned

    def test_clean_content_drops_leading_chrome(self):
        body = "This opening paragraph is long enough to be recognised as the start of the article text."
        content = f"Home\nAbout\n\n# Title\n\n{body}\n\nRelated Posts\n\nOther"
        cleaned = clean_content(content)
        assert cleaned.startswith("# Title")
        assert "Home" not in cleaned
        assert "Other" not in cleaned

    def test_is_content_useful_threshold(self):
        assert is_content_useful("word " * 50) is True
        assert is_content_useful("word " * 49) is False

    def test_remove_hidden_elements(self):
        html = '<p>Shown</p><div style="display: none">Hidden copy</div>'
        assert remove_hidden_elements(html) == "<p>Shown</p>"

    def test_extract_page_metadata(self):
        meta = extract_page_metadata(ARTICLE_HTML)
        assert meta == {
            "description": "Why focus is a superpower",
            "image_url": "https://cdn.example.com/cover.jpg",
            "published_time": "2024-01-15T09:30:00Z",
        }


class TestLocalExtraction:
    """CONTENT_PARSER=readability (set in conftest)."""

    @pytest.mark.asyncio
    async def test_extracts_article(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert "Mozilla/5.0" in request.headers["User-Agent"]
            return httpx.Response(200, text=ARTICLE_HTML, headers={"content-type": "text/html"})

        extractor = ContentExtractor(transport=httpx.MockTransport(handler))
        assert extractor.backend == "readability"

        result = await extractor.extract("https://blog.example.com/deep-work")

        assert result is not None
        assert result.word_count >= 50
        assert "focus without distraction" in result.content
        assert result.reading_time == calculate_reading_time(result.word_count)
        assert result.image_url == "https://cdn.example.com/cover.jpg"
        assert result.publish_date == datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc)
        assert result.parser in ("trafilatura", "readability")

    @pytest.mark.asyncio
    async def test_http_error_returns_none(self):
        extractor = ContentExtractor(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        assert await extractor.extract("https://blog.example.com/missing") is None

    @pytest.mark.asyncio
    async def test_timeout_returns_none(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        extractor = ContentExtractor(transport=httpx.MockTransport(handler))
        assert await extractor.extract("https://slow.example.com/") is None

    @pytest.mark.asyncio
    async def test_slow_server_is_cut_off_at_deadline(self):
        async def handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200, text=ARTICLE_HTML, headers={"content-type": "text/html"})

        extractor = ContentExtractor(transport=httpx.MockTransport(handler))
        started = time.monotonic()
        with patch.object(settings, "extraction_timeout", 0.2):
            result = await extractor.extract("https://slow.example.com/trickle")

        assert result is None
        assert time.monotonic() - started < 2

    @pytest.mark.asyncio
    async def test_short_page_returns_none(self):
        html = "<html><body><article><p>Just a few words.</p></article></body></html>"
        extractor = ContentExtractor(transport=httpx.MockTransport(lambda request: httpx.Response(200, text=html)))
        assert await extractor.extract("https://example.com/stub") is None


class TestFirecrawlExtraction:

    @pytest.fixture(autouse=True)
    def firecrawl_settings(self):
        with patch.object(settings, "content_parser", "firecrawl"), \
             patch.object(settings, "firecrawl_api_key", "fc-test-key"):
            yield

    @pytest.mark.asyncio
    async def test_single_call_when_content_is_good(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={
                "success": True,
                "data": {
                    "html": f"<article><h1>On Deep Work</h1>{PARAGRAPHS}</article>",
                    "metadata": {
                        "title": "On Deep Work",
                        "description": "Why focus is a superpower",
                        "author": ["Substack", "Cal N."],
                        "publishedTime": "2024-01-15T09:30:00Z",
                    },
                },
            })

        extractor = ContentExtractor(transport=httpx.MockTransport(handler))
        assert extractor.backend == "firecrawl"

        result = await extractor.extract("https://blog.example.com/deep-work")

        assert len(requests) == 1
        assert requests[0].headers["Authorization"] == "Bearer fc-test-key"
        payload = json.loads(requests[0].content)
        assert payload["url"] == "https://blog.example.com/deep-work"
        assert payload["formats"] == ["html"]
        assert payload["onlyMainContent"] is True
        assert payload["waitFor"] == 3000
        assert payload["blockAds"] is True
        assert "includeTags" not in payload

        assert result is not None
        assert result.parser == "firecrawl"
        assert result.title == "On Deep Work"
        assert result.author == "Cal N."
        assert result.word_count >= 100
        assert result.image_url is None

    @pytest.mark.asyncio
    async def test_thin_content_tries_every_selector(self):
        included = []

        def handler(request: httpx.Request) -> httpx.Response:
            payload = json.loads(request.content)
            included.append(payload.get("includeTags"))
            return httpx.Response(200, json={"success": True, "data": {"html": "<p>Gallery</p>"}})

        extractor = ContentExtractor(transport=httpx.MockTransport(handler))
        result = await extractor.extract("https://design.example.com/gallery")

        assert result is None
        assert included == [None] + [[selector] for selector in CONTENT_SELECTORS]

    @pytest.mark.asyncio
    async def test_api_error_returns_none(self):
        extractor = ContentExtractor(
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
        )
        assert await extractor.extract("https://blog.example.com/post") is None
