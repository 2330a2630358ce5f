"""
Portable Backend — Metadata Scraper Tests
===========================================

What:  Open Graph / <title> parsing and the oEmbed fast paths.
How:   httpx.MockTransport stands in for the network.
"""

import asyncio
import time
from unittest.mock import patch

import httpx
import pytest
from bs4 import BeautifulSoup

from portable.services.metadata_scraper import MetadataScraper, parse_metadata


class TestParseMetadata:

    def test_parses_with_lxml(self):
        with patch("portable.services.metadata_scraper.BeautifulSoup", wraps=BeautifulSoup) as soup:
            meta = parse_metadata("<html><head><title>Messy page</title><body><p>unclosed <b>tags", "https://example.com/")

        assert soup.call_args.args[1] == "lxml"
        assert meta.title == "Messy page"

    def test_open_graph_tags_win(self):
        html = """
        <html><head>
          <title>Fallback Title</title>
          <meta property="og:title" content="OG Title">
          <meta name="twitter:title" content="Twitter Title">
          <meta property="og:description" content="OG description">
          <meta name="description" content="Plain description">
          <meta property="og:image" content="/images/cover.png">
        </head><body><h1>Heading</h1></body></html>
        """
        meta = parse_metadata(html, "https://example.com/posts/1")

        assert meta.title == "OG Title"
        assert meta.description == "OG description"
        assert meta.image_url == "https://example.com/images/cover.png"
        assert meta.source == "html"

    def test_title_tag_then_h1(self):
        assert parse_metadata("<title> Page  Title </title>", "https://e.com").title == "Page Title"
        assert parse_metadata("<body><h1>Only <em>Heading</em></h1></body>", "https://e.com").title == "Only Heading"

    def test_twitter_and_link_fallbacks(self):
        html = """
        <meta name="twitter:description" content="Tweet-sized">
        <link rel="image_src" href="https://cdn.example.com/i.jpg">
        """
        meta = parse_metadata(html, "https://example.com")
        assert meta.description == "Tweet-sized"
        assert meta.image_url == "https://cdn.example.com/i.jpg"

    def test_empty_page_falls_back_to_url(self):
        meta = parse_metadata("<html></html>", "https://example.com/x")
        assert meta.title == "https://example.com/x"
        assert meta.description is None
        assert meta.image_url is None


class TestMetadataScraper:

    @pytest.mark.asyncio
    async def test_scrapes_html_page(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["User-Agent"].startswith("Mozilla/5.0 (compatible; Portable")
            return httpx.Response(
                200,
                text='<title>Hello</title><meta property="og:description" content="World">',
                headers={"content-type": "text/html; charset=utf-8"},
            )

        scraper = MetadataScraper(transport=httpx.MockTransport(handler))
        meta = await scraper.scrape("https://example.com/hello")

        assert meta.title == "Hello"
        assert meta.description == "World"

    @pytest.mark.asyncio
    async def test_youtube_uses_oembed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.host == "www.youtube.com"
            assert request.url.path == "/oembed"
            assert request.url.params["url"] == "https://www.youtube.com/watch?v=abc"
            assert request.url.params["format"] == "json"
            return httpx.Response(200, json={
                "title": "A Video",
                "author_name": "Some Channel",
                "thumbnail_url": "https://i.ytimg.com/vi/abc/hqdefault.jpg",
            })

        scraper = MetadataScraper(transport=httpx.MockTransport(handler))
        meta = await scraper.scrape("https://www.youtube.com/watch?v=abc")

        assert meta.title == "A Video"
        assert meta.description == "By Some Channel"
        assert meta.image_url == "https://i.ytimg.com/vi/abc/hqdefault.jpg"
        assert meta.source == "oembed:youtube"

    @pytest.mark.asyncio
    async def test_vimeo_uses_oembed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/oembed.json"
            return httpx.Response(200, json={"title": "Vimeo Clip"})

        scraper = MetadataScraper(transport=httpx.MockTransport(handler))
        meta = await scraper.scrape("https://vimeo.com/76979871")

        assert meta.title == "Vimeo Clip"
        assert meta.description is None
        assert meta.source == "oembed:vimeo"

    @pytest.mark.asyncio
    async def test_non_html_keeps_url_as_title(self):
        scraper = MetadataScraper(transport=httpx.MockTransport(
            lambda request: httpx.Response(200, content=b"%PDF-1.7", headers={"content-type": "application/pdf"})
        ))
        meta = await scraper.scrape("https://example.com/paper.pdf")
        assert meta.title == "https://example.com/paper.pdf"
        assert meta.source == "non-html"

    @pytest.mark.asyncio
    async def test_network_failure_never_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        scraper = MetadataScraper(transport=httpx.MockTransport(handler))
        meta = await scraper.scrape("https://down.example.com/")

        assert meta.title == "https://down.example.com/"
        assert meta.source == "fallback"

    @pytest.mark.asyncio
    async def test_oembed_error_falls_back_to_url(self):
        scraper = MetadataScraper(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        meta = await scraper.scrape("https://youtu.be/private")
        assert meta.title == "https://youtu.be/private"

    @pytest.mark.asyncio
    async def test_slow_page_is_cut_off_at_overall_timeout(self):
        async def handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200, text="<html><head><title>Too late</title></head></html>")

        scraper = MetadataScraper(transport=httpx.MockTransport(handler))
        started = time.monotonic()
        meta = await scraper.scrape("https://slow.example.com/page", timeout=0.2)

        assert time.monotonic() - started < 2
        assert meta.title == "https://slow.example.com/page"
        assert meta.source == "fallback"
