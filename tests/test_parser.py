"""Tests for HTML, CSS and sitemap parsing."""

from datetime import datetime, timezone
import pytest

from mirrorer.models import EPOCH_SENTINEL
from mirrorer.parser import Parser, find_css_urls, parse_lastmod


class TestExtractLinks:
    """Test resource extraction from HTML."""

    def test_extract_links(self, sample_html, sample_url):
        """Test link, script, image and anchor references are found."""
        links = Parser().extract_links(sample_html, sample_url)

        assert "https://example.com/static/site.css" in links
        assert "https://example.com/static/app.js" in links
        assert "https://example.com/page1" in links
        assert "https://example.com/images/logo.png" in links
        assert "https://external.com" in links

    def test_skips_fragment_only_links(self, sample_html, sample_url):
        links = Parser().extract_links(sample_html, sample_url)
        assert not any(link.endswith("#top") for link in links)

    def test_deduplicates(self, sample_html, sample_url):
        links = Parser().extract_links(sample_html, sample_url)
        assert links.count("https://example.com/page1") == 1

    def test_relative_to_page(self):
        """Test relative references resolve against the page URL."""
        html = '<a href="child">Child</a><a href="../up">Up</a>'
        links = Parser().extract_links(html, "https://example.com/a/b/")
        assert links == ["https://example.com/a/b/child", "https://example.com/a/up"]

    def test_bytes_input(self):
        links = Parser().extract_links(b'<img src="/x.png">', "https://example.com/")
        assert links == ["https://example.com/x.png"]


class TestCssUrls:
    """Test url(...) extraction from stylesheets."""

    def test_single_url(self):
        assert find_css_urls('body { background: url("/image.png"); }') == ["/image.png"]

    def test_multiple_urls_with_quote_variants(self):
        css = b"""
        .a { background: url('/one.png'); }
        .b { background: url("/two.png"); }
        @font-face { src: url(/font.woff); }
        """
        assert find_css_urls(css) == ["/one.png", "/two.png", "/font.woff"]

    def test_no_urls(self):
        assert find_css_urls("body { color: red; }") == []


class TestLastmod:
    """Test sitemap lastmod parsing."""

    def test_with_offset(self):
        assert parse_lastmod("2025-11-06T11:00:00+00:00") == datetime(2025, 11, 6, 11, tzinfo=timezone.utc)

    def test_zulu(self):
        assert parse_lastmod("2025-11-06T11:00:00Z") == datetime(2025, 11, 6, 11, tzinfo=timezone.utc)

    def test_date_only_is_utc(self):
        assert parse_lastmod("2025-11-06") == datetime(2025, 11, 6, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "yesterday"])
    def test_missing_or_invalid(self, value):
        assert parse_lastmod(value) == EPOCH_SENTINEL


class TestParseSitemap:
    """Test sitemap documents."""

    def test_sitemap_index(self):
        body = b"""<?xml version="1.0" encoding="UTF-8"?>
        <sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
          <sitemap><loc>https://example.com/sitemap_1.xml</loc></sitemap>
          <sitemap><loc>/sitemap_2.xml</loc></sitemap>
        </sitemapindex>"""

        root, entries = Parser().parse_sitemap(body, "https://example.com/sitemap.xml")

        assert root == "sitemapindex"
        assert [e.loc for e in entries] == [
            "https://example.com/sitemap_1.xml",
            "https://example.com/sitemap_2.xml",
        ]

    def test_urlset(self):
        body = b"""<?xml version="1.0" encoding="UTF-8"?>
        <urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
          <url><loc>https://example.com/1</loc><lastmod>2025-11-05T11:00:00+00:00</lastmod></url>
          <url><loc>https://example.com/3</loc></url>
          <url><lastmod>2025-11-05T11:00:00+00:00</lastmod></url>
        </urlset>"""

        root, entries = Parser().parse_sitemap(body, "https://example.com/sitemap_1.xml")

        assert root == "urlset"
        assert len(entries) == 2
        assert entries[0].lastmod == datetime(2025, 11, 5, 11, tzinfo=timezone.utc)
        assert entries[1].lastmod == EPOCH_SENTINEL

    def test_other_xml(self):
        root, entries = Parser().parse_sitemap(b"<feed><entry/></feed>", "https://example.com/feed.xml")
        assert root is None
        assert entries == []
