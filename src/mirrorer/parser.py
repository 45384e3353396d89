"""HTML, CSS and sitemap parsing for URL discovery."""

import re
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urljoin
from bs4 import BeautifulSoup
import structlog

from mirrorer.models import EPOCH_SENTINEL, SitemapEntry

logger = structlog.get_logger()

CSS_URL_PATTERN = re.compile(r"""url\(["']?(.*?)["']?\)""")

# (tag, attribute) pairs that reference other resources
LINK_ATTRIBUTES = (("a", "href"), ("link", "href"), ("img", "src"), ("script", "src"))


def find_css_urls(body: bytes | str) -> list[str]:
    """Extract every url(...) reference from a stylesheet, quotes optional."""
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    return CSS_URL_PATTERN.findall(body)


def parse_lastmod(value: Optional[str]) -> datetime:
    """Parse a sitemap <lastmod>, falling back to the epoch sentinel."""
    if not value:
        return EPOCH_SENTINEL

    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        logger.warning("invalid_lastmod", lastmod=value)
        return EPOCH_SENTINEL

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Parser:
    """Parser for extracting links from HTML pages and sitemaps."""

    def extract_links(self, html: bytes | str, base_url: str) -> list[str]:
        """
        Extract resource references from an HTML page.

        Collects ``href`` on ``a``/``link`` and ``src`` on ``img``/``script``.
        Fragment-only references are skipped.

        Args:
            html: Raw HTML content
            base_url: URL the page was fetched from, used for relative links

        Returns:
            Absolute URLs in document order, without duplicates
        """
        soup = BeautifulSoup(html, "lxml")
        links = []
        seen = set()

        for tag in soup.find_all([name for name, _ in LINK_ATTRIBUTES]):
            attribute = "href" if tag.name in ("a", "link") else "src"
            link = tag.get(attribute)
            if not link or link.startswith("#"):
                continue

            absolute_url = urljoin(base_url, link.strip())
            if absolute_url not in seen:
                seen.add(absolute_url)
                links.append(absolute_url)

        return links

    def parse_sitemap(self, body: bytes, base_url: str) -> tuple[Optional[str], list[SitemapEntry]]:
        """
        Parse a sitemap document.

        Args:
            body: Raw XML content
            base_url: URL of the sitemap, used to resolve relative <loc> values

        Returns:
            Tuple of (root element name, entries). The root is ``sitemapindex``,
            ``urlset`` or None when the document is neither. For an index the
            entries are its child sitemaps.
        """
        soup = BeautifulSoup(body, "xml")
        root = soup.find(True)
        if root is None or root.name not in ("sitemapindex", "urlset"):
            return None, []

        child_name = "sitemap" if root.name == "sitemapindex" else "url"
        entries = []

        for child in root.find_all(child_name, recursive=False):
            loc = child.find("loc")
            if loc is None or not loc.get_text(strip=True):
                logger.warning("sitemap_entry_without_loc", sitemap=base_url)
                continue

            lastmod = child.find("lastmod")
            if lastmod is None:
                logger.debug("no_lastmod_element", loc=loc.get_text(strip=True))

            entries.append(
                SitemapEntry(
                    loc=urljoin(base_url, loc.get_text(strip=True)),
                    lastmod=parse_lastmod(lastmod.get_text(strip=True) if lastmod else None),
                )
            )

        return root.name, entries
