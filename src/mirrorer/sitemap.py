"""Coordination of sitemap discovery across crawl workers."""

import asyncio
import structlog

from mirrorer.models import SitemapEntry

logger = structlog.get_logger()


def order_entries(entries: list[SitemapEntry]) -> list[SitemapEntry]:
    """Sort entries newest ``lastmod`` first, ties by URL."""
    by_loc = sorted(entries, key=lambda e: e.loc)
    return sorted(by_loc, key=lambda e: e.lastmod, reverse=True)


class CrawlState:
    """
    Sitemap bookkeeping for a single crawl.

    Entries from every urlset are held back until all sitemaps listed by the
    sitemap indexes have been handled, then released once in ``lastmod``
    order so the freshest pages are mirrored first. Every method returns the
    entries the caller should enqueue, usually an empty list.
    """

    def __init__(self):
        self.expected_sitemaps = 0
        self.completed_sitemaps = 0
        self.entries: list[SitemapEntry] = []
        self.dispatched = False
        self._pending: set[str] = set()
        self._lock = asyncio.Lock()

    async def add_sitemap_index(self, index_url: str, locs: list[str]) -> list[SitemapEntry]:
        """
        Record the child sitemaps of a sitemap index.

        Args:
            index_url: URL the index was requested from
            locs: Absolute URLs of its child sitemaps

        Returns:
            Entries to enqueue, non-empty only if this completes the set
        """
        async with self._lock:
            new = [loc for loc in dict.fromkeys(locs) if loc not in self._pending]
            self._pending.update(new)
            self.expected_sitemaps += len(new)

            # an index listed by another index is itself one of the expected sitemaps
            if index_url in self._pending:
                self._complete(index_url)

            logger.info(
                "sitemap_index_parsed",
                url=index_url,
                sitemaps=len(new),
                expected=self.expected_sitemaps,
            )
            return self._maybe_dispatch()

    async def add_urlset(self, url: str, entries: list[SitemapEntry]) -> list[SitemapEntry]:
        """
        Record the entries of a urlset.

        Args:
            url: URL the urlset was requested from
            entries: Its <url> entries

        Returns:
            Entries to enqueue
        """
        async with self._lock:
            if url not in self._pending:
                if self.dispatched or self.expected_sitemaps > 0:
                    logger.info("untracked_urlset", url=url, entries=len(entries))
                    return order_entries(entries)

                # a urlset crawled without an index is a set of one
                self._pending.add(url)
                self.expected_sitemaps += 1

            self.entries.extend(entries)
            self._complete(url)
            logger.info(
                "urlset_parsed",
                url=url,
                entries=len(entries),
                completed=self.completed_sitemaps,
                expected=self.expected_sitemaps,
            )
            return self._maybe_dispatch()

    async def abandon(self, url: str) -> list[SitemapEntry]:
        """
        Give up on a pending sitemap so dispatch isn't held back by it.

        Does nothing for URLs that are not pending sitemaps.
        """
        async with self._lock:
            if url not in self._pending:
                return []

            logger.warning("sitemap_abandoned", url=url)
            self._complete(url)
            return self._maybe_dispatch()

    def is_pending(self, url: str) -> bool:
        """Check whether a URL is a sitemap still waiting to be handled."""
        return url in self._pending

    def _complete(self, url: str) -> None:
        self._pending.discard(url)
        self.completed_sitemaps += 1

    def _maybe_dispatch(self) -> list[SitemapEntry]:
        if self.dispatched or self.expected_sitemaps == 0:
            return []
        if self.completed_sitemaps != self.expected_sitemaps:
            return []

        self.dispatched = True
        ordered = order_entries(self.entries)
        logger.info("sitemap_dispatch", entries=len(ordered), sitemaps=self.completed_sitemaps)
        return ordered
