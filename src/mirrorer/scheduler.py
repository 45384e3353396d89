"""URL scheduling and deduplication."""

import asyncio
from typing import Optional
from urllib.parse import urldefrag, urlsplit
import structlog

from mirrorer.filters import CombinedFilter

logger = structlog.get_logger()


class Scheduler:
    """Manages the URL queue with rule enforcement and deduplication."""

    def __init__(self, url_filter: Optional[CombinedFilter] = None):
        self.url_filter = url_filter
        self.queue: asyncio.Queue[str] = asyncio.Queue()
        self.visited: set[str] = set()
        self.filtered: set[str] = set()
        self._lock = asyncio.Lock()

    async def add(self, url: str) -> bool:
        """
        Add URL to queue if it may be fetched and hasn't been seen.

        Rejections are silent: they are normal crawl behaviour, not errors.

        Args:
            url: Absolute URL to add

        Returns:
            True if the URL was enqueued
        """
        url = urldefrag(url).url

        async with self._lock:
            if url in self.visited:
                return False

            if urlsplit(url).scheme not in ("http", "https"):
                return False

            if self.url_filter and not self.url_filter.should_crawl(url):
                self.filtered.add(url)
                return False

            self.visited.add(url)
            self.queue.put_nowait(url)
            logger.debug("url_queued", url=url, queue_size=self.queue.qsize())
            return True

    async def mark_visited(self, url: str) -> None:
        """Record a URL reached without being queued, e.g. a redirect target."""
        async with self._lock:
            self.visited.add(urldefrag(url).url)

    async def get(self) -> str:
        """Wait for the next URL (FIFO)."""
        return await self.queue.get()

    def task_done(self) -> None:
        """Mark the last URL returned by get() as processed."""
        self.queue.task_done()

    async def join(self) -> None:
        """Wait until every queued URL has been processed."""
        await self.queue.join()

    async def visited_count(self) -> int:
        """Get count of visited URLs."""
        async with self._lock:
            return len(self.visited)

    async def filtered_count(self) -> int:
        """Get count of filtered URLs."""
        async with self._lock:
            return len(self.filtered)

    def is_empty(self) -> bool:
        """Check if queue is empty."""
        return self.queue.empty()
