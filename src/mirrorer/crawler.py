"""Core crawler engine."""

import asyncio
import time
from typing import Optional
from urllib.parse import urljoin
from tqdm.asyncio import tqdm
import aiohttp
import structlog

from mirrorer.config import MirrorConfig
from mirrorer.fetcher import DisallowedRedirect, Fetcher
from mirrorer.filters import CombinedFilter
from mirrorer.metrics import Metrics
from mirrorer.mime import parse_media_type
from mirrorer.models import FetchResult, SitemapEntry
from mirrorer.parser import Parser, find_css_urls
from mirrorer.paths import UnknownContentType
from mirrorer.scheduler import Scheduler
from mirrorer.sitemap import CrawlState
from mirrorer.storage import BlobUploader, LocalFileStorage, UploadError, redirect_html_body

logger = structlog.get_logger()


def mask_office_xml(media_type: str) -> str:
    """
    Strip "xml" from media types that contain it but aren't XML documents.

    Office OpenXML files (docx, xlsx, pptx) are zip archives, and types such
    as image/svg+xml are never sitemaps, so neither should be parsed as XML.
    """
    if "openxmlformats" in media_type or "+xml" in media_type:
        return media_type.replace("xml", "")
    return media_type


class Crawler:
    """Async crawler that mirrors a site to disk and S3."""

    def __init__(
        self,
        config: Optional[MirrorConfig] = None,
        metrics: Optional[Metrics] = None,
        uploader: Optional[BlobUploader] = None,
        storage: Optional[LocalFileStorage] = None,
    ):
        """
        Initialize crawler with configuration.

        Args:
            config: Crawl configuration, uses defaults if None
            metrics: Metrics to record into, a fresh registry if None
            uploader: Optional uploader each stored file is sent to
            storage: Local mirror writer, rooted at config.mirror_dir if None
        """
        self.config = config or MirrorConfig()
        self.metrics = metrics or Metrics()
        self.uploader = uploader
        self.storage = storage or LocalFileStorage(self.config.mirror_dir)
        self.rules = CombinedFilter.from_config(
            allowed_domains=self.config.allowed_domains,
            allow_patterns=self.config.url_rules,
            deny_patterns=self.config.disallowed_url_rules,
        )
        self.parser = Parser()
        self.scheduler = Scheduler(url_filter=self.rules)
        self.state = CrawlState()
        self._progress: Optional[tqdm] = None

    async def crawl(self, start_url: Optional[str] = None) -> None:
        """
        Crawl from the start URL until no queued URLs remain.

        Args:
            start_url: URL to start from, config.site if None
        """
        start_url = start_url or self.config.site
        started_at = time.monotonic()
        logger.info("crawl_started", url=start_url, workers=self.config.workers)

        if start_url:
            await self.scheduler.add(start_url)

        async with Fetcher(
            user_agent=self.config.user_agent,
            headers=self.config.headers,
            rules=self.rules,
        ) as fetcher:
            workers = [
                asyncio.create_task(self._worker(fetcher, worker_id))
                for worker_id in range(self.config.workers)
            ]

            await self.scheduler.join()

            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        self.metrics.set_crawler_duration(started_at)
        logger.info(
            "crawl_completed",
            urls_visited=await self.scheduler.visited_count(),
            urls_filtered=await self.scheduler.filtered_count(),
            pages_crawled=self.metrics.value("crawled_pages_total"),
        )

    async def crawl_with_progress(self, start_url: Optional[str] = None) -> None:
        """Crawl with a progress bar of stored files (for CLI use)."""
        with tqdm(desc="Mirroring", unit="file") as pbar:
            self._progress = pbar
            try:
                await self.crawl(start_url)
            finally:
                self._progress = None

    async def _worker(self, fetcher: Fetcher, worker_id: int):
        """
        Worker coroutine that processes URLs from the queue.

        Args:
            fetcher: HTTP fetcher instance
            worker_id: Worker identifier for logging
        """
        while True:
            url = await self.scheduler.get()
            try:
                await self._process(fetcher, url)
            except Exception as e:
                logger.exception("crawl_error", url=url, error=str(e), worker=worker_id)
            finally:
                self.scheduler.task_done()

    async def _process(self, fetcher: Fetcher, url: str) -> None:
        try:
            result = await fetcher.fetch(url, on_redirect=self._on_redirect)
        except DisallowedRedirect as e:
            logger.debug("redirect_not_followed", url=url, location=e.url)
            await self._enqueue_entries(await self.state.abandon(url))
            return
        except aiohttp.ClientResponseError as e:
            self.metrics.http_errors.inc()
            logger.error("http_error", url=url, status=e.status, error=e.message)
            await self._enqueue_entries(await self.state.abandon(url))
            return
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.metrics.http_errors.inc()
            logger.error("http_error", url=url, error=str(e) or type(e).__name__)
            await self._enqueue_entries(await self.state.abandon(url))
            return

        if result.url != url:
            await self.scheduler.mark_visited(result.url)

        await self._handle_response(url, result)

    async def _on_redirect(self, target: str, via: list[str]) -> None:
        """Store a meta-refresh stub for the hop that just redirected to target."""
        # earlier hops already got their stub when they were followed
        await self._store(via[-1], "text/html", redirect_html_body(target))

    async def _handle_response(self, requested_url: str, result: FetchResult) -> None:
        content_type = result.content_type

        try:
            media_type = parse_media_type(content_type)
        except ValueError as e:
            logger.warning("content_type_parse_error", url=result.url, content_type=content_type, error=str(e))
            media_type = ""

        media_type = mask_office_xml(media_type)

        if media_type == "text/html":
            for link in self.parser.extract_links(result.body, result.url):
                await self.scheduler.add(link)
        elif media_type == "text/css":
            for link in find_css_urls(result.body):
                await self.scheduler.add(urljoin(result.url, link))
        elif "xml" in media_type:
            await self._handle_sitemap(requested_url, result)

        # anything that was expected to be a sitemap but wasn't one is given up on
        await self._enqueue_entries(await self.state.abandon(requested_url))

        await self._store(result.url, content_type, result.body)

    async def _handle_sitemap(self, requested_url: str, result: FetchResult) -> None:
        try:
            root, entries = self.parser.parse_sitemap(result.body, result.url)
        except Exception as e:
            logger.error("sitemap_parse_error", url=result.url, error=str(e))
            return

        if root == "sitemapindex":
            locs = [entry.loc for entry in entries]
            to_enqueue = await self.state.add_sitemap_index(requested_url, locs)
            for loc in locs:
                if not await self.scheduler.add(loc) and self.state.is_pending(loc):
                    to_enqueue += await self.state.abandon(loc)
            await self._enqueue_entries(to_enqueue)
        elif root == "urlset":
            await self._enqueue_entries(await self.state.add_urlset(requested_url, entries))

    async def _enqueue_entries(self, entries: list[SitemapEntry]) -> None:
        for entry in entries:
            await self.scheduler.add(entry.loc)

    async def _store(self, url: str, content_type: str, body: bytes) -> None:
        """Write an artifact to the mirror, count it and upload it."""
        try:
            relative_path = await self.storage.save(url, content_type, body)
        except (OSError, UnknownContentType, ValueError) as e:
            self.metrics.download_errors.inc()
            logger.error("save_error", url=url, content_type=content_type, error=str(e))
            return

        self.metrics.crawled_pages.inc()
        self.metrics.files_downloaded.inc()
        if self._progress is not None:
            self._progress.update(1)
        logger.info("file_downloaded", url=url, path=relative_path, content_type=content_type)

        if self.uploader is None:
            return

        try:
            await self.uploader.upload_file(self.storage.full_path(relative_path), relative_path, content_type)
        except UploadError as e:
            self.metrics.file_upload_failures.inc()
            logger.error("upload_error", path=relative_path, error=str(e))
        else:
            self.metrics.files_uploaded.inc()
