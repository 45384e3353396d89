"""Detection of drift between the live site and the mirror."""

import asyncio
import aiohttp
import structlog

from mirrorer.models import DriftSummary, TopUrls, UrlHitCount
from mirrorer.notifiers import DriftNotifier, NotifyFailed
from mirrorer.page_comparer import ComparisonFailed, PageComparer
from mirrorer.page_fetcher import PageFetcher

logger = structlog.get_logger()


class DriftChecker:
    """Fetches pages from both origins, compares them and reports drift."""

    def __init__(self, fetcher: PageFetcher, comparer: PageComparer, notifier: DriftNotifier):
        self.fetcher = fetcher
        self.comparer = comparer
        self.notifier = notifier
        self.summary = DriftSummary()
        self.notify_failed = False

    async def check(self, top_urls: TopUrls) -> bool:
        """
        Compare the live and mirror versions of every selected URL.

        The notifier is only called when at least one drift was found. A
        notifier failure is logged and recorded on ``notify_failed``.

        Args:
            top_urls: The unsampled and sampled URLs to compare

        Returns:
            True if any drift was detected
        """
        self.summary = DriftSummary()
        self.notify_failed = False

        logger.info("comparing_unsampled", count=len(top_urls.top_unsampled))
        await self._compare_pages(top_urls.top_unsampled)

        logger.info("comparing_sampled", count=len(top_urls.remaining_sampled))
        await self._compare_pages(top_urls.remaining_sampled)

        logger.info(
            "drift_check_completed",
            pages_compared=self.summary.pages_compared,
            drifts_detected=self.summary.drifts_detected,
            errors=self.summary.errors,
        )

        if self.summary.drifts_detected == 0:
            return False

        try:
            await self.notifier.notify(self.summary)
        except NotifyFailed as e:
            self.notify_failed = True
            logger.error("drift_notification_failed", error=str(e))

        return True

    async def _compare_pages(self, pages: list[UrlHitCount]) -> None:
        for page in pages:
            try:
                live = await self.fetcher.fetch_live_page(page.url)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                self.summary.errors += 1
                logger.error("live_fetch_failed", url=page.url, error=str(e))
                continue

            try:
                mirror = await self.fetcher.fetch_mirror_page(page.url)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                self.summary.errors += 1
                logger.error("mirror_fetch_failed", url=page.url, error=str(e))
                continue

            self.summary.pages_compared += 1
            try:
                same = self.comparer.have_same_body(live, mirror)
            except ComparisonFailed as e:
                self.summary.errors += 1
                logger.error("comparison_failed", url=page.url, error=str(e))
                continue

            if not same:
                self.summary.drifts_detected += 1
            logger.info("page_compared", url=page.url, views=page.view_count, drift=not same)
