"""Wiring of the mirror, drift-check and status-check processes."""

import asyncio
import random
from contextlib import AsyncExitStack
from typing import Optional
import aioboto3
import aiohttp
import structlog
from prometheus_client import start_http_server

from mirrorer.config import DriftCheckConfig, MirrorConfig
from mirrorer.crawler import Crawler
from mirrorer.drift_checker import DriftChecker
from mirrorer.metrics import Metrics, push_metrics, update_mirror_metrics
from mirrorer.mime import load_additional_mime_types
from mirrorer.notifiers import DriftNotifier, StdoutDriftNotifier, WebhookDriftNotifier
from mirrorer.page_comparer import PageComparer
from mirrorer.page_fetcher import PageFetcher
from mirrorer.storage import S3Uploader
from mirrorer.top_urls import AthenaTopUrlsClient
from mirrorer.validation import validate_crawler_config

logger = structlog.get_logger()


def _probe_enabled(config: MirrorConfig) -> bool:
    return bool(config.backends and config.mirror_freshness_url and config.mirror_availability_url)


async def run_mirror(config: MirrorConfig, progress: bool = False) -> Metrics:
    """
    Crawl the site into the mirror, reporting metrics while it runs.

    Args:
        config: Mirror configuration
        progress: Show a progress bar of stored files

    Returns:
        The metrics recorded during the run

    Raises:
        DomainUnreachable: If pre-flight validation fails
    """
    load_additional_mime_types()

    if config.skip_validation:
        logger.info("validation_skipped")
    else:
        await validate_crawler_config(config)

    metrics = Metrics()
    stop = asyncio.Event()

    async with AsyncExitStack() as stack:
        background = []
        if config.pushgateway_url:
            background.append(
                asyncio.create_task(
                    push_metrics(metrics.registry, config.pushgateway_url, config.metric_refresh_interval, stop)
                )
            )
        else:
            logger.warning("metrics_push_disabled")

        if _probe_enabled(config):
            probe_session = await stack.enter_async_context(aiohttp.ClientSession())
            background.append(asyncio.create_task(update_mirror_metrics(metrics, config, probe_session, stop)))

        uploader = None
        if config.s3_bucket_name:
            session = aioboto3.Session()
            s3 = await stack.enter_async_context(session.client("s3"))
            uploader = S3Uploader(s3, config.s3_bucket_name)
        else:
            logger.warning("upload_disabled", reason="S3_BUCKET_NAME not set")

        crawler = Crawler(config=config, metrics=metrics, uploader=uploader)
        try:
            if progress:
                await crawler.crawl_with_progress()
            else:
                await crawler.crawl()
        finally:
            stop.set()
            logger.info("waiting_for_background_tasks", tasks=len(background))
            await asyncio.gather(*background)

    logger.info("mirror_run_completed")
    return metrics


def _notifier(config: DriftCheckConfig, session: aiohttp.ClientSession) -> DriftNotifier:
    if config.slack_webhook:
        return WebhookDriftNotifier(config.slack_webhook, config.site, session)
    logger.warning("webhook_not_configured", notifier="stdout")
    return StdoutDriftNotifier(config.site)


async def run_drift_check(config: DriftCheckConfig, rng: Optional[random.Random] = None) -> int:
    """
    Compare popular pages between the live site and the mirror.

    Args:
        config: Drift-check configuration
        rng: Random source for sampling, seeded from config.random_seed if None

    Returns:
        Process exit code, 1 when drift was found or the notification failed

    Raises:
        AthenaQueryFailed: If the top URLs query does not succeed
    """
    rng = rng or random.Random(config.random_seed)
    session = aioboto3.Session()

    async with session.client("athena") as athena, session.client("s3") as s3:
        top_urls = await AthenaTopUrlsClient(config, athena, s3).get_top_urls(rng)

    async with aiohttp.ClientSession() as http:
        checker = DriftChecker(PageFetcher(config.site, http), PageComparer(), _notifier(config, http))
        drifted = await checker.check(top_urls)

    if drifted or checker.notify_failed:
        return 1
    return 0


async def run_status_check(config: MirrorConfig, stop: Optional[asyncio.Event] = None) -> None:
    """Serve mirror probe metrics over HTTP, refreshing them until stopped."""
    metrics = Metrics()
    start_http_server(config.status_check_port, registry=metrics.registry)
    logger.info("status_check_listening", port=config.status_check_port)

    async with aiohttp.ClientSession() as session:
        await update_mirror_metrics(metrics, config, session, stop)
