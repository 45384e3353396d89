"""Prometheus metrics for the crawler and the mirror health probes."""

import asyncio
import time
from datetime import timedelta
from email.utils import parsedate_to_datetime
from typing import Callable, Optional
import aiohttp
import structlog
from prometheus_client import CollectorRegistry, Counter, Gauge, push_to_gateway

from mirrorer.config import MirrorConfig

logger = structlog.get_logger()

NAMESPACE = "govuk_mirror"
PUSH_JOB = "mirror_metrics"


class Metrics:
    """Counters and gauges registered on a private registry."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        def counter(name: str, documentation: str) -> Counter:
            return Counter(name, documentation, namespace=NAMESPACE, registry=self.registry)

        self.crawled_pages = counter("crawled_pages_total", "Total number of pages successfully crawled")
        self.files_downloaded = counter("files_downloaded_total", "Total number of files downloaded by the crawler")
        self.http_errors = counter("http_errors_total", "Total number of HTTP errors encountered by the crawler")
        self.download_errors = counter("download_errors_total", "Total number of files the crawler failed to save")
        self.files_uploaded = counter("files_uploaded_total", "Total number of files uploaded to the mirror")
        self.file_upload_failures = counter("file_upload_failures_total", "Total number of failed uploads")

        self.crawler_duration = Gauge(
            "crawler_duration_minutes",
            "Duration of crawler in minutes",
            namespace=NAMESPACE,
            registry=self.registry,
        )
        self.mirror_last_updated = Gauge(
            "mirror_last_updated_time",
            "Last time the mirror was updated",
            ["backend"],
            namespace=NAMESPACE,
            registry=self.registry,
        )
        self.mirror_response_status_code = Gauge(
            "mirror_response_status_code",
            "Response status code for the mirror availability probe",
            ["backend"],
            namespace=NAMESPACE,
            registry=self.registry,
        )

    def set_crawler_duration(self, started_at: float) -> None:
        """Record minutes elapsed since a time.monotonic() reading."""
        self.crawler_duration.set((time.monotonic() - started_at) / 60)

    def value(self, name: str, **labels: str) -> float:
        """Current value of a sample, 0 if it has never been set."""
        sample = self.registry.get_sample_value(f"{NAMESPACE}_{name}", labels or None)
        return sample or 0.0


async def _wait(stop: asyncio.Event, interval: timedelta) -> bool:
    """Sleep for interval or until stop is set. Returns True when stopped."""
    try:
        await asyncio.wait_for(stop.wait(), timeout=interval.total_seconds())
        return True
    except asyncio.TimeoutError:
        return False


async def _push(registry: CollectorRegistry, gateway_url: str, pusher: Callable) -> None:
    try:
        await asyncio.to_thread(pusher, gateway_url, job=PUSH_JOB, registry=registry)
    except Exception as e:
        logger.error("metrics_push_failed", gateway=gateway_url, error=str(e))


async def push_metrics(
    registry: CollectorRegistry,
    gateway_url: str,
    interval: timedelta,
    stop: asyncio.Event,
    pusher: Callable = push_to_gateway,
) -> None:
    """
    Push the registry to the Pushgateway every interval until stopped.

    One last push is made after ``stop`` is set so the final counter values
    are not lost.

    Args:
        registry: Registry to push
        gateway_url: Pushgateway address
        interval: Time between pushes
        stop: Cancellation signal
        pusher: Function doing the push, ``push_to_gateway`` by default
    """
    while not await _wait(stop, interval):
        await _push(registry, gateway_url, pusher)

    await _push(registry, gateway_url, pusher)
    logger.info("metrics_push_stopped")


async def fetch_mirror_freshness(session: aiohttp.ClientSession, url: str, backend: str) -> float:
    """
    Unix timestamp of the mirror's Last-Modified header for a backend.

    Raises:
        ValueError: On a non-200 response or a missing/invalid Last-Modified
        aiohttp.ClientError: On transport failure
    """
    async with session.get(url, headers={"Backend-Override": backend}) as response:
        if response.status != 200:
            raise ValueError(f"request failed with status code: {response.status}")

        last_modified = response.headers.get("Last-Modified")
        if not last_modified:
            raise ValueError("response has no Last-Modified header")

        return parsedate_to_datetime(last_modified).timestamp()


async def fetch_mirror_availability(session: aiohttp.ClientSession, url: str, backend: str) -> int:
    """Status code the mirror answers with for a backend."""
    async with session.get(url, headers={"Backend-Override": backend}) as response:
        return response.status


async def probe_mirror(metrics: Metrics, config: MirrorConfig, session: aiohttp.ClientSession) -> None:
    """Update the freshness and availability gauges for every backend once."""
    for backend in config.backends:
        try:
            freshness = await fetch_mirror_freshness(session, config.mirror_freshness_url, backend)
            metrics.mirror_last_updated.labels(backend=backend).set(freshness)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, TypeError) as e:
            logger.error(
                "mirror_metric_update_failed",
                metric="mirror_last_updated_time",
                backend=backend,
                error=str(e),
            )

        try:
            status = await fetch_mirror_availability(session, config.mirror_availability_url, backend)
            metrics.mirror_response_status_code.labels(backend=backend).set(status)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(
                "mirror_metric_update_failed",
                metric="mirror_response_status_code",
                backend=backend,
                error=str(e),
            )


async def update_mirror_metrics(
    metrics: Metrics,
    config: MirrorConfig,
    session: aiohttp.ClientSession,
    stop: Optional[asyncio.Event] = None,
) -> None:
    """Probe the mirror every refresh interval until stopped."""
    stop = stop or asyncio.Event()
    logger.info("mirror_probe_started", backends=config.backends, interval=str(config.refresh_interval))

    while True:
        await probe_mirror(metrics, config, session)
        if await _wait(stop, config.refresh_interval):
            break

    logger.info("mirror_probe_stopped")
