"""Pre-flight checks that the configured hosts are reachable."""

import asyncio
from typing import Callable, Optional
from urllib.parse import urlsplit
import aiohttp
import structlog

from mirrorer.config import MirrorConfig

logger = structlog.get_logger()


class DomainUnreachable(Exception):
    """A host the crawl depends on did not respond successfully."""

    def __init__(self, domain: str):
        self.domain = domain
        super().__init__(f"domain not accessible: {domain}")


def is_asset_domain(domain: str) -> bool:
    """Asset hosts don't serve anything at their root, so they are skipped."""
    return domain.lower().startswith("assets.")


async def is_domain_accessible(
    session: aiohttp.ClientSession,
    url: str,
    config: MirrorConfig,
) -> bool:
    """GET the URL with the crawler's headers and accept any 2xx or 3xx."""
    headers = {"User-Agent": config.user_agent, **config.headers}
    try:
        async with session.get(url, headers=headers, max_redirects=5) as response:
            return 200 <= response.status < 400
    except aiohttp.TooManyRedirects:
        # still redirecting after five hops, so the last response was a 3xx
        return True
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        logger.warning("domain_check_failed", url=url, error=str(e))
        return False


async def validate_crawler_config(
    config: MirrorConfig,
    timeout: int = 10,
    skip_host: Optional[Callable[[str], bool]] = is_asset_domain,
) -> None:
    """
    Check the seed URL and every allowed domain respond before crawling.

    Args:
        config: Crawl configuration
        timeout: Per-request timeout in seconds
        skip_host: Hook marking hosts that should not be checked

    Raises:
        DomainUnreachable: For the first host that fails
    """
    scheme = urlsplit(config.site).scheme if config.site else "https"
    scheme = scheme or "https"

    async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
        if config.site:
            if not await is_domain_accessible(session, config.site, config):
                raise DomainUnreachable(config.site)

        for domain in config.allowed_domains:
            if skip_host is not None and skip_host(domain):
                logger.info("domain_check_skipped", domain=domain)
                continue

            if not await is_domain_accessible(session, f"{scheme}://{domain}", config):
                raise DomainUnreachable(domain)

    logger.info("domains_validated", site=config.site, domains=len(config.allowed_domains))
