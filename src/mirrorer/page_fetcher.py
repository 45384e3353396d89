"""Fetching pages from the live site or the mirror."""

import aiohttp
import structlog

from mirrorer.models import Page

logger = structlog.get_logger()

LIVE_BACKEND = "never"
MIRROR_BACKEND = "mirrorS3"


class PageFetcher:
    """Retrieves a path through the CDN, routed to the live origin or the mirror."""

    def __init__(self, base_url: str, session: aiohttp.ClientSession):
        self.base_url = base_url.rstrip("/")
        self.session = session

    async def fetch_live_page(self, path: str) -> Page:
        return await self._fetch_page(path, LIVE_BACKEND)

    async def fetch_mirror_page(self, path: str) -> Page:
        return await self._fetch_page(path, MIRROR_BACKEND)

    async def _fetch_page(self, path: str, backend: str) -> Page:
        url = f"{self.base_url}/{path.lstrip('/')}"
        async with self.session.get(url, headers={"Backend-Override": backend}) as response:
            body = await response.text(errors="replace")
            logger.debug("page_fetched", url=url, backend=backend, status=response.status)
            return Page(body=body, content_type=response.headers.get("Content-Type", ""))
