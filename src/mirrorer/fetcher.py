"""HTTP fetcher with redirect interception."""

from typing import Awaitable, Callable, Optional
from urllib.parse import urljoin
import aiohttp
import structlog

from mirrorer.filters import CombinedFilter
from mirrorer.models import FetchResult

logger = structlog.get_logger()

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
MAX_REDIRECTS = 5

RedirectHook = Callable[[str, list[str]], Awaitable[None]]


class DisallowedRedirect(Exception):
    """A redirect pointed at a URL the fetch rules do not allow."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Not following redirect to {url} because it's not allowed")


class TooManyRedirects(aiohttp.ClientError):
    """A redirect chain was longer than the fetcher follows."""

    def __init__(self, url: str, history: list[str]):
        self.url = url
        self.history = history
        super().__init__(f"stopped after {len(history)} redirects at {url}")


class Fetcher:
    """Async HTTP client wrapper shared by all crawl workers."""

    def __init__(
        self,
        user_agent: str = "govuk-mirror-bot",
        headers: Optional[dict[str, str]] = None,
        timeout: int = 60,
        rules: Optional[CombinedFilter] = None,
        max_redirects: int = MAX_REDIRECTS,
    ):
        self.user_agent = user_agent
        self.headers = headers or {}
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.rules = rules
        self.max_redirects = max_redirects
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        """Create session on context enter."""
        # unsafe=True keeps cookies for IP-addressed hosts too
        self._session = aiohttp.ClientSession(
            headers={"User-Agent": self.user_agent, **self.headers},
            timeout=self.timeout,
            cookie_jar=aiohttp.CookieJar(unsafe=True),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Close session on context exit."""
        if self._session:
            await self._session.close()

    async def fetch(self, url: str, on_redirect: Optional[RedirectHook] = None) -> FetchResult:
        """
        Fetch a URL, following redirects the rules allow.

        Before each redirect is followed, ``on_redirect`` is awaited with the
        candidate URL and the URLs already requested in the chain.

        Args:
            url: The URL to fetch
            on_redirect: Optional redirect interceptor

        Returns:
            FetchResult for the final response

        Raises:
            DisallowedRedirect: If a redirect target is not allowed
            TooManyRedirects: If the chain is longer than ``max_redirects``
            aiohttp.ClientResponseError: On a non-2xx final response
            aiohttp.ClientError: On transport failure
            asyncio.TimeoutError: On timeout
        """
        if not self._session:
            raise RuntimeError("Fetcher must be used as async context manager")

        via: list[str] = []
        current = url

        while True:
            async with self._session.get(current, allow_redirects=False) as response:
                location = response.headers.get("Location")

                if response.status in REDIRECT_STATUSES and location:
                    candidate = urljoin(current, location)
                    via.append(current)

                    if len(via) > self.max_redirects:
                        raise TooManyRedirects(candidate, via)

                    if on_redirect is not None:
                        await on_redirect(candidate, list(via))

                    if self.rules and not self.rules.should_crawl(candidate):
                        raise DisallowedRedirect(candidate)

                    logger.debug("following_redirect", url=current, location=candidate)
                    current = candidate
                    continue

                response.raise_for_status()
                body = await response.read()

                logger.info(
                    "fetched_url",
                    url=current,
                    status=response.status,
                    size=len(body),
                )
                return FetchResult(
                    url=current,
                    status=response.status,
                    content_type=response.headers.get("Content-Type", ""),
                    body=body,
                )
