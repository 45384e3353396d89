"""Rules deciding which URLs may be fetched."""

import re
from typing import Optional
from urllib.parse import urlsplit
import structlog

logger = structlog.get_logger()


class URLFilter:
    """Filter URLs with allow and deny regular expressions."""

    def __init__(
        self,
        allow_patterns: Optional[list[str | re.Pattern]] = None,
        deny_patterns: Optional[list[str | re.Pattern]] = None,
    ):
        """
        Initialize URL filter.

        Args:
            allow_patterns: Regexes a URL must all match
            deny_patterns: Regexes a URL must not match

        Raises:
            re.error: If a pattern is not a valid regex
        """
        self.allow_patterns = [re.compile(p) for p in (allow_patterns or [])]
        self.deny_patterns = [re.compile(p) for p in (deny_patterns or [])]

    def should_crawl(self, url: str) -> bool:
        """
        Check if URL passes the allow and deny rules.

        Args:
            url: URL to check

        Returns:
            True if URL should be crawled, False otherwise
        """
        for pattern in self.deny_patterns:
            if pattern.search(url):
                logger.debug("url_filtered_deny", url=url, pattern=pattern.pattern)
                return False

        for pattern in self.allow_patterns:
            if not pattern.search(url):
                logger.debug("url_filtered_allow", url=url, pattern=pattern.pattern)
                return False

        return True


class DomainFilter:
    """Filter URLs based on host."""

    def __init__(self, allowed_domains: Optional[list[str]] = None):
        """
        Initialize domain filter.

        Args:
            allowed_domains: Hosts that may be fetched; empty allows every host
        """
        self.allowed_domains = {d.lower() for d in (allowed_domains or [])}

    def should_crawl(self, url: str) -> bool:
        """Check if URL's host is in the allow list."""
        if not self.allowed_domains:
            return True

        host = urlsplit(url).hostname or ""
        if host in self.allowed_domains:
            return True

        logger.debug("url_filtered_domain", url=url, domain=host)
        return False


class CombinedFilter:
    """The full fetch rule set: host allow list plus URL regexes."""

    def __init__(
        self,
        url_filter: Optional[URLFilter] = None,
        domain_filter: Optional[DomainFilter] = None,
    ):
        self.url_filter = url_filter
        self.domain_filter = domain_filter

    def should_crawl(self, url: str) -> bool:
        """
        Check if URL should be crawled.

        Args:
            url: URL to check

        Returns:
            True if URL passes all filters
        """
        if self.domain_filter and not self.domain_filter.should_crawl(url):
            return False

        if self.url_filter and not self.url_filter.should_crawl(url):
            return False

        return True

    @classmethod
    def from_config(
        cls,
        allowed_domains: Optional[list[str]] = None,
        allow_patterns: Optional[list[str | re.Pattern]] = None,
        deny_patterns: Optional[list[str | re.Pattern]] = None,
    ) -> "CombinedFilter":
        """
        Create combined filter from configuration.

        Args:
            allowed_domains: Allowed hosts
            allow_patterns: URL regexes that must all match
            deny_patterns: URL regexes that must not match

        Returns:
            CombinedFilter instance
        """
        url_filter = None
        if allow_patterns or deny_patterns:
            url_filter = URLFilter(allow_patterns=allow_patterns, deny_patterns=deny_patterns)

        domain_filter = None
        if allowed_domains:
            domain_filter = DomainFilter(allowed_domains=allowed_domains)

        return cls(url_filter=url_filter, domain_filter=domain_filter)
