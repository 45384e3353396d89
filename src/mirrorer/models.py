"""Data models for mirrorer."""

from datetime import datetime, timezone
from pydantic import BaseModel, Field

# Sitemap entries without a usable <lastmod> sort after everything else
EPOCH_SENTINEL = datetime(2000, 1, 1, tzinfo=timezone.utc)


class SitemapEntry(BaseModel):
    """A <url> from a sitemap urlset."""

    loc: str
    lastmod: datetime = EPOCH_SENTINEL


class FetchResult(BaseModel):
    """Final response of a crawl request, after any redirects."""

    url: str
    status: int = 200
    content_type: str = ""
    body: bytes = b""


class Page(BaseModel):
    """A page fetched for drift comparison."""

    body: str
    content_type: str = ""


class UrlHitCount(BaseModel):
    """Number of views a URL received."""

    url: str
    view_count: int = Field(ge=0)


class TopUrls(BaseModel):
    """The URLs selected for a drift check."""

    top_unsampled: list[UrlHitCount] = Field(default_factory=list)
    remaining_sampled: list[UrlHitCount] = Field(default_factory=list)


class DriftSummary(BaseModel):
    """Outcome of comparing live and mirror pages."""

    pages_compared: int = Field(default=0, ge=0)
    drifts_detected: int = Field(default=0, ge=0)
    errors: int = Field(default=0, ge=0)
