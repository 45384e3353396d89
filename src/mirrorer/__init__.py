"""
mirrorer - keeps a static mirror of a website.

Crawls a site into a local directory and an S3 bucket, and checks the
mirror for drift against the live site.
"""

__version__ = "0.1.0"

from mirrorer.crawler import Crawler
from mirrorer.config import DriftCheckConfig, MirrorConfig
from mirrorer.drift_checker import DriftChecker
from mirrorer.models import DriftSummary, Page, SitemapEntry, TopUrls, UrlHitCount
from mirrorer.storage import LocalFileStorage, S3Uploader

__all__ = [
    "Crawler",
    "DriftChecker",
    "DriftCheckConfig",
    "DriftSummary",
    "LocalFileStorage",
    "MirrorConfig",
    "Page",
    "S3Uploader",
    "SitemapEntry",
    "TopUrls",
    "UrlHitCount",
]
