"""
Discovery module for the shop archiver.

Finds capture targets with a waterfall of strategies: structured product
APIs, sitemaps, learned URL patterns, numeric ID enumeration and a
breadth-first link crawl.
"""

from .bfs import CrawlResult, LinkCrawler
from .engine import DiscoveryEngine
from .http import HttpClient
from .targets import CaptureTarget

__all__ = [
    "CrawlResult",
    "LinkCrawler",
    "DiscoveryEngine",
    "HttpClient",
    "CaptureTarget",
]
