"""
Breadth-first link crawler.

Fetches pages level by level from the seeds, within a page budget and a depth
limit, and records what it discovered versus what it actually fetched. Only
fetched pages become capture seeds; the rest is kept for diagnostics.
"""

import asyncio
import json
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Pattern, Set

from ..utils.constants import CRAWL_DIR, STOP_FILE
from ..utils.log import get_logger
from ..utils.paths import UrlNormalizer, ensure_dir, write_text_atomic
from .links import extract_links
from .targets import write_urls_file


@dataclass
class CrawlResult:
    """Results of a breadth-first crawl."""

    fetched: List[str] = field(default_factory=list)
    discovered: List[str] = field(default_factory=list)
    depths: Dict[str, int] = field(default_factory=dict)
    parents: Dict[str, str] = field(default_factory=dict)
    edges: List[Dict[str, str]] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)
    stopped_early: bool = False
    duration_seconds: float = 0.0


class LinkCrawler:
    """
    Breadth-first crawler over an injected page client.

    The client needs one coroutine, get(url), returning an object with
    status, url, text and is_html attributes (or None on transport failure).
    """

    def __init__(
        self,
        client,
        max_pages: int = 200,
        max_depth: int = 3,
        same_site: Optional[Callable[[str], bool]] = None,
        normalizer: Optional[UrlNormalizer] = None,
        allow: Optional[Pattern] = None,
        deny: Optional[Pattern] = None,
        concurrency: int = 1,
        stop_file: Optional[str] = None
    ):
        """
        Initialize the crawler.

        Args:
            client: Page client (HttpClient or BrowserFetcher)
            max_pages: Total pages actually fetched, at most
            max_depth: Link hops from a seed (0 = seeds only)
            same_site: Predicate for links that may be followed
            normalizer: URL canonicalizer (default sorted-query policy)
            allow: Only keep URLs matching this pattern
            deny: Drop URLs matching this pattern
            concurrency: Pages fetched in parallel
            stop_file: Path whose existence stops the crawl between pages
        """
        self.client = client
        self.max_pages = max_pages
        self.max_depth = max_depth
        self.same_site = same_site
        self.normalizer = normalizer or UrlNormalizer()
        self.allow = allow
        self.deny = deny
        self.concurrency = max(1, concurrency)
        self.stop_file = stop_file
        self.logger = get_logger("crawl")

        self._seen: Set[str] = set()
        self._reserved = 0
        self._queue: Optional[asyncio.Queue] = None
        self._result = CrawlResult()

    def normalize(self, url: str) -> Optional[str]:
        """Canonical key of a URL if the crawl may follow it, else None."""
        key = self.normalizer.canonical(url)
        if key is None:
            return None
        if self.same_site is not None and not self.same_site(key):
            return None
        if self.allow is not None and not self.allow.search(key):
            return None
        if self.deny is not None and self.deny.search(key):
            return None
        return key

    def stop_requested(self) -> bool:
        return bool(self.stop_file) and os.path.exists(self.stop_file)

    async def crawl(self, seeds: List[str]) -> CrawlResult:
        """
        Crawl from the seeds.

        Args:
            seeds: Start URLs (depth 0)

        Returns:
            CrawlResult with fetched pages in fetch order
        """
        start_time = time.time()
        self._queue = asyncio.Queue()

        for seed in seeds:
            key = self.normalize(seed)
            if key and key not in self._seen:
                self._discover(key, 0)
                self._queue.put_nowait((key, 0))

        workers = [asyncio.ensure_future(self._worker()) for _ in range(self.concurrency)]
        try:
            await self._queue.join()
        finally:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        self._result.duration_seconds = time.time() - start_time
        self.logger.info(
            f"Crawl done: discovered={len(self._result.discovered)} "
            f"fetched={len(self._result.fetched)}"
            f"{' (stopped)' if self._result.stopped_early else ''}"
        )
        return self._result

    def _discover(self, key: str, depth: int, parent: Optional[str] = None) -> None:
        self._seen.add(key)
        self._result.discovered.append(key)
        self._result.depths[key] = depth
        if parent:
            self._result.parents[key] = parent

    async def _worker(self) -> None:
        while True:
            url, depth = await self._queue.get()
            try:
                if self.stop_requested():
                    self._result.stopped_early = True
                    continue
                if self._reserved >= self.max_pages or depth > self.max_depth:
                    continue
                self._reserved += 1
                if not await self._visit(url, depth):
                    self._reserved -= 1
            finally:
                self._queue.task_done()

    async def _visit(self, url: str, depth: int) -> bool:
        response = await self.client.get(url)
        if response is None or response.status >= 400:
            status = response.status if response is not None else "no response"
            self.logger.warning(f"[crawl] d={depth} failed {url} ({status})")
            self._result.errors.append({"url": url, "error": str(status)})
            return False
        if not response.is_html:
            self.logger.debug(f"[crawl] skipping non-HTML {url}")
            return False

        self._result.fetched.append(url)
        fetched_count = len(self._result.fetched)

        links = 0
        # expand only while the budget and the depth still allow another hop
        if fetched_count < self.max_pages and depth < self.max_depth:
            for link in extract_links(response.text, response.url):
                key = self.normalize(link)
                if key is None:
                    continue
                links += 1
                self._result.edges.append({"from": url, "to": key})
                if key in self._seen:
                    continue
                self._discover(key, depth + 1, url)
                if depth + 1 <= self.max_depth and self._reserved < self.max_pages:
                    self._queue.put_nowait((key, depth + 1))

        self.logger.info(f"[crawl] d={depth} ok {url} links={links}")
        return True


def write_crawl_outputs(
    root: str,
    result: CrawlResult,
    seeds: List[str],
    settings_echo: Optional[Dict[str, Any]] = None
) -> str:
    """
    Write the _crawl/ diagnostics of a crawl.

    Files: urls.txt (fetched pages in fetch order), discovered-debug.txt,
    graph.json and report.json.

    Returns:
        Path of the _crawl directory
    """
    crawl_dir = os.path.join(root, CRAWL_DIR)
    ensure_dir(crawl_dir)

    fetched = set(result.fetched)
    write_urls_file(os.path.join(crawl_dir, "urls.txt"), result.fetched)
    write_urls_file(os.path.join(crawl_dir, "discovered-debug.txt"), result.discovered)

    graph = {
        "nodes": [
            {"url": url, "depth": result.depths.get(url), "crawled": url in fetched}
            for url in result.discovered
        ],
        "edges": result.edges,
    }
    write_text_atomic(os.path.join(crawl_dir, "graph.json"), json.dumps(graph, indent=2))

    report = {
        "startURLs": seeds,
        "pagesCrawled": len(result.fetched),
        "seedsForArchive": len(result.fetched),
        "totalDiscovered": len(result.discovered),
        "errors": len(result.errors),
        "stoppedEarly": result.stopped_early,
        "durationSeconds": round(result.duration_seconds, 3),
        "config": settings_echo or {},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    write_text_atomic(os.path.join(crawl_dir, "report.json"), json.dumps(report, indent=2, default=str))
    return crawl_dir


def stop_file_for(root: str) -> str:
    return os.path.join(root, CRAWL_DIR, STOP_FILE)
