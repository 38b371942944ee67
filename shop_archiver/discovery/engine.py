"""
Discovery engine: a prioritized waterfall of URL discovery strategies.

Strategies run cheapest and safest first; each one's output is unioned into
the candidate set and the waterfall stops as soon as the set reaches the
target count. A failing strategy is logged and skipped, never fatal.
"""

import asyncio
import os
from typing import Awaitable, Callable, Dict, List, Optional

from aiohttp import ClientError

from ..utils.config import ArchiverSettings
from ..utils.constants import CRAWL_DIR
from ..utils.log import get_logger, print_info
from .api import discover_from_api
from .bfs import CrawlResult, LinkCrawler, stop_file_for, write_crawl_outputs
from .id_enum import enumerate_ids
from .patterns import learn_product_patterns
from .sitemap import discover_from_sitemaps
from .targets import CaptureTarget, write_targets_file, write_urls_file


STRATEGIES = ("api", "sitemap", "patterns", "id-enum", "crawl")


class DiscoveryEngine:
    """
    Produces capture targets for one seed.

    Example:
        async with HttpClient() as client:
            engine = DiscoveryEngine(client, settings)
            targets = await engine.discover("https://shop.example.com/")
    """

    def __init__(
        self,
        client,
        settings: Optional[ArchiverSettings] = None,
        page_client=None,
        strategies: Optional[List[str]] = None,
        output_dir: Optional[str] = None
    ):
        """
        Args:
            client: HttpClient for API, sitemap, sampling and probe requests
            settings: Tunables (defaults when omitted)
            page_client: Client for the breadth-first crawl (defaults to client;
                a BrowserFetcher renders pages instead)
            strategies: Subset of STRATEGIES to run, in priority order
            output_dir: Run root; enables the crawl STOP file and diagnostics
        """
        self.client = client
        self.settings = settings or ArchiverSettings()
        self.page_client = page_client or client
        self.strategies = [s for s in STRATEGIES if strategies is None or s in strategies]
        self.output_dir = output_dir
        self.logger = get_logger("discovery")

        self.crawl_result: Optional[CrawlResult] = None
        self._targets: Dict[str, CaptureTarget] = {}
        self._sampled_html: List[str] = []

    async def discover(self, seed: str) -> List[CaptureTarget]:
        """
        Run the waterfall for a seed.

        Args:
            seed: Site home page (or any start page)

        Returns:
            Ordered, de-duplicated capture targets; the seed comes first
        """
        settings = self.settings
        self.normalizer = settings.normalizer()
        self.same_site = settings.same_site([seed])
        self.allow = settings.allow_pattern
        self.deny = settings.deny_pattern
        self._targets = {}
        self._sampled_html = []

        seed_key = self.normalizer.canonical(seed)
        if seed_key is None:
            raise ValueError(f"Invalid seed URL: {seed}")
        self._add([seed_key], source="seed", depth=0)

        runners: Dict[str, Callable[[str], Awaitable[None]]] = {
            "api": self._run_api,
            "sitemap": self._run_sitemap,
            "patterns": self._run_patterns,
            "id-enum": self._run_id_enum,
            "crawl": self._run_crawl,
        }

        for name in self.strategies:
            if len(self._targets) >= settings.target_count:
                self.logger.info(
                    f"Target count {settings.target_count} reached, skipping {name} and later strategies"
                )
                break
            before = len(self._targets)
            try:
                await runners[name](seed_key)
            except (ClientError, asyncio.TimeoutError, ValueError, OSError) as e:
                self.logger.warning(f"Strategy {name} failed: {e}")
                continue
            print_info(f"Discovery {name}: +{len(self._targets) - before} (total {len(self._targets)})")

        return list(self._targets.values())

    def _accept(self, url: str) -> Optional[str]:
        key = self.normalizer.canonical(url)
        if key is None or not self.same_site(key):
            return None
        if self.allow is not None and not self.allow.search(key):
            return None
        if self.deny is not None and self.deny.search(key):
            return None
        return key

    def _add(
        self,
        urls: List[str],
        source: str,
        depth: int = 1,
        discovered_from: Optional[str] = None
    ) -> int:
        added = 0
        for url in urls:
            key = self._accept(url)
            if key is None or key in self._targets:
                continue
            self._targets[key] = CaptureTarget.create(
                key, depth=depth, discovered_from=discovered_from, source=source
            )
            added += 1
        return added

    async def _run_api(self, seed: str) -> None:
        urls = await discover_from_api(self.client, seed, self.settings.api_max_items)
        self._add(urls, source="api", discovered_from=seed)

    async def _run_sitemap(self, seed: str) -> None:
        urls = await discover_from_sitemaps(self.client, seed, self.settings.sitemap_max_urls)
        self._add(urls, source="sitemap", discovered_from=seed)

    async def _run_patterns(self, seed: str) -> None:
        candidates, bodies = await learn_product_patterns(
            self.client, seed, self.settings.pattern_sample_size, same_site=self.same_site
        )
        self._sampled_html.extend(bodies)
        self._add(candidates, source="patterns", discovered_from=seed)

    async def _run_id_enum(self, seed: str) -> None:
        settings = self.settings
        if not self._sampled_html:
            response = await self.client.get(seed)
            if response is not None and response.ok:
                self._sampled_html.append(response.text)

        missing = settings.target_count - len(self._targets)
        urls = await enumerate_ids(
            self.client,
            seed,
            self._sampled_html,
            max_range=settings.id_max_range,
            id_range=settings.id_range_override,
            delay=settings.id_delay,
            probe=settings.id_probe,
            limit=missing if settings.id_probe else None
        )
        self._add(urls, source="id-enum", discovered_from=seed)

    async def _run_crawl(self, seed: str) -> None:
        settings = self.settings
        crawler = LinkCrawler(
            self.page_client,
            max_pages=settings.max_pages,
            max_depth=settings.max_depth,
            same_site=self.same_site,
            normalizer=self.normalizer,
            allow=self.allow,
            deny=self.deny,
            concurrency=settings.concurrency,
            stop_file=stop_file_for(self.output_dir) if self.output_dir else None
        )
        result = await crawler.crawl([seed])
        self.crawl_result = result
        for url in result.fetched:
            self._add(
                [url],
                source="crawl",
                depth=result.depths.get(url, 0),
                discovered_from=result.parents.get(url)
            )


def write_discovery_outputs(
    root: str,
    seed: str,
    targets: List[CaptureTarget],
    engine: Optional[DiscoveryEngine] = None
) -> str:
    """
    Persist discovery results under <root>/_crawl.

    urls.txt lists the targets in order, targets.json keeps their metadata;
    when the crawl strategy ran, its graph and report are written too.

    Returns:
        Path of urls.txt
    """
    crawl_dir = os.path.join(root, CRAWL_DIR)
    urls_path = os.path.join(crawl_dir, "urls.txt")

    if engine is not None and engine.crawl_result is not None:
        write_crawl_outputs(root, engine.crawl_result, [seed], engine.settings.echo())
    write_urls_file(urls_path, [t.url for t in targets])
    write_targets_file(os.path.join(crawl_dir, "targets.json"), targets)
    return urls_path
