"""
Sitemap discovery.

Reads Sitemap directives from robots.txt (falling back to the conventional
locations), then expands sitemap indexes recursively and collects page URLs.
"""

import gzip
from typing import List, Set
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

from ..utils.log import get_logger
from ..utils.robots import RobotsFile


FALLBACK_SITEMAPS = ("/sitemap.xml", "/sitemap_index.xml")
GZIP_MAGIC = b"\x1f\x8b"

# Nesting deeper than this is treated as a loop
MAX_SITEMAP_NESTING = 4


def _is_sitemap_url(url: str) -> bool:
    path = urlsplit(url).path.lower()
    return path.endswith(".xml") or path.endswith(".xml.gz")


def parse_sitemap(body: bytes, base_url: str):
    """
    Parse one sitemap document.

    Args:
        body: Raw (possibly gzip-compressed) sitemap bytes
        base_url: URL of the sitemap, for relative <loc> values

    Returns:
        Tuple of (page_urls, nested_sitemap_urls)
    """
    if body[:2] == GZIP_MAGIC:
        body = gzip.decompress(body)

    soup = BeautifulSoup(body, "xml")
    pages: List[str] = []
    nested: List[str] = []
    is_index = soup.find("sitemapindex") is not None

    for loc in soup.find_all("loc"):
        raw = (loc.get_text() or "").strip()
        if not raw:
            continue
        url = urljoin(base_url, raw)
        if is_index or loc.parent.name == "sitemap" or _is_sitemap_url(url):
            nested.append(url)
        else:
            pages.append(url)
    return pages, nested


async def discover_from_sitemaps(client, seed: str, max_urls: int = 5000) -> List[str]:
    """
    Collect page URLs from the site's sitemaps.

    Args:
        client: HttpClient used for robots.txt and sitemap requests
        seed: Any URL of the site
        max_urls: Cap on collected page URLs

    Returns:
        Page URLs in sitemap order, de-duplicated, at most max_urls
    """
    logger = get_logger("discovery")

    robots = RobotsFile.for_site(seed)
    await robots.load(client)
    queue = [(url, 0) for url in robots.sitemaps]
    if not queue:
        queue = [(urljoin(seed, path), 0) for path in FALLBACK_SITEMAPS]

    visited: Set[str] = set()
    seen: Set[str] = set()
    urls: List[str] = []

    while queue and len(urls) < max_urls:
        sitemap_url, level = queue.pop(0)
        if sitemap_url in visited or level > MAX_SITEMAP_NESTING:
            continue
        visited.add(sitemap_url)

        response = await client.get(sitemap_url)
        if response is None or response.status != 200:
            continue
        try:
            pages, nested = parse_sitemap(response.body, response.url)
        except (OSError, EOFError, ValueError) as e:
            logger.warning(f"Unreadable sitemap {sitemap_url}: {e}")
            continue

        for page in pages:
            if len(urls) >= max_urls:
                break
            if page not in seen:
                seen.add(page)
                urls.append(page)
        queue.extend((url, level + 1) for url in nested)
        logger.debug(f"Sitemap {sitemap_url}: {len(pages)} pages, {len(nested)} nested")

    logger.info(f"Sitemaps: {len(visited)} fetched, {len(urls)} page URLs")
    return urls
