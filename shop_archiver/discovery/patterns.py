"""
Pattern learning: sample a few listing pages and keep links that look like
product detail pages.
"""

import re
from typing import Callable, List, Optional, Tuple
from urllib.parse import parse_qs, urljoin, urlsplit

from ..utils.log import get_logger
from .links import extract_links


# Well-known listing routes sampled in addition to the seed
SAMPLE_ROUTES = (
    "/index.php?route=information/sitemap",
    "/index.php?route=product/category",
)

LISTING_RE = re.compile(r"category|catalog|collections|shop|products|store", re.IGNORECASE)


def likely_product_url(url: str) -> bool:
    """
    Heuristic test for product detail URLs.

    A URL qualifies when its path mentions 'product', it carries a product_id
    parameter, an 'id' parameter with digits, or it is a query-less path at
    least two segments deep (SEO-style slugs).
    """
    parts = urlsplit(url)
    params = parse_qs(parts.query, keep_blank_values=True)

    if "product" in parts.path.lower():
        return True
    if "product_id" in params:
        return True
    if any(re.search(r"\d", value) for value in params.get("id", [])):
        return True
    segments = [s for s in parts.path.split("/") if s]
    return not parts.query and len(segments) >= 2


async def learn_product_patterns(
    client,
    seed: str,
    sample_size: int = 30,
    same_site: Optional[Callable[[str], bool]] = None
) -> Tuple[List[str], List[str]]:
    """
    Learn candidate product URLs from a bounded sample of pages.

    Args:
        client: HttpClient for page fetches
        seed: Site home page
        sample_size: Maximum number of pages fetched
        same_site: Predicate restricting kept links to the archived site

    Returns:
        Tuple of (candidate_urls, sampled_html_bodies); the bodies feed
        numeric-ID enumeration
    """
    logger = get_logger("discovery")
    keep = same_site or (lambda url: True)

    pool: List[str] = [seed] + [urljoin(seed, route) for route in SAMPLE_ROUTES]
    queued = set(pool)
    candidates: List[str] = []
    seen_candidates = set()
    bodies: List[str] = []
    fetched = 0

    while pool and fetched < sample_size:
        url = pool.pop(0)
        fetched += 1
        response = await client.get(url)
        if response is None or not response.ok or not response.is_html:
            continue
        html = response.text
        bodies.append(html)

        for link in extract_links(html, response.url):
            if not keep(link):
                continue
            if likely_product_url(link) and link not in seen_candidates:
                seen_candidates.add(link)
                candidates.append(link)
            parts = urlsplit(link)
            if LISTING_RE.search(f"{parts.path}?{parts.query}") and link not in queued and len(queued) < sample_size:
                queued.add(link)
                pool.append(link)

    logger.info(f"Pattern learning: {fetched} pages sampled, {len(candidates)} candidates")
    return candidates, bodies
