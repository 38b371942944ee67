"""
Safe numeric-ID enumeration.

Last-resort discovery for script-routed shops: derive a product ID range from
IDs seen in sampled HTML and synthesize detail URLs across it. The range is
hard-capped and requests (when probing) are paced.
"""

import asyncio
import re
from typing import Iterable, List, Optional, Set, Tuple
from urllib.parse import urlencode, urljoin

from ..utils.log import get_logger


ID_PARAM_RE = re.compile(r"(?:\?|&|&amp;)(product_id|id)=(\d{1,8})", re.IGNORECASE)
ID_ATTR_RE = re.compile(
    r"(?:product_id|productId|data-product-id|data-id|product-id)[^0-9]{0,12}(\d{1,8})",
    re.IGNORECASE
)

PAD_BELOW = 100
PAD_ABOVE = 200


def extract_ids(html: str) -> Tuple[Set[int], str]:
    """
    Find product IDs mentioned in a page.

    Returns:
        Tuple of (ids, parameter_name); the parameter is 'id' only when the
        page links with ?id= and never with ?product_id=
    """
    ids: Set[int] = set()
    params: Set[str] = set()
    for match in ID_PARAM_RE.finditer(html):
        params.add(match.group(1).lower())
        ids.add(int(match.group(2)))
    for match in ID_ATTR_RE.finditer(html):
        ids.add(int(match.group(1)))
    param = "id" if params == {"id"} else "product_id"
    return ids, param


def derive_range(ids: Iterable[int], max_range: int) -> Optional[Tuple[int, int]]:
    """
    Padded range around the observed IDs, clipped to max_range IDs.

    Args:
        ids: Observed IDs
        max_range: Hard cap on the number of IDs in the range

    Returns:
        Inclusive (start, end) or None when nothing was observed
    """
    values = sorted(i for i in ids if i > 0)
    if not values:
        return None
    start = max(1, values[0] - PAD_BELOW)
    end = values[-1] + PAD_ABOVE
    return clamp_range((start, end), max_range)


def clamp_range(id_range: Tuple[int, int], max_range: int) -> Tuple[int, int]:
    start, end = id_range
    if end - start + 1 > max_range:
        end = start + max_range - 1
    return start, end


def build_product_urls(seed: str, id_range: Tuple[int, int], param: str = "product_id") -> List[str]:
    """Detail-page URLs for every ID in the inclusive range, in ascending order."""
    base = urljoin(seed, "/index.php")
    start, end = id_range
    return [
        f"{base}?{urlencode([('route', 'product/product'), (param, str(i))])}"
        for i in range(start, end + 1)
    ]


async def enumerate_ids(
    client,
    seed: str,
    sampled_html: Iterable[str],
    max_range: int,
    id_range: Optional[Tuple[int, int]] = None,
    delay: float = 0.25,
    probe: bool = False,
    limit: Optional[int] = None
) -> List[str]:
    """
    Synthesize (and optionally verify) product URLs from numeric IDs.

    Args:
        client: HttpClient used when probing
        seed: Site home page
        sampled_html: Pages scanned for IDs
        max_range: Hard cap on IDs considered
        id_range: Explicit range overriding the derived one
        delay: Seconds between probe requests
        probe: Keep only URLs that answer 200
        limit: Stop once this many URLs are kept

    Returns:
        Candidate product URLs
    """
    logger = get_logger("discovery")

    ids: Set[int] = set()
    param = "product_id"
    for html in sampled_html:
        found, page_param = extract_ids(html)
        ids |= found
        if page_param == "id" and found:
            param = "id"

    if id_range is not None:
        chosen = clamp_range(id_range, max_range)
    else:
        chosen = derive_range(ids, max_range)
    if chosen is None:
        logger.info("ID enumeration: no IDs observed, skipped")
        return []

    urls = build_product_urls(seed, chosen, param)
    logger.info(f"ID enumeration: range {chosen[0]}-{chosen[1]} ({len(urls)} URLs, probe={probe})")
    if not probe:
        return urls[:limit] if limit else urls

    kept: List[str] = []
    for url in urls:
        if limit and len(kept) >= limit:
            break
        if await client.probe(url):
            kept.append(url)
        if delay > 0:
            await asyncio.sleep(delay)
    return kept
