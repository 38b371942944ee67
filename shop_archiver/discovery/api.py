"""
Structured API discovery.

Detects a public JSON product-listing API by convention and pages through it
collecting canonical product URLs.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional
from urllib.parse import urljoin

from ..utils.log import get_logger


@dataclass(frozen=True)
class ProductApi:
    """A known listing endpoint and how to read item URLs out of one page."""

    name: str
    path: str
    per_page: int
    extract: Callable[[object, str], Optional[List[str]]]

    def page_url(self, seed: str, page: int) -> str:
        return urljoin(seed, self.path.format(per_page=self.per_page, page=page))


def _woocommerce_items(payload, seed: str) -> Optional[List[str]]:
    if not isinstance(payload, list):
        return None
    return [item["permalink"] for item in payload if isinstance(item, dict) and item.get("permalink")]


def _shopify_items(payload, seed: str) -> Optional[List[str]]:
    if not isinstance(payload, dict) or not isinstance(payload.get("products"), list):
        return None
    return [
        urljoin(seed, f"/products/{item['handle']}")
        for item in payload["products"]
        if isinstance(item, dict) and item.get("handle")
    ]


KNOWN_APIS = (
    ProductApi(
        name="woocommerce-store",
        path="/wp-json/wc/store/v1/products?per_page={per_page}&page={page}",
        per_page=100,
        extract=_woocommerce_items,
    ),
    ProductApi(
        name="shopify",
        path="/products.json?limit={per_page}&page={page}",
        per_page=250,
        extract=_shopify_items,
    ),
)

# Safety stop independent of the item cap
MAX_API_PAGES = 200


async def _read_page(client, url: str, api: ProductApi, seed: str) -> Optional[List[str]]:
    response = await client.get(url, headers={"Accept": "application/json"})
    if response is None or response.status != 200:
        return None
    try:
        payload = response.json()
    except ValueError:
        return None
    return api.extract(payload, seed)


async def discover_from_api(client, seed: str, max_items: int = 2000) -> List[str]:
    """
    Page through the first listing API the site answers.

    Args:
        client: HttpClient used for API requests
        seed: Site home page
        max_items: Cap on collected item URLs

    Returns:
        Item URLs, empty when no known API answered
    """
    logger = get_logger("discovery")

    for api in KNOWN_APIS:
        first = await _read_page(client, api.page_url(seed, 1), api, seed)
        if first is None:
            logger.debug(f"No {api.name} API at {seed}")
            continue

        urls: List[str] = []
        seen = set()
        items, page = first, 1
        while items and len(urls) < max_items and page <= MAX_API_PAGES:
            before = len(urls)
            for url in items:
                if url not in seen and len(urls) < max_items:
                    seen.add(url)
                    urls.append(url)
            page += 1
            # endpoints that ignore the page parameter repeat page one
            if len(urls) == before:
                break
            items = await _read_page(client, api.page_url(seed, page), api, seed)

        logger.info(f"{api.name} API: {len(urls)} items over {page - 1} page(s)")
        return urls

    return []
