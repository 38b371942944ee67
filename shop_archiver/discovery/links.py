"""
Hyperlink extraction for discovery.

Uses BeautifulSoup to collect navigable links from a fetched page.
"""

from typing import List

from ..utils.html import make_soup
from ..utils.paths import resolve_url


# Elements whose href points at another document
LINK_SELECTORS = ("a[href]", "area[href]", "link[rel~=next][href]", "link[rel~=prev][href]")


def extract_links(html: str, page_url: str) -> List[str]:
    """
    Extract absolute http(s) links from a page, in document order.

    Args:
        html: Page HTML
        page_url: URL the page was fetched from (for relative links and <base>)

    Returns:
        De-duplicated list of absolute URLs without fragments
    """
    soup = make_soup(html)

    base_url = page_url
    base = soup.find("base", href=True)
    if base:
        base_url = resolve_url(base["href"], page_url) or page_url

    seen = set()
    links: List[str] = []
    for element in soup.select(", ".join(LINK_SELECTORS)):
        url = resolve_url(element.get("href", ""), base_url)
        if url and url not in seen:
            seen.add(url)
            links.append(url)
    return links
