"""
Page rewriter for converting captured pages to the offline addressing scheme.

Pure transforms over the serialized DOM: same-site links become canonical
offline directory hrefs and references to captured assets become paths
relative to the page directory. No browser is involved.
"""

import re
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

from bs4 import BeautifulSoup

from ..utils.html import make_soup
from ..utils.log import get_logger
from ..utils.paths import (
    SKIP_SCHEMES,
    UrlNormalizer,
    has_file_extension,
    offline_href,
    relative_href,
    resolve_url,
)


# Elements and attributes that may reference a captured asset
ASSET_ATTRIBUTES = {
    "link": ("href",),
    "script": ("src",),
    "img": ("src", "data-src", "srcset", "data-srcset"),
    "source": ("src", "srcset"),
    "video": ("src", "poster"),
    "audio": ("src",),
    "track": ("src",),
    "input": ("src",),
}

CSS_URL_PATTERN = re.compile(r'url\s*\(\s*["\']?([^"\')\s]+)["\']?\s*\)')
CSS_IMPORT_PATTERN = re.compile(r'@import\s+["\']([^"\']+)["\']')


class PageRewriter:
    """
    Rewrites one captured page.

    Args:
        same_site: Predicate for links that point into the archive
        normalizer: URL normalizer shared with discovery and capture
    """

    def __init__(self, same_site: Callable[[str], bool], normalizer: Optional[UrlNormalizer] = None):
        self.same_site = same_site
        self.normalizer = normalizer or UrlNormalizer()
        self.logger = get_logger("rewriter")

    def rewrite(
        self,
        html: str,
        page_url: str,
        page_dir: str,
        asset_map: Dict[str, str],
        mobile: bool = False
    ) -> str:
        """
        Rewrite links and asset references of a page.

        Args:
            html: Serialized DOM after stabilization
            page_url: Final URL of the page (base for relative references)
            page_dir: Run-relative directory the page is written to
            asset_map: Absolute asset URL -> run-relative stored path
            mobile: Add a viewport meta tag when the page has none

        Returns:
            Rewritten HTML
        """
        soup = make_soup(html)

        base_url = page_url
        base = soup.find("base", href=True)
        if base is not None:
            base_url = resolve_url(base["href"], page_url) or page_url

        rewrite_internal_links(soup, base_url, self.same_site, self.normalizer)
        rewrite_asset_references(soup, base_url, page_dir, asset_map)

        # <base> would redirect every relative offline reference
        for tag in soup.find_all("base"):
            tag.decompose()

        if mobile:
            ensure_viewport_meta(soup)

        return str(soup)


def internal_href(url: str, normalizer: UrlNormalizer) -> Optional[str]:
    """
    Offline href for a same-site link.

    Document-like URLs (no file extension, or any query) point at their
    captured directory; direct files keep their origin-relative path.
    """
    parts = urlsplit(url)
    fragment = parts.fragment
    if not has_file_extension(parts.path) or parts.query:
        local_path = normalizer.local_path(url)
        if local_path is None:
            return None
        return offline_href(local_path, fragment)
    return (parts.path or "/") + (f"#{fragment}" if fragment else "")


def rewrite_internal_links(
    soup: BeautifulSoup,
    base_url: str,
    same_site: Callable[[str], bool],
    normalizer: UrlNormalizer
) -> int:
    """Rewrite a/area hrefs of same-site links; returns how many changed."""
    changed = 0
    for anchor in soup.find_all(["a", "area"], href=True):
        href = anchor.get("href", "").strip()
        if not href or href.lower().startswith(SKIP_SCHEMES):
            continue

        absolute = resolve_url(href, base_url)
        if absolute is None or not same_site(absolute):
            continue
        fragment = urlsplit(href).fragment
        target = internal_href(absolute + (f"#{fragment}" if fragment else ""), normalizer)
        if target is not None and target != href:
            anchor["href"] = target
            changed += 1
    return changed


def _local_reference(
    value: str,
    base_url: str,
    page_dir: str,
    asset_map: Dict[str, str]
) -> Optional[str]:
    value = value.strip()
    if not value or value.lower().startswith(SKIP_SCHEMES):
        return None
    absolute = resolve_url(value, base_url)
    if absolute is None:
        return None
    stored = asset_map.get(absolute)
    if stored is None:
        return None
    return relative_href(page_dir, stored)


def split_srcset(srcset: str) -> List[Tuple[str, str]]:
    """
    Split a srcset value into (url, descriptor) candidates.

    A candidate URL runs up to the next whitespace and may itself contain
    commas (e.g. 'w_100,h_100' image transforms); only trailing commas end it.
    """
    candidates = []
    pos, end = 0, len(srcset)
    while pos < end:
        while pos < end and (srcset[pos].isspace() or srcset[pos] == ","):
            pos += 1
        start = pos
        while pos < end and not srcset[pos].isspace():
            pos += 1
        url = srcset[start:pos]
        descriptor = ""
        if url.endswith(","):
            url = url.rstrip(",")
        else:
            comma = srcset.find(",", pos)
            if comma == -1:
                comma = end
            descriptor = srcset[pos:comma].strip()
            pos = comma + 1
        if url:
            candidates.append((url, descriptor))
    return candidates


def rewrite_srcset(srcset: str, base_url: str, page_dir: str, asset_map: Dict[str, str]) -> str:
    """Rewrite the URL of every srcset candidate, keeping descriptors."""
    new_parts = []
    for url, descriptor in split_srcset(srcset):
        local = _local_reference(url, base_url, page_dir, asset_map)
        if local:
            url = local
        new_parts.append(f"{url} {descriptor}" if descriptor else url)
    return ", ".join(new_parts)


def rewrite_css_urls(css: str, base_url: str, page_dir: str, asset_map: Dict[str, str]) -> str:
    """Rewrite url() references in CSS text."""
    def replace_url(match):
        local = _local_reference(match.group(1), base_url, page_dir, asset_map)
        if local:
            return f'url("{local}")'
        return match.group(0)

    return CSS_URL_PATTERN.sub(replace_url, css)


def rewrite_stylesheet(css: str, css_url: str, locate: Callable[[str], str]) -> str:
    """
    Rewrite url() and @import references of a stylesheet stored under assets/.

    Relative references are resolved against the stylesheet's source URL and
    replaced by whatever locate() returns for the absolute URL.
    """
    def replace(match, template):
        absolute = resolve_url(match.group(1), css_url)
        if absolute is None:
            return match.group(0)
        return template.format(locate(absolute))

    css = CSS_URL_PATTERN.sub(lambda m: replace(m, 'url("{}")'), css)
    return CSS_IMPORT_PATTERN.sub(lambda m: replace(m, '@import "{}"'), css)


def rewrite_asset_references(
    soup: BeautifulSoup,
    base_url: str,
    page_dir: str,
    asset_map: Dict[str, str]
) -> int:
    """
    Point asset references at their stored copies.

    References to anything not in asset_map are left untouched, so an asset
    that was skipped keeps its remote URL.

    Returns:
        Number of attributes changed
    """
    changed = 0
    if not asset_map:
        return changed

    for tag_name, attributes in ASSET_ATTRIBUTES.items():
        for tag in soup.find_all(tag_name):
            for attr in attributes:
                value = tag.get(attr)
                if not value or not isinstance(value, str):
                    continue
                if attr.endswith("srcset"):
                    new_value = rewrite_srcset(value, base_url, page_dir, asset_map)
                else:
                    new_value = _local_reference(value, base_url, page_dir, asset_map)
                if new_value and new_value != value:
                    tag[attr] = new_value
                    changed += 1

    for elem in soup.find_all(style=True):
        style = elem.get("style", "")
        new_style = rewrite_css_urls(style, base_url, page_dir, asset_map)
        if new_style != style:
            elem["style"] = new_style
            changed += 1

    for style in soup.find_all("style"):
        if style.string:
            new_css = rewrite_css_urls(style.string, base_url, page_dir, asset_map)
            if new_css != style.string:
                style.string = new_css
                changed += 1

    return changed


def ensure_viewport_meta(soup: BeautifulSoup) -> bool:
    """Insert a responsive viewport meta tag if the page has none."""
    if soup.find("meta", attrs={"name": "viewport"}) is not None:
        return False
    meta = soup.new_tag("meta", attrs={
        "name": "viewport",
        "content": "width=device-width,initial-scale=1",
    })
    head = soup.head
    if head is None:
        if soup.html is None:
            return False
        head = soup.new_tag("head")
        soup.html.insert(0, head)
    head.insert(0, meta)
    return True
