"""
Same-site policy for discovery and capture.

Decides whether a URL belongs to the archived site. Registrable domains come
from the public suffix list bundled with tldextract.
"""

import re
from typing import Iterable, Optional, Pattern, Set
from urllib.parse import urlsplit

import tldextract


SAME_SITE_MODES = ("exact", "subdomains", "etld")

# Bundled suffix snapshot only, private entries such as myshopify.com included
_extract = tldextract.TLDExtract(suffix_list_urls=(), include_psl_private_domains=True)


def get_host(url: str) -> str:
    """Return the lower-cased hostname of a URL, or '' if it has none."""
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def get_origin(url: str) -> str:
    """Return scheme://host[:port] of a URL."""
    parts = urlsplit(url)
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}"


def registrable_domain(hostname: str) -> str:
    """
    Get the registrable domain (eTLD+1) of a hostname.

    Args:
        hostname: Hostname such as 'shop.example.co.uk'

    Returns:
        Registrable domain such as 'example.co.uk'
    """
    host = (hostname or "").lower().rstrip(".")
    ext = _extract(host)
    if not ext.domain or not ext.suffix:
        # localhost, IP addresses and bare suffixes
        return host
    return f"{ext.domain}.{ext.suffix}"


def strip_www(host: str) -> str:
    """Drop a leading 'www.' or 'm.' label."""
    return re.sub(r"^(www|m)\.", "", (host or "").lower())


class SameSitePolicy:
    """
    Same-site membership test built from one or more seed URLs.

    Modes:
        exact: same origin as a seed
        subdomains: same host as a seed, or any subdomain of it
        etld: same registrable domain as a seed
    """

    def __init__(
        self,
        seeds: Iterable[str],
        mode: str = "subdomains",
        extra_hosts: Optional[Pattern] = None
    ):
        mode = (mode or "subdomains").lower()
        if mode not in SAME_SITE_MODES:
            raise ValueError(f"Unknown same-site mode: {mode}")

        self.mode = mode
        self.extra_hosts = extra_hosts
        self.origins: Set[str] = set()
        self.hosts: Set[str] = set()
        self.apexes: Set[str] = set()

        for seed in seeds:
            host = get_host(seed)
            if not host:
                continue
            self.origins.add(get_origin(seed))
            # www. and m. variants of a seed count as the seed itself
            self.hosts.add(strip_www(host))
            self.apexes.add(registrable_domain(host))

    def is_same_site(self, url: str) -> bool:
        host = get_host(url)
        if not host:
            return False
        if self.extra_hosts is not None and self.extra_hosts.search(host):
            return True

        if self.mode == "exact":
            return get_origin(url) in self.origins

        if self.mode == "subdomains":
            bare = strip_www(host)
            for seed_host in self.hosts:
                if bare == seed_host or bare.endswith("." + seed_host):
                    return True
            return False

        return registrable_domain(host) in self.apexes

    __call__ = is_same_site
