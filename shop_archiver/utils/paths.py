"""
URL normalization and run-path utilities for the shop archiver.

Turns a URL into a de-duplication key and into the filesystem-safe local path
its capture lives under, and provides the file helpers the run writers share.
"""

import hashlib
import os
import posixpath
import re
import tempfile
from dataclasses import dataclass
from typing import Iterable, List, Optional
from urllib.parse import parse_qsl, unquote, urlencode, urljoin, urlsplit, urlunsplit


QUERY_MODES = ("sort", "strip", "allow")

# Slugs longer than this are truncated and suffixed with a hash
MAX_SLUG_LENGTH = 120
SLUG_KEEP = 100

SKIP_SCHEMES = ("javascript:", "data:", "mailto:", "tel:", "blob:", "about:", "#")

_UNSAFE_CHARS = re.compile(r'[<>:"|?*\\\x00-\x1f]')
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_FILE_EXT = re.compile(r"\.[a-z0-9]{2,6}$", re.IGNORECASE)
_DEFAULT_PORTS = {"http": 80, "https": 443}


def sha16(text: str) -> str:
    """First 16 hex characters of the SHA-1 of a string."""
    return hashlib.sha1(text.encode("utf-8")).hexdigest()[:16]


def resolve_url(href: str, base_url: Optional[str] = None) -> Optional[str]:
    """
    Resolve a reference found in a page to an absolute http(s) URL.

    Args:
        href: Raw attribute value
        base_url: URL of the page containing the reference

    Returns:
        Absolute URL without fragment, or None for non-navigable references
    """
    if not href:
        return None
    href = href.strip()
    if not href or href.lower().startswith(SKIP_SCHEMES):
        return None

    try:
        absolute = urljoin(base_url, href) if base_url else href
        parts = urlsplit(absolute)
    except ValueError:
        return None

    if parts.scheme.lower() not in ("http", "https") or not parts.netloc:
        return None
    return urlunsplit((parts.scheme.lower(), parts.netloc, parts.path or "/", parts.query, ""))


def slugify_query(query: str) -> str:
    """
    Deterministic filesystem-safe slug of a query string.

    Pairs are sorted by key then value, lower-cased, non-alphanumeric runs
    collapse to '_', pairs join with '__'. Overlong slugs are cut and hashed.

    Args:
        query: Raw query string without the leading '?'

    Returns:
        Slug such as 'page_2' or '' when the query carries nothing
    """
    pairs = sorted(parse_qsl(query or "", keep_blank_values=True))
    parts = []
    for key, value in pairs:
        kk = _NON_ALNUM.sub("_", key.lower()).strip("_")
        vv = _NON_ALNUM.sub("_", value.lower()).strip("_")
        part = kk + ("_" + vv if vv else "")
        if part:
            parts.append(part)
    if not parts:
        return ""

    slug = "__".join(parts)
    if len(slug) > MAX_SLUG_LENGTH:
        slug = slug[:SLUG_KEEP] + "__" + sha16(slug)
    return slug


def safe_segments(path: str) -> List[str]:
    """Filesystem-safe path segments; '.' and '..' never survive."""
    segments = []
    for segment in unquote(path).split("/"):
        if not segment:
            continue
        if segment in (".", ".."):
            segment = "_"
        segments.append(_UNSAFE_CHARS.sub("_", segment))
    return segments


@dataclass(frozen=True)
class NormalizedUrl:
    """Canonical forms of one URL."""

    url: str
    key: str
    local_path: str


class UrlNormalizer:
    """
    Canonicalizes URLs under one query policy.

    Query modes:
        sort: keep every parameter, in a canonical sorted order
        strip: drop the query entirely
        allow: keep only the parameters named in keep_params (sorted)
    """

    def __init__(self, query_mode: str = "sort", keep_params: Iterable[str] = ()):
        if query_mode not in QUERY_MODES:
            raise ValueError(f"Unknown query mode: {query_mode}")
        self.query_mode = query_mode
        self.keep_params = frozenset(keep_params)

    def _filter_query(self, query: str) -> str:
        if self.query_mode == "strip" or not query:
            return ""
        pairs = parse_qsl(query, keep_blank_values=True)
        if self.query_mode == "allow":
            pairs = [(k, v) for k, v in pairs if k in self.keep_params]
        return urlencode(sorted(pairs))

    def query_slug(self, query: str) -> str:
        """Slug a raw query string adds to a local path under this policy."""
        return slugify_query(self._filter_query(query))

    def canonical(self, url: str) -> Optional[str]:
        """
        Canonical absolute URL: lower-case scheme and host, default port,
        trailing slash and fragment dropped, query filtered by the policy.
        Returns None for anything that is not a parseable http(s) URL.
        """
        try:
            parts = urlsplit((url or "").strip())
            scheme = parts.scheme.lower()
            host = (parts.hostname or "").lower()
            port = parts.port
        except ValueError:
            return None

        if scheme not in ("http", "https") or not host:
            return None

        netloc = host
        if ":" in host:
            netloc = f"[{host}]"
        if port and port != _DEFAULT_PORTS[scheme]:
            netloc = f"{netloc}:{port}"

        path = parts.path or "/"
        if path != "/":
            path = path.rstrip("/") or "/"
        return urlunsplit((scheme, netloc, path, self._filter_query(parts.query), ""))

    def local_path(self, url: str) -> Optional[str]:
        """
        Run-relative directory for a page URL.

        The root path maps to 'index'; a query is slugified and appended to
        the last segment with '__' so distinct script routes stay distinct.
        """
        canonical = self.canonical(url)
        if canonical is None:
            return None
        parts = urlsplit(canonical)

        rel = "/".join(safe_segments(parts.path))
        slug = slugify_query(parts.query)
        if slug:
            rel = (rel or "index") + "__" + slug
        return rel or "index"

    def normalize(self, url: str) -> Optional[NormalizedUrl]:
        canonical = self.canonical(url)
        if canonical is None:
            return None
        return NormalizedUrl(url=canonical, key=canonical, local_path=self.local_path(canonical))


_default = UrlNormalizer()


def normalize(url: str) -> Optional[NormalizedUrl]:
    """Normalize a URL under the default (sorted query) policy."""
    return _default.normalize(url)


def page_local_path(url: str) -> Optional[str]:
    """Local path of a page URL under the default policy."""
    return _default.local_path(url)


def has_file_extension(path: str) -> bool:
    return bool(_FILE_EXT.search(path or ""))


def offline_href(local_path: str, fragment: str = "") -> str:
    """
    Root-relative href for a captured page directory.

    Args:
        local_path: Page local path ('index' for the site root)
        fragment: Optional fragment without '#'

    Returns:
        Href such as '/category/tea__page_2/'
    """
    href = "/" if local_path in ("", "index") else "/" + local_path.strip("/") + "/"
    if fragment:
        href += "#" + fragment
    return href


def page_dir(local_path: str, profile: Optional[str] = None) -> str:
    """Run-relative directory holding a page's index.html."""
    return posixpath.join(local_path, profile) if profile else local_path


def relative_href(from_dir: str, to_path: str) -> str:
    """
    Relative reference from a run-relative directory to a run-relative file.

    Args:
        from_dir: Directory of the referencing page, e.g. 'category/tea'
        to_path: Target file, e.g. 'assets/0123456789abcdef.jpg'

    Returns:
        Relative path using forward slashes
    """
    return posixpath.relpath(to_path, from_dir or ".")


def ensure_dir(path: str) -> None:
    """Ensure a directory exists, creating it if necessary."""
    os.makedirs(path, exist_ok=True)


def ensure_parent_dir(file_path: str) -> None:
    """Ensure the parent directory of a file exists."""
    parent = os.path.dirname(file_path)
    if parent:
        ensure_dir(parent)


def write_bytes_atomic(file_path: str, data: bytes) -> None:
    """
    Write a file through a unique temporary sibling and rename it into place.

    Concurrent writers of the same path never observe a partial file; the
    last rename wins.
    """
    ensure_parent_dir(file_path)
    directory = os.path.dirname(file_path) or "."
    fd, tmp_path = tempfile.mkstemp(prefix=".part-", dir=directory)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.replace(tmp_path, file_path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def write_text_atomic(file_path: str, text: str) -> None:
    write_bytes_atomic(file_path, text.encode("utf-8"))
