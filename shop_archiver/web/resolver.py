"""
Request resolution against a captured run.

An ArchiveSnapshot is built once when the server starts (asset basename index,
discovery graph paths, known origins) and shared read-only by every request.
ArchiveResolver maps request paths to files with escalating fallbacks.
"""

import glob
import json
import os
import re
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple
from urllib.parse import quote, urlsplit

from werkzeug.security import safe_join

from ..crawler.fingerprint import fingerprint
from ..crawler.manifest import PageCaptureRecord, load_manifest
from ..utils.constants import ASSETS_DIR, CRAWL_DIR, PROFILES
from ..utils.domain import get_origin
from ..utils.log import get_logger
from ..utils.paths import UrlNormalizer, safe_segments, sha16
from .fetch_cache import LiveFetcher


# Files eligible for the basename alias index
ASSET_EXT_RE = re.compile(
    r"\.(?:js|mjs|cjs|css|map|json|ico|png|jpe?g|webp|gif|svg|woff2?|ttf|otf|mp4|webm|wav|mp3)$",
    re.IGNORECASE
)

SCRIPT_PATH_RE = re.compile(r"\.(php|asp|aspx|jsp|cgi)$", re.IGNORECASE)

# Characters left unescaped when rebuilding an origin URL from a request path
_PATH_SAFE = "/:@!$&'()*+,;=-._~"


@dataclass(frozen=True)
class ArchiveSnapshot:
    """Read-only view of a run taken at server start."""

    root: str
    asset_index: Mapping[str, str]
    graph_paths: Tuple[Tuple[str, str], ...]
    origins: Tuple[str, ...]
    manifest: Tuple[PageCaptureRecord, ...]


def build_asset_index(root: str) -> Dict[str, str]:
    """
    Map lower-cased asset basenames to the first file carrying them.

    The walk is sorted so 'first' is stable across restarts.
    """
    index: Dict[str, str] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            if not ASSET_EXT_RE.search(name):
                continue
            index.setdefault(name.lower(), os.path.join(dirpath, name))
    return index


def load_graph_paths(root: str) -> List[Tuple[str, str]]:
    """
    (path, url) pairs of discovery graph nodes, longest path first.

    graph.json nodes may be a list of {url: ...} objects or a mapping keyed
    by URL; a missing or unreadable graph yields no paths.
    """
    path = os.path.join(root, CRAWL_DIR, "graph.json")
    if not os.path.exists(path):
        return []
    try:
        with open(path, "r", encoding="utf-8") as f:
            graph = json.load(f)
    except (OSError, ValueError) as e:
        get_logger("server").warning(f"Ignoring unreadable graph.json: {e}")
        return []

    nodes = graph.get("nodes", []) if isinstance(graph, dict) else []
    urls = list(nodes.keys()) if isinstance(nodes, dict) else [
        node.get("url") for node in nodes if isinstance(node, dict)
    ]

    pairs = {}
    for url in urls:
        if not url:
            continue
        node_path = urlsplit(url).path.strip("/")
        if node_path and node_path not in pairs:
            pairs[node_path] = url
    return sorted(pairs.items(), key=lambda item: len(item[0]), reverse=True)


def manifest_origins(records: List[PageCaptureRecord]) -> List[str]:
    """Origins of captured pages plus their http/https twins, in first-seen order."""
    origins: List[str] = []
    for record in records:
        for url in (record.url, record.final_url):
            if not url or not url.startswith(("http://", "https://")):
                continue
            origin = get_origin(url)
            scheme, rest = origin.split("://", 1)
            twin = ("http://" if scheme == "https" else "https://") + rest
            for candidate in (origin, twin):
                if candidate not in origins:
                    origins.append(candidate)
    return origins


def build_snapshot(root: str) -> ArchiveSnapshot:
    """Scan a run directory once."""
    logger = get_logger("server")
    root = os.path.abspath(root)
    records = load_manifest(root)

    snapshot = ArchiveSnapshot(
        root=root,
        asset_index=build_asset_index(root),
        graph_paths=tuple(load_graph_paths(root)),
        origins=tuple(manifest_origins(records)),
        manifest=tuple(records),
    )
    logger.info(f"Asset alias index entries: {len(snapshot.asset_index)}")
    logger.info(f"Origins for alias/fetch: {', '.join(snapshot.origins) or '(none)'}")
    return snapshot


def strip_query_slug_folder(path: str) -> str:
    """
    Drop a query-slug page folder prefix from an asset path.

    '/index.php__product_id_318/image/teacup.png' -> '/image/teacup.png'
    """
    parts = [p for p in path.split("/") if p]
    cut = -1
    for i, part in enumerate(parts[:-1]):
        if "__" in part:
            cut = i
    if cut < 0:
        return path
    return "/" + "/".join(parts[cut + 1:])


class ArchiveResolver:
    """
    Resolves request paths to files of a run.

    Args:
        snapshot: Startup snapshot of the run
        default_variant: Preferred device profile when several were captured
        graph_routing: Use discovery graph prefixes as a fallback
        fetcher: Live fetcher for asset misses (None disables live fetch)
    """

    def __init__(
        self,
        snapshot: ArchiveSnapshot,
        default_variant: str = "desktop",
        graph_routing: bool = True,
        fetcher: Optional[LiveFetcher] = None,
        normalizer: Optional[UrlNormalizer] = None
    ):
        self.snapshot = snapshot
        # same query policy the run was captured with
        self.normalizer = normalizer or UrlNormalizer()
        self.root = snapshot.root
        self.graph_routing = graph_routing
        self.fetcher = fetcher
        self.logger = get_logger("server")

        others = [name for name in PROFILES if name != default_variant]
        self.variants: List[Optional[str]] = [default_variant] + others + [None]

    def _file(self, rel: str) -> Optional[str]:
        """Absolute path of a run-relative file if it exists inside the run."""
        path = safe_join(self.root, rel) if rel else None
        if path and os.path.isfile(path):
            return path
        return None

    def _page(self, rel_dir: str) -> Optional[str]:
        """index.html of a captured page directory, honoring variant order."""
        rel_dir = rel_dir.strip("/")
        if not rel_dir:
            hit = self._page("index")
            return hit or self._file("index.html")
        for variant in self.variants:
            rel = f"{rel_dir}/{variant}/index.html" if variant else f"{rel_dir}/index.html"
            hit = self._file(rel)
            if hit:
                return hit
        return None

    def resolve_html(self, request_path: str, query: str = "") -> Optional[str]:
        """
        Resolve a page request.

        Order: literal .html file, directory mapping, query slug, discovery
        graph prefix, nearest captured ancestor.

        Args:
            request_path: Decoded request path
            query: Raw query string without '?'

        Returns:
            Absolute path of the index.html to serve, or None
        """
        segments = safe_segments(request_path.replace("\\", "/"))
        rel = "/".join(segments)

        if rel.lower().endswith((".html", ".htm")):
            hit = self._file(rel)
            if hit:
                return hit

        hit = self._page(rel)
        if hit:
            return hit

        if query and rel:
            slug = self.normalizer.query_slug(query)
            if slug:
                hit = self._page(f"{rel}__{slug}")
                if hit:
                    return hit

        if self.graph_routing and rel:
            hit = self._graph_prefix(rel)
            if hit:
                return hit

        for depth in range(len(segments) - 1, 0, -1):
            hit = self._page("/".join(segments[:depth]))
            if hit:
                self.logger.debug(f"[ancestor] /{rel} -> {'/'.join(segments[:depth])}")
                return hit
        return None

    def _graph_prefix(self, rel: str) -> Optional[str]:
        for node_path, url in self.snapshot.graph_paths:
            if rel != node_path and not rel.startswith(node_path + "/"):
                continue
            hit = self._page("/".join(safe_segments(urlsplit(url).path)))
            if hit:
                self.logger.debug(f"[graph] /{rel} -> {node_path}")
                return hit
        return None

    def resolve_asset(self, request_path: str, query: str = "") -> Optional[str]:
        """
        Resolve an asset request.

        Order: preserved path, basename index, hash alias per known origin,
        live fetch. The first hit wins.

        Returns:
            Absolute file path, or None
        """
        path = strip_query_slug_folder("/" + request_path.lstrip("/"))
        rel = path.lstrip("/")

        hit = self._file(rel)
        if hit:
            return hit

        basename = os.path.basename(rel).lower()
        if basename:
            by_name = self.snapshot.asset_index.get(basename)
            if by_name and os.path.isfile(by_name):
                return by_name

        encoded = quote(path, safe=_PATH_SAFE)
        candidates = []
        for origin in self.snapshot.origins:
            if query:
                candidates.append(f"{origin}{encoded}?{query}")
            candidates.append(f"{origin}{encoded}")

        for url in candidates:
            hit = self._hash_alias(url)
            if hit:
                return hit

        if self.fetcher is not None and rel:
            for url in candidates:
                cached = self.fetcher.fetch(url)
                if cached:
                    return cached
        return None

    def _hash_alias(self, url: str) -> Optional[str]:
        hit = self._file(f"{ASSETS_DIR}/{fingerprint(url)}")
        if hit:
            return hit
        # stored with an extension taken from the content type
        pattern = os.path.join(self.root, ASSETS_DIR, sha16(url) + ".*")
        matches = sorted(glob.glob(pattern))
        if matches:
            return matches[0]
        return None
