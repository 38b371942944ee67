"""
Asset fingerprint store.

Content-addressed naming for captured assets: the file name is a pure
function of the source URL (plus an inferred extension), so the same asset
maps to the same file for the whole run and the serving layer can recompute
it without an index.
"""

import os
import posixpath
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

from ..utils.constants import ASSETS_DIR, DEFAULT_ASSET_MAX_BYTES
from ..utils.log import get_logger
from ..utils.paths import sha16, write_bytes_atomic


URL_EXT_RE = re.compile(r"(\.[a-z0-9]{2,6})(?:$|[?#])", re.IGNORECASE)

LIKELY_ASSET_RE = re.compile(
    r"\.(png|jpe?g|webp|gif|svg|css|js|mjs|cjs|woff2?|ttf|otf|ico|pdf)$",
    re.IGNORECASE
)

# Checked in order, first substring match wins
CONTENT_TYPE_EXTENSIONS = (
    ("png", ".png"),
    ("jpeg", ".jpg"),
    ("jpg", ".jpg"),
    ("webp", ".webp"),
    ("gif", ".gif"),
    ("css", ".css"),
    ("javascript", ".js"),
    ("woff2", ".woff2"),
    ("woff", ".woff"),
    ("ttf", ".ttf"),
    ("svg", ".svg"),
    ("icon", ".ico"),
    ("pdf", ".pdf"),
    ("json", ".json"),
)

SKIP_REASONS = ("blocked", "size", "type", "cross_origin", "write")


def extension_for(url: str, content_type: str = "") -> str:
    """
    Best-effort extension: from the URL path, then the content type, else .bin.

    Args:
        url: Asset source URL
        content_type: Response content-type header (may be empty)

    Returns:
        Extension including the dot, lower-cased
    """
    path = urlsplit(url).path
    match = URL_EXT_RE.search(path)
    if match:
        return match.group(1).lower()

    ct = (content_type or "").lower()
    for needle, ext in CONTENT_TYPE_EXTENSIONS:
        if needle in ct:
            return ext
    return ".bin"


def fingerprint(url: str, content_type: str = "") -> str:
    """
    Deterministic file name of an asset: 16 hex chars of SHA-1(url) + extension.

    Example:
        fingerprint("https://cdn.example.com/img/photo.jpg")
        # 'a94a8fe5ccb19ba6.jpg' style name, identical on every call
    """
    return sha16(url) + extension_for(url, content_type)


def is_capturable(url: str, content_type: str = "") -> bool:
    """True for stylesheets, scripts, images, fonts and binaries known by extension."""
    ct = (content_type or "").lower()
    if LIKELY_ASSET_RE.search(urlsplit(url).path):
        return True
    if ct.startswith("image/") or ct.startswith("font/"):
        return True
    return "css" in ct or "javascript" in ct


@dataclass(frozen=True)
class AssetRecord:
    """One stored asset."""

    source_url: str
    local_relative_path: str
    byte_length: int
    content_type: str


class AssetStore:
    """
    Write-once asset store under <root>/assets.

    Safe under concurrent writers: the target name is a pure function of the
    URL, an existing file counts as success and writes go through a temporary
    file renamed into place.
    """

    def __init__(self, root: str, max_bytes: int = DEFAULT_ASSET_MAX_BYTES):
        self.root = root
        self.max_bytes = max_bytes
        self.directory = os.path.join(root, ASSETS_DIR)
        self.logger = get_logger("assets")

    def relative_path(self, url: str, content_type: str = "") -> str:
        """Run-relative path of an asset, e.g. 'assets/0123456789abcdef.jpg'."""
        return posixpath.join(ASSETS_DIR, fingerprint(url, content_type))

    def absolute_path(self, relative_path: str) -> str:
        return os.path.join(self.root, *relative_path.split("/"))

    def exists(self, url: str, content_type: str = "") -> bool:
        return os.path.exists(self.absolute_path(self.relative_path(url, content_type)))

    def over_size(self, content_length: Optional[int]) -> bool:
        return content_length is not None and content_length > self.max_bytes

    def store(self, url: str, content_type: str, body: bytes) -> AssetRecord:
        """
        Persist an asset unless its file already exists.

        Raises:
            OSError: If the file cannot be written
        """
        rel = self.relative_path(url, content_type)
        path = self.absolute_path(rel)
        if os.path.exists(path):
            return AssetRecord(url, rel, os.path.getsize(path), content_type)

        write_bytes_atomic(path, body)
        self.logger.debug(f"Stored asset {url} -> {rel}")
        return AssetRecord(url, rel, len(body), content_type)
