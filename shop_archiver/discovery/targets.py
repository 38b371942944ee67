"""
Capture targets: the handoff unit between discovery and capture.
"""

import json
import os
import re
from dataclasses import asdict, dataclass
from typing import Iterable, List, Optional
from urllib.parse import urlsplit

from ..utils.paths import ensure_parent_dir, write_text_atomic


CLASSIFICATIONS = ("home", "category", "product", "information", "other")

PRODUCT_RE = re.compile(r"/product|/p/|product_id=|add-to-cart=", re.IGNORECASE)
CATEGORY_RE = re.compile(
    r"category|collections|/shop|catalog|route=product/category|/c/", re.IGNORECASE
)
INFO_HINTS = (
    "about", "contact", "information", "delivery", "shipping",
    "returns", "policy", "terms", "privacy",
)


def classify_url(url: str) -> str:
    """
    Classify a page URL as home, product, category, information or other.

    Args:
        url: Absolute page URL

    Returns:
        One of CLASSIFICATIONS
    """
    parts = urlsplit(url)
    path = parts.path or "/"
    query = parts.query
    target = f"{path}?{query}" if query else path

    if path.strip("/") in ("", "index.php", "index.html") and not query:
        return "home"
    if PRODUCT_RE.search(target):
        return "product"
    if CATEGORY_RE.search(target):
        return "category"
    lowered = target.lower()
    if any(hint in lowered for hint in INFO_HINTS):
        return "information"
    return "other"


@dataclass
class CaptureTarget:
    """A URL queued for capture, with the metadata discovery knows about it."""

    url: str
    depth: int = 0
    discovered_from: Optional[str] = None
    classification: str = "other"
    source: str = "seed"

    @classmethod
    def create(
        cls,
        url: str,
        depth: int = 0,
        discovered_from: Optional[str] = None,
        source: str = "seed"
    ) -> "CaptureTarget":
        return cls(
            url=url,
            depth=depth,
            discovered_from=discovered_from,
            classification=classify_url(url),
            source=source
        )


def read_seeds_file(path: str) -> List[str]:
    """
    Read a newline-delimited seeds file.

    Blank lines and lines starting with '#' are ignored; duplicates keep their
    first position.

    Raises:
        OSError: If the file cannot be read
    """
    seen = set()
    seeds = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#") and line not in seen:
                seen.add(line)
                seeds.append(line)
    return seeds


def write_urls_file(path: str, urls: Iterable[str]) -> None:
    """Write URLs one per line (the urls.txt sidecar contract)."""
    ensure_parent_dir(path)
    lines = list(urls)
    write_text_atomic(path, "\n".join(lines) + ("\n" if lines else ""))


def write_targets_file(path: str, targets: Iterable[CaptureTarget]) -> None:
    write_text_atomic(path, json.dumps([asdict(t) for t in targets], indent=2, ensure_ascii=False))


def load_targets_file(path: str) -> List[CaptureTarget]:
    """Load targets.json written by a discovery run."""
    with open(path, "r", encoding="utf-8") as f:
        return [CaptureTarget(**entry) for entry in json.load(f)]


def targets_for_seeds_file(path: str) -> List[CaptureTarget]:
    """
    Targets for a capture run: a targets.json next to the seeds file carries
    depth and provenance, otherwise every seed is a depth-0 target.
    """
    sidecar = os.path.join(os.path.dirname(path), "targets.json")
    seeds = read_seeds_file(path)
    if os.path.exists(sidecar):
        known = {t.url: t for t in load_targets_file(sidecar)}
        return [known.get(url) or CaptureTarget.create(url) for url in seeds]
    return [CaptureTarget.create(url) for url in seeds]
