"""
Run manifest: the per-page ledger of capture outcomes.

Records are appended to manifest.partial.jsonl as they are produced so an
interrupted run still leaves a usable ledger; manifest.json is written once
when the run completes.
"""

import html
import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..utils.constants import MANIFEST_FILE, PARTIAL_MANIFEST_FILE
from ..utils.log import get_logger
from ..utils.paths import ensure_dir, write_text_atomic
from .fingerprint import SKIP_REASONS


def empty_skip_counts() -> Dict[str, int]:
    return {reason: 0 for reason in SKIP_REASONS}


@dataclass
class PageCaptureRecord:
    """Outcome of capturing one target under one device profile."""

    url: str
    local_path: str
    status: str = "pending"
    profile: str = "desktop"
    assets_count: int = 0
    skipped_counts: Dict[str, int] = field(default_factory=empty_skip_counts)
    attempts: int = 0
    final_url: Optional[str] = None
    http_status: Optional[int] = None
    classification: str = "other"
    depth: int = 0
    discovered_from: Optional[str] = None
    duration_ms: int = 0
    reasons: List[str] = field(default_factory=list)
    captured_at: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status.startswith("ok")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "localPath": self.local_path,
            "status": self.status,
            "profile": self.profile,
            "assetsCount": self.assets_count,
            "skippedCounts": dict(self.skipped_counts),
            "attempts": self.attempts,
            "finalURL": self.final_url,
            "httpStatus": self.http_status,
            "classification": self.classification,
            "depth": self.depth,
            "discoveredFrom": self.discovered_from,
            "durationMs": self.duration_ms,
            "reasons": list(self.reasons),
            "capturedAt": self.captured_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PageCaptureRecord":
        skipped = empty_skip_counts()
        skipped.update(data.get("skippedCounts") or {})
        return cls(
            url=data["url"],
            local_path=data.get("localPath", ""),
            status=data.get("status", ""),
            profile=data.get("profile", "desktop"),
            assets_count=data.get("assetsCount", 0),
            skipped_counts=skipped,
            attempts=data.get("attempts", 0),
            final_url=data.get("finalURL"),
            http_status=data.get("httpStatus"),
            classification=data.get("classification", "other"),
            depth=data.get("depth", 0),
            discovered_from=data.get("discoveredFrom"),
            duration_ms=data.get("durationMs", 0),
            reasons=list(data.get("reasons") or []),
            captured_at=data.get("capturedAt"),
        )


def redirect_html(href: str) -> str:
    """Small HTML document that forwards the browser to href."""
    safe = html.escape(href, quote=True)
    return (
        "<!doctype html>\n"
        "<html><head><meta charset=\"utf-8\">\n"
        f"<meta http-equiv=\"refresh\" content=\"0; url={safe}\">\n"
        f"<link rel=\"canonical\" href=\"{safe}\">\n"
        f"<script>location.replace({json.dumps(href)});</script>\n"
        "</head><body>\n"
        f"<p>Redirecting to <a href=\"{safe}\">{safe}</a></p>\n"
        "</body></html>\n"
    )


def write_redirect_stub(path: str, href: str, overwrite: bool = True) -> bool:
    """
    Write a redirect stub, optionally only when no file exists yet.

    Returns:
        True if the stub was written
    """
    if not overwrite and os.path.exists(path):
        return False
    write_text_atomic(path, redirect_html(href))
    return True


class ManifestWriter:
    """
    Collects capture records for a run.

    Example:
        manifest = ManifestWriter(output_dir)
        manifest.append(record)
        manifest.finalize()
    """

    def __init__(self, root: str):
        self.root = root
        self.records: List[PageCaptureRecord] = []
        self.partial_path = os.path.join(root, PARTIAL_MANIFEST_FILE)
        self.path = os.path.join(root, MANIFEST_FILE)
        self.logger = get_logger("manifest")
        ensure_dir(root)
        # one ledger per run
        write_text_atomic(self.partial_path, "")

    def append(self, record: PageCaptureRecord) -> None:
        """Add a record and append it to the partial manifest."""
        if record.captured_at is None:
            record.captured_at = datetime.now(timezone.utc).isoformat()
        line = json.dumps(record.to_dict(), ensure_ascii=False)
        self.records.append(record)
        with open(self.partial_path, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    def finalize(self) -> str:
        """
        Write manifest.json and the root redirect.

        Records are sorted by URL then profile so reruns produce stable files.

        Returns:
            Path of manifest.json
        """
        ordered = sorted(self.records, key=lambda r: (r.url, r.profile))
        write_text_atomic(
            self.path,
            json.dumps([r.to_dict() for r in ordered], indent=2, ensure_ascii=False)
        )

        first_ok = next((r for r in self.records if r.ok), None)
        if first_ok is not None:
            href = "/" + first_ok.local_path.strip("/") + "/"
            if write_redirect_stub(os.path.join(self.root, "index.html"), href, overwrite=False):
                self.logger.info(f"Root index.html redirects to {href}")

        self.logger.info(f"Manifest written: {len(ordered)} records -> {self.path}")
        return self.path

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.records if not r.ok)


def load_manifest(root: str) -> List[PageCaptureRecord]:
    """
    Read a run's manifest, falling back to the partial manifest of an
    interrupted run. Missing files yield an empty list.
    """
    path = os.path.join(root, MANIFEST_FILE)
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return [PageCaptureRecord.from_dict(entry) for entry in data if isinstance(entry, dict)]

    partial = os.path.join(root, PARTIAL_MANIFEST_FILE)
    if not os.path.exists(partial):
        return []
    records = []
    with open(partial, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                records.append(PageCaptureRecord.from_dict(json.loads(line)))
    return records
