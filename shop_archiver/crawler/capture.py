"""
Capture engine.

Captures every target under every configured device profile: navigate with
a response subscription registered first, stabilize (lazy-load scrolling and a
network-quiet wait), rewrite the DOM to the offline addressing scheme and
persist index.html plus a manifest record. Individual page failures never
abort the run.
"""

import asyncio
import os
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set
from urllib.parse import urlsplit

from ..discovery.bfs import stop_file_for
from ..discovery.targets import CaptureTarget
from ..utils.config import ArchiverSettings
from ..utils.constants import ASSETS_DIR
from ..utils.domain import get_origin
from ..utils.log import get_logger
from ..utils.paths import page_dir as build_page_dir
from ..utils.paths import relative_href, write_text_atomic
from .browser import BROWSER_ERRORS, SCROLL_SCRIPT, BrowserDriver, BrowserPage, NavigationError, NetworkResponse
from .fingerprint import LIKELY_ASSET_RE, SKIP_REASONS, AssetStore, extension_for, fingerprint, is_capturable
from .manifest import ManifestWriter, PageCaptureRecord, empty_skip_counts, write_redirect_stub
from .rewrite import PageRewriter, rewrite_stylesheet


# Polling interval of the network-quiet wait (milliseconds)
QUIET_POLL_MS = 300


@dataclass
class CaptureSummary:
    """Aggregate outcome of a capture run."""

    total: int = 0
    ok: int = 0
    failed: int = 0
    stopped: bool = False
    assets: int = 0
    skipped: Dict[str, int] = field(default_factory=empty_skip_counts)
    records: List[PageCaptureRecord] = field(default_factory=list)
    duration_seconds: float = 0.0


class _PageAssets:
    """Per-attempt state filled by the response subscription."""

    def __init__(self):
        self.asset_map: Dict[str, str] = {}
        self.skipped: Counter = Counter()
        self.tasks: Set[asyncio.Future] = set()


class CaptureEngine:
    """
    Captures pages through an injected browser driver.

    Example:
        async with PlaywrightDriver() as driver:
            engine = CaptureEngine(driver, "./out", settings)
            summary = await engine.capture_all(targets)
    """

    def __init__(
        self,
        driver: BrowserDriver,
        output_dir: str,
        settings: Optional[ArchiverSettings] = None,
        seeds: Optional[List[str]] = None
    ):
        """
        Initialize the capture engine.

        Args:
            driver: Browser driver opening one page per attempt
            output_dir: Run root directory
            settings: Tunables (defaults when omitted)
            seeds: URLs defining the archived site (defaults to the targets)
        """
        self.driver = driver
        self.output_dir = os.path.abspath(output_dir)
        self.settings = settings or ArchiverSettings()
        self.seeds = seeds
        self.logger = get_logger("capture")

        self.normalizer = self.settings.normalizer()
        self.store = AssetStore(self.output_dir, self.settings.asset_max_bytes)
        self.manifest = ManifestWriter(self.output_dir)
        self.tracker = self.settings.tracker_pattern
        self.stop_file = stop_file_for(self.output_dir)

        self.same_site: Optional[Callable[[str], bool]] = None
        self.asset_site: Optional[Callable[[str], bool]] = None
        self.rewriter: Optional[PageRewriter] = None

        # run-wide source URL -> stored path, shared by every worker
        self._asset_index: Dict[str, str] = {}
        self._done = 0
        self._total = 0

    def stop_requested(self) -> bool:
        return os.path.exists(self.stop_file)

    async def capture_all(
        self,
        targets: List[CaptureTarget],
        on_record: Optional[Callable[[PageCaptureRecord], None]] = None
    ) -> CaptureSummary:
        """
        Capture every target with a fixed-size worker pool.

        Every (target, profile) pair yields exactly one manifest record, also
        when it fails or the run is stopped before reaching it.

        Args:
            targets: Capture targets in priority order
            on_record: Called after each record (progress reporting)

        Returns:
            CaptureSummary; manifest.json is written before returning
        """
        start_time = time.time()
        settings = self.settings

        seeds = self.seeds or [t.url for t in targets]
        self.same_site = settings.same_site(seeds)
        self.asset_site = settings.asset_site(seeds)
        self.rewriter = PageRewriter(self.same_site, self.normalizer)

        profiles = list(settings.profiles)
        queue: asyncio.Queue = asyncio.Queue()
        for target in targets:
            for profile in profiles:
                queue.put_nowait((target, profile))
        self._total = queue.qsize()
        self._done = 0

        summary = CaptureSummary(total=self._total)
        self.logger.info(
            f"Capturing {len(targets)} targets x {len(profiles)} profile(s) "
            f"with {settings.concurrency} worker(s)"
        )

        async def worker() -> None:
            while True:
                try:
                    target, profile = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    if self.stop_requested():
                        summary.stopped = True
                        record = self._new_record(target, profile, len(profiles) > 1)
                        record.status = "error:stopped"
                    else:
                        record = await self.capture_target(target, profile, multi_profile=len(profiles) > 1)
                    self.manifest.append(record)
                    if on_record is not None:
                        on_record(record)
                finally:
                    queue.task_done()

        workers = [asyncio.ensure_future(worker()) for _ in range(max(1, settings.concurrency))]
        await asyncio.gather(*workers)

        self.manifest.finalize()

        summary.records = list(self.manifest.records)
        for record in summary.records:
            if record.ok:
                summary.ok += 1
            else:
                summary.failed += 1
            summary.assets += record.assets_count
            for reason, count in record.skipped_counts.items():
                summary.skipped[reason] = summary.skipped.get(reason, 0) + count
        summary.duration_seconds = time.time() - start_time

        self.logger.info(
            f"Capture done: ok={summary.ok} failed={summary.failed} "
            f"assets={summary.assets}{' (stopped)' if summary.stopped else ''}"
        )
        return summary

    def _new_record(self, target: CaptureTarget, profile: str, multi_profile: bool) -> PageCaptureRecord:
        local_path = self.normalizer.local_path(target.url) or "index"
        return PageCaptureRecord(
            url=target.url,
            local_path=build_page_dir(local_path, profile if multi_profile else None),
            profile=profile,
            classification=target.classification,
            depth=target.depth,
            discovered_from=target.discovered_from,
        )

    async def capture_target(
        self,
        target: CaptureTarget,
        profile: str = "desktop",
        multi_profile: bool = False
    ) -> PageCaptureRecord:
        """
        Capture one target under one profile, retrying navigation failures.

        Returns:
            The record; status is 'ok' or 'error:<reason>'
        """
        settings = self.settings
        record = self._new_record(target, profile, multi_profile)
        start = time.monotonic()

        if self.normalizer.canonical(target.url) is None:
            record.status = "error:invalid url"
            return record

        max_attempts = settings.retries + 1
        reason = ""
        for attempt in range(1, max_attempts + 1):
            record.attempts = attempt
            try:
                await asyncio.wait_for(
                    self._attempt(target, profile, record, multi_profile),
                    timeout=settings.page_timeout / 1000
                )
                record.status = "ok"
                break
            except asyncio.TimeoutError:
                reason = f"watchdog timeout after {settings.page_timeout}ms"
            except BROWSER_ERRORS as e:
                reason = str(e).splitlines()[0] if str(e) else type(e).__name__
            except OSError as e:
                reason = f"write failed: {e}"

            record.reasons.append(f"attempt{attempt}:{reason}")
            self.logger.warning(f"Attempt {attempt}/{max_attempts} failed for {target.url}: {reason}")
            if attempt < max_attempts and settings.retry_delay > 0:
                await asyncio.sleep(settings.retry_delay / 1000)
        else:
            record.status = f"error:{reason}"

        record.duration_ms = int((time.monotonic() - start) * 1000)
        self._done += 1
        if record.ok:
            self.logger.info(f"[{self._done}/{self._total}] ok {target.url} -> {record.local_path}")
        else:
            self.logger.error(f"[{self._done}/{self._total}] {record.status} {target.url}")
        return record

    async def _attempt(
        self,
        target: CaptureTarget,
        profile: str,
        record: PageCaptureRecord,
        multi_profile: bool
    ) -> None:
        settings = self.settings
        state = _PageAssets()
        page = await self.driver.new_page(profile)
        try:
            if self.tracker is not None:
                await page.block_requests(
                    self.tracker.search,
                    lambda url: state.skipped.update(["blocked"])
                )
            # registered before navigation so early responses are seen
            page.on_response(lambda response: self._on_response(response, state))

            # navigating
            result = await page.navigate(target.url, settings.nav_timeout)
            record.http_status = result.status
            record.final_url = result.url or page.url
            if result.status is not None and result.status >= 400:
                raise NavigationError(f"http {result.status}")

            # stabilizing
            await self._stabilize(page, record)
            if state.tasks:
                await asyncio.gather(*state.tasks)

            # rewriting
            html = await page.content()
            final_url = page.url or target.url
            html = self.rewriter.rewrite(
                html,
                final_url,
                record.local_path,
                state.asset_map,
                mobile=profile == "mobile"
            )

            # persisted
            self._persist(record, html, profile, multi_profile)
        finally:
            for task in state.tasks:
                task.cancel()
            record.assets_count = len(state.asset_map)
            record.skipped_counts = {reason: state.skipped.get(reason, 0) for reason in SKIP_REASONS}
            await page.close()

    async def _stabilize(self, page: BrowserPage, record: PageCaptureRecord) -> None:
        """Lazy-load scrolling, a settle delay and a bounded network-quiet wait."""
        settings = self.settings
        for _ in range(settings.scroll_passes):
            try:
                await page.evaluate(SCROLL_SCRIPT)
            except BROWSER_ERRORS as e:
                record.reasons.append(f"scroll:{e}")
                break
            await page.wait_for_timeout(settings.scroll_delay)

        if settings.wait_extra > 0:
            await page.wait_for_timeout(settings.wait_extra)

        deadline = time.monotonic() + settings.max_capture_ms / 1000
        while time.monotonic() < deadline:
            idle_ms = (time.monotonic() - page.last_activity) * 1000
            if page.inflight == 0 and idle_ms >= settings.quiet_millis:
                return
            await page.wait_for_timeout(QUIET_POLL_MS)
        record.reasons.append("network never quiet")

    def _on_response(self, response: NetworkResponse, state: _PageAssets) -> None:
        """Classify a response and schedule storing it; never raises."""
        url = response.url
        if not url.startswith(("http://", "https://")):
            return
        if response.resource_type == "document":
            return
        content_type = response.content_type

        if not self.settings.include_cross_origin and not self.asset_site(url):
            state.skipped["cross_origin"] += 1
            return
        if self.tracker is not None and self.tracker.search(url):
            state.skipped["blocked"] += 1
            return
        if response.status != 200 or not is_capturable(url, content_type):
            state.skipped["type"] += 1
            return
        if self.store.over_size(response.content_length):
            state.skipped["size"] += 1
            self.logger.debug(f"Skipping oversized asset {url} ({response.content_length} bytes)")
            return
        if url in state.asset_map:
            return

        known = self._asset_index.get(url)
        if known is not None:
            state.asset_map[url] = known
            return

        task = asyncio.ensure_future(self._store_asset(response, state))
        state.tasks.add(task)

    async def _store_asset(self, response: NetworkResponse, state: _PageAssets) -> None:
        url = response.url
        content_type = response.content_type

        if self.store.exists(url, content_type):
            rel = self.store.relative_path(url, content_type)
            state.asset_map[url] = rel
            self._asset_index[url] = rel
            return

        try:
            body = await asyncio.wait_for(
                response.body(), timeout=self.settings.asset_body_timeout / 1000
            )
        except (asyncio.TimeoutError,) + BROWSER_ERRORS as e:
            self.logger.debug(f"Asset body unavailable {url}: {e}")
            state.skipped["write"] += 1
            return

        if len(body) > self.store.max_bytes:
            state.skipped["size"] += 1
            return

        if extension_for(url, content_type) == ".css":
            # stored under assets/, so relative references must be re-anchored
            css = body.decode("utf-8", errors="surrogateescape")
            css = rewrite_stylesheet(css, url, lambda ref: self._stylesheet_reference(ref, url))
            body = css.encode("utf-8", errors="surrogateescape")

        try:
            asset = self.store.store(url, content_type, body)
        except OSError as e:
            self.logger.debug(f"Could not store asset {url}: {e}")
            state.skipped["write"] += 1
            return

        state.asset_map[url] = asset.local_relative_path
        self._asset_index[url] = asset.local_relative_path

    def _stylesheet_reference(self, url: str, css_url: str) -> str:
        """Where a stored stylesheet should point for an absolute URL."""
        known = self._asset_index.get(url)
        if known is not None:
            return relative_href(ASSETS_DIR, known)

        # not fetched yet; the name is predictable when the URL carries the extension
        in_scope = self.settings.include_cross_origin or self.asset_site(url)
        blocked = self.tracker is not None and self.tracker.search(url)
        if in_scope and not blocked and LIKELY_ASSET_RE.search(urlsplit(url).path):
            return fingerprint(url)

        if get_origin(url) == get_origin(css_url):
            parts = urlsplit(url)
            return parts.path + (f"?{parts.query}" if parts.query else "")
        return url

    def _persist(self, record: PageCaptureRecord, html: str, profile: str, multi_profile: bool) -> None:
        """Write index.html atomically, plus the variant redirect stub."""
        page_file = os.path.join(self.output_dir, *record.local_path.split("/"), "index.html")
        write_text_atomic(page_file, html)

        if multi_profile:
            parent = record.local_path.rsplit("/", 1)[0]
            stub = os.path.join(self.output_dir, *parent.split("/"), "index.html")
            write_redirect_stub(stub, f"/{record.local_path}/", overwrite=profile == "desktop")
