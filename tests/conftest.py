"""
Shared fixtures: in-memory HTTP client and browser driver fakes so discovery
and capture run without network or browser.
"""

import asyncio
import json
import os
from typing import Dict, List, Optional

import aiohttp
import pytest

from shop_archiver.crawler.browser import (
    BrowserDriver,
    BrowserPage,
    NavigationError,
    NavigationResult,
    NetworkResponse,
)
from shop_archiver.discovery.http import FetchResponse
from shop_archiver.utils.config import ArchiverSettings


SHOP = "https://shop.example.com"


def html_page(links=(), body="", title="page") -> str:
    anchors = "".join(f'<a href="{href}">{href}</a>' for href in links)
    return f"<html><head><title>{title}</title></head><body>{body}{anchors}</body></html>"


class FakeHttpClient:
    """HttpClient stand-in answering from a dict of url -> (status, content_type, body)."""

    def __init__(self, pages: Optional[Dict[str, tuple]] = None, errors=()):
        self.pages = dict(pages or {})
        self.errors = set(errors)
        self.requested: List[str] = []

    def add(self, url: str, body, status: int = 200, content_type: str = "text/html") -> None:
        self.pages[url] = (status, content_type, body)

    def add_json(self, url: str, payload, status: int = 200) -> None:
        self.add(url, json.dumps(payload), status, "application/json")

    async def get(self, url: str, headers=None) -> Optional[FetchResponse]:
        self.requested.append(url)
        if url in self.errors:
            raise aiohttp.ClientError(f"connection refused: {url}")
        if url not in self.pages:
            return FetchResponse(url=url, status=404, content_type="text/html", body=b"")
        status, content_type, body = self.pages[url]
        if isinstance(body, str):
            body = body.encode("utf-8")
        return FetchResponse(url=url, status=status, content_type=content_type, body=body)

    async def probe(self, url: str) -> bool:
        response = await self.get(url)
        return bool(response and response.status == 200)


class FakeAsset:
    """A subresource a fake page loads; counts how often its body is read."""

    def __init__(
        self,
        url: str,
        body: bytes = b"asset",
        content_type: str = "image/png",
        status: int = 200,
        resource_type: str = "image",
        content_length: Optional[int] = None,
        delay: float = 0
    ):
        self.url = url
        self.body = body
        self.content_type = content_type
        self.status = status
        self.resource_type = resource_type
        self.content_length = content_length
        self.delay = delay
        self.reads = 0

    def response(self) -> NetworkResponse:
        length = self.content_length if self.content_length is not None else len(self.body)
        headers = {"content-type": self.content_type, "content-length": str(length)}

        async def read_body() -> bytes:
            if self.delay:
                await asyncio.sleep(self.delay)
            self.reads += 1
            return self.body

        return NetworkResponse(self.url, self.status, headers, self.resource_type, read_body)


class FakeSitePage:
    def __init__(self, html: str, status: int = 200, assets=(), failures: int = 0, hang: bool = False):
        self.html = html
        self.status = status
        self.assets = list(assets)
        self.failures = failures
        self.hang = hang


class FakeSite:
    def __init__(self):
        self.pages: Dict[str, FakeSitePage] = {}
        self.navigations: List[str] = []

    def add(self, url: str, html: str, **kwargs) -> FakeSitePage:
        page = FakeSitePage(html, **kwargs)
        self.pages[url] = page
        return page


class FakePage(BrowserPage):
    def __init__(self, site: FakeSite, profile: str):
        self.site = site
        self.profile = profile
        self.inflight = 0
        self.last_activity = 0.0
        self.closed = False
        self._handlers = []
        self._blocker = None
        self._url = ""
        self._html = ""

    def on_response(self, handler) -> None:
        self._handlers.append(handler)

    async def block_requests(self, predicate, on_blocked) -> None:
        self._blocker = (predicate, on_blocked)

    async def navigate(self, url: str, timeout: int) -> NavigationResult:
        self.site.navigations.append(url)
        site_page = self.site.pages.get(url)
        if site_page is None:
            raise NavigationError("net::ERR_NAME_NOT_RESOLVED")
        if site_page.failures > 0:
            site_page.failures -= 1
            raise NavigationError("net::ERR_CONNECTION_RESET")
        if site_page.hang:
            await asyncio.sleep(3600)

        self._url = url
        self._html = site_page.html
        for asset in site_page.assets:
            if self._blocker is not None and self._blocker[0](asset.url):
                self._blocker[1](asset.url)
                continue
            response = asset.response()
            for handler in self._handlers:
                handler(response)
        return NavigationResult(status=site_page.status, url=url)

    async def evaluate(self, script: str, arg=None):
        return None

    async def wait_for_timeout(self, millis: int) -> None:
        await asyncio.sleep(0)

    async def content(self) -> str:
        return self._html

    @property
    def url(self) -> str:
        return self._url

    async def close(self) -> None:
        self.closed = True


class FakeDriver(BrowserDriver):
    def __init__(self, site: FakeSite):
        self.site = site
        self.pages: List[FakePage] = []

    async def new_page(self, profile: str = "desktop") -> BrowserPage:
        page = FakePage(self.site, profile)
        self.pages.append(page)
        return page


@pytest.fixture
def site():
    return FakeSite()


@pytest.fixture
def driver(site):
    return FakeDriver(site)


@pytest.fixture
def capture_settings():
    return ArchiverSettings(
        concurrency=1,
        retries=1,
        retry_delay=0,
        scroll_delay=0,
        wait_extra=0,
        quiet_millis=0,
        max_capture_ms=1000,
        page_timeout=5000,
    )


def write_file(root, rel: str, content) -> str:
    path = os.path.join(str(root), *rel.split("/"))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    mode = "wb" if isinstance(content, bytes) else "w"
    with open(path, mode) as f:
        f.write(content)
    return path
