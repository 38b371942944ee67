"""
Browser automation capability used by the capture engine.

BrowserDriver opens one BrowserPage per capture attempt. A page exposes the
small surface the engine needs (navigate, evaluate, wait, content, a response
subscription and in-flight request tracking) so the engine can be driven by
any headless browser; the Playwright implementation lives here too.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout
from playwright.async_api import async_playwright

from ..discovery.http import FetchResponse
from ..utils.constants import DEFAULT_NAV_TIMEOUT, PROFILES
from ..utils.log import get_logger


class NavigationError(Exception):
    """The main document could not be loaded (retryable)."""


# Errors a capture attempt treats as retryable browser failures
BROWSER_ERRORS = (NavigationError, PlaywrightError)

SCROLL_SCRIPT = (
    "() => { const s = document.scrollingElement || document.documentElement;"
    " if (s) s.scrollBy(0, s.scrollHeight); }"
)


@dataclass
class NetworkResponse:
    """A response observed while a page loads."""

    url: str
    status: int
    headers: Dict[str, str]
    resource_type: str
    read_body: Callable[[], Awaitable[bytes]]

    @property
    def content_type(self) -> str:
        return (self.headers.get("content-type") or "").lower()

    @property
    def content_length(self) -> Optional[int]:
        value = self.headers.get("content-length")
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            return None

    async def body(self) -> bytes:
        return await self.read_body()


@dataclass
class NavigationResult:
    status: Optional[int]
    url: str


class BrowserPage:
    """
    One open browser tab.

    Subclasses keep inflight (requests not yet finished) and last_activity
    (time.monotonic() of the latest network event) current.
    """

    inflight: int = 0
    last_activity: float = 0.0

    def on_response(self, handler: Callable[[NetworkResponse], None]) -> None:
        raise NotImplementedError

    async def block_requests(
        self,
        predicate: Callable[[str], bool],
        on_blocked: Callable[[str], None]
    ) -> None:
        raise NotImplementedError

    async def navigate(self, url: str, timeout: int) -> NavigationResult:
        raise NotImplementedError

    async def evaluate(self, script: str, arg=None):
        raise NotImplementedError

    async def wait_for_timeout(self, millis: int) -> None:
        await asyncio.sleep(millis / 1000)

    async def content(self) -> str:
        raise NotImplementedError

    @property
    def url(self) -> str:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError


class BrowserDriver:
    """Factory for BrowserPage objects; an async context manager."""

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def new_page(self, profile: str = "desktop") -> BrowserPage:
        raise NotImplementedError

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()


class PlaywrightPage(BrowserPage):
    """BrowserPage over a Playwright page and its private context."""

    def __init__(self, context, page):
        self._context = context
        self._page = page
        self.inflight = 0
        self.last_activity = time.monotonic()

        page.on("request", self._on_request)
        page.on("requestfinished", self._on_request_done)
        page.on("requestfailed", self._on_request_done)

    def _touch(self) -> None:
        self.last_activity = time.monotonic()

    def _on_request(self, request) -> None:
        self.inflight += 1
        self._touch()

    def _on_request_done(self, request) -> None:
        self.inflight = max(0, self.inflight - 1)
        self._touch()

    def on_response(self, handler: Callable[[NetworkResponse], None]) -> None:
        def _wrap(response) -> None:
            self._touch()
            handler(NetworkResponse(
                url=response.url,
                status=response.status,
                headers=response.headers,
                resource_type=response.request.resource_type,
                read_body=response.body
            ))

        self._page.on("response", _wrap)

    async def block_requests(
        self,
        predicate: Callable[[str], bool],
        on_blocked: Callable[[str], None]
    ) -> None:
        async def _route(route) -> None:
            url = route.request.url
            if predicate(url):
                on_blocked(url)
                await route.abort()
            else:
                await route.continue_()

        await self._page.route("**/*", _route)

    async def navigate(self, url: str, timeout: int) -> NavigationResult:
        try:
            response = await self._page.goto(url, wait_until="domcontentloaded", timeout=timeout)
        except PlaywrightTimeout as e:
            raise NavigationError(f"timeout after {timeout}ms") from e
        return NavigationResult(
            status=response.status if response is not None else None,
            url=self._page.url
        )

    async def evaluate(self, script: str, arg=None):
        return await self._page.evaluate(script, arg)

    async def wait_for_timeout(self, millis: int) -> None:
        await self._page.wait_for_timeout(millis)

    async def content(self) -> str:
        return await self._page.content()

    @property
    def url(self) -> str:
        return self._page.url

    async def close(self) -> None:
        await self._context.close()


class PlaywrightDriver(BrowserDriver):
    """
    Launches Chromium through Playwright.

    Each new_page() gets its own context with the profile's viewport and user
    agent, so workers never share cookies or page state.
    """

    def __init__(
        self,
        headless: bool = True,
        user_agent: Optional[str] = None,
        nav_timeout: int = DEFAULT_NAV_TIMEOUT
    ):
        """
        Initialize the driver.

        Args:
            headless: Run browser in headless mode
            user_agent: Overrides the desktop profile user agent
            nav_timeout: Default navigation timeout in milliseconds
        """
        self.headless = headless
        self.user_agent = user_agent
        self.nav_timeout = nav_timeout
        self.logger = get_logger("browser")

        self._playwright = None
        self._browser = None

    async def start(self) -> None:
        if self._browser is not None:
            return
        self.logger.info("Starting Playwright browser...")
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless,
            args=[
                '--disable-blink-features=AutomationControlled',
                '--no-sandbox',
                '--disable-setuid-sandbox',
                '--disable-dev-shm-usage',
            ]
        )
        self.logger.info("Browser started")

    async def stop(self) -> None:
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
        self.logger.info("Browser stopped")

    async def new_page(self, profile: str = "desktop") -> BrowserPage:
        if self._browser is None:
            await self.start()

        device = PROFILES[profile]
        user_agent = device["user_agent"]
        if self.user_agent and profile == "desktop":
            user_agent = self.user_agent

        context = await self._browser.new_context(
            user_agent=user_agent,
            viewport=device["viewport"],
            device_scale_factor=device["device_scale_factor"],
            is_mobile=device["is_mobile"],
            has_touch=device["has_touch"],
            locale="en-US",
            ignore_https_errors=True,
        )
        page = await context.new_page()
        page.set_default_navigation_timeout(self.nav_timeout)
        return PlaywrightPage(context, page)


class BrowserFetcher:
    """
    Page client for the link crawler that renders pages in the browser.

    Implements the same get(url) contract as HttpClient, so script-built
    navigation is visible to link extraction.
    """

    def __init__(self, driver: BrowserDriver, nav_timeout: int = DEFAULT_NAV_TIMEOUT, settle: int = 500):
        self.driver = driver
        self.nav_timeout = nav_timeout
        self.settle = settle
        self.logger = get_logger("browser")

    async def get(self, url: str, headers=None) -> Optional[FetchResponse]:
        page = await self.driver.new_page("desktop")
        try:
            result = await page.navigate(url, self.nav_timeout)
            if self.settle > 0:
                await page.wait_for_timeout(self.settle)
            html = await page.content()
            return FetchResponse(
                url=page.url or result.url,
                status=result.status or 200,
                content_type="text/html",
                body=html.encode("utf-8")
            )
        except BROWSER_ERRORS as e:
            self.logger.warning(f"Render failed for {url}: {e}")
            return None
        finally:
            await page.close()
