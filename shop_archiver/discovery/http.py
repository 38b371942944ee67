"""
Asynchronous HTTP client used by the discovery strategies.

Thin wrapper around an aiohttp session with a concurrency cap, optional
pacing between requests and failure-as-None semantics.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Dict, Optional

import aiohttp
from aiohttp import ClientError, ClientTimeout

from ..utils.constants import DEFAULT_TIMEOUT, DEFAULT_USER_AGENT
from ..utils.log import get_logger


@dataclass
class FetchResponse:
    """A completed GET request."""

    url: str
    status: int
    content_type: str
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    @property
    def is_html(self) -> bool:
        return "html" in self.content_type or not self.content_type

    def json(self):
        return json.loads(self.text)


class HttpClient:
    """
    Fetches URLs for discovery.

    Every request either returns a FetchResponse (any status) or None when the
    transport failed; callers decide what a non-200 status means.
    """

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: int = DEFAULT_TIMEOUT,
        concurrency: int = 4,
        delay: float = 0.0,
        max_bytes: int = 20 * 1024 * 1024
    ):
        """
        Initialize the client.

        Args:
            user_agent: User agent header
            timeout: Total timeout per request in seconds
            concurrency: Maximum requests in flight
            delay: Seconds to wait after each request (pacing)
            max_bytes: Bodies larger than this are rejected
        """
        self.user_agent = user_agent
        self.timeout = ClientTimeout(total=timeout)
        self.delay = delay
        self.max_bytes = max_bytes
        self.logger = get_logger("http")

        self._semaphore = asyncio.Semaphore(concurrency)
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent, "Accept-Language": "en-US,en;q=0.8"}
            )

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def get(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None
    ) -> Optional[FetchResponse]:
        """
        GET a URL, following redirects.

        Args:
            url: URL to fetch
            headers: Extra request headers

        Returns:
            FetchResponse, or None on transport error, timeout or over-size body
        """
        await self.start()

        async with self._semaphore:
            try:
                async with self._session.get(url, headers=headers, allow_redirects=True) as response:
                    length = response.content_length
                    if length is not None and length > self.max_bytes:
                        self.logger.debug(f"Body too large ({length}) for {url}")
                        return None
                    body = await response.read()
                    if len(body) > self.max_bytes:
                        return None
                    return FetchResponse(
                        url=str(response.url),
                        status=response.status,
                        content_type=(response.headers.get("Content-Type") or "").lower(),
                        body=body
                    )
            except ClientError as e:
                self.logger.debug(f"Client error fetching {url}: {e}")
                return None
            except asyncio.TimeoutError:
                self.logger.debug(f"Timeout fetching {url}")
                return None
            finally:
                if self.delay > 0:
                    await asyncio.sleep(self.delay)

    async def probe(self, url: str) -> bool:
        """True when a GET of the URL answers 200 (used by ID probing)."""
        response = await self.get(url)
        return bool(response and response.status == 200)
