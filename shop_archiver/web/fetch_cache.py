"""
Live fetch-and-cache for assets missing from a run.

On a resolution miss the serving layer may fetch the asset from a known
origin once and store it under its fingerprint name, so the next request is
served offline.
"""

import asyncio
import os
from typing import Optional

import aiohttp
from aiohttp import ClientError, ClientTimeout

from ..crawler.fingerprint import fingerprint
from ..utils.constants import ASSETS_DIR, DEFAULT_ASSET_MAX_BYTES, DEFAULT_TIMEOUT, DEFAULT_USER_AGENT
from ..utils.log import get_logger
from ..utils.paths import write_bytes_atomic


class LiveFetcher:
    """
    Fetches single assets from the origin and caches them in <root>/assets.

    Failures of any kind are misses (None); nothing is retried. Concurrent
    fetches of the same asset are harmless: each writes a private temporary
    file and renames it into place.
    """

    def __init__(
        self,
        root: str,
        timeout: int = DEFAULT_TIMEOUT,
        max_bytes: int = DEFAULT_ASSET_MAX_BYTES,
        user_agent: str = DEFAULT_USER_AGENT
    ):
        self.root = root
        self.timeout = ClientTimeout(total=timeout)
        self.max_bytes = max_bytes
        self.user_agent = user_agent
        self.logger = get_logger("server")

    def fetch(self, url: str) -> Optional[str]:
        """
        Fetch and cache an asset (blocking; called from request threads).

        Args:
            url: Absolute asset URL

        Returns:
            Absolute path of the cached file, or None
        """
        loop = asyncio.new_event_loop()
        try:
            return loop.run_until_complete(self._fetch(url))
        finally:
            loop.close()

    async def _fetch(self, url: str) -> Optional[str]:
        try:
            async with aiohttp.ClientSession(
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent}
            ) as session:
                async with session.get(url, allow_redirects=True) as response:
                    if response.status != 200:
                        self.logger.debug(f"Live fetch {url}: HTTP {response.status}")
                        return None
                    length = response.content_length
                    if length is not None and length > self.max_bytes:
                        return None
                    body = await response.read()
                    content_type = (response.headers.get("Content-Type") or "").lower()
        except ClientError as e:
            self.logger.debug(f"Live fetch {url} failed: {e}")
            return None
        except asyncio.TimeoutError:
            self.logger.debug(f"Live fetch {url} timed out")
            return None

        if len(body) > self.max_bytes:
            return None

        target = os.path.join(self.root, ASSETS_DIR, fingerprint(url, content_type))
        try:
            write_bytes_atomic(target, body)
        except OSError as e:
            self.logger.warning(f"Could not cache {url}: {e}")
            return None

        self.logger.info(f"[fetch-cache] {url} -> {os.path.relpath(target, self.root)}")
        return target
