"""
robots.txt reader for the shop archiver.

The archiver makes no politeness guarantees; robots.txt is read only for its
Sitemap directives.
"""

from typing import List
from urllib.parse import urljoin, urlsplit

from .log import get_logger


class RobotsFile:
    """Sitemap directives of a site's robots.txt."""

    def __init__(self, robots_url: str):
        self.robots_url = robots_url
        self.sitemaps: List[str] = []
        self.loaded = False
        self.logger = get_logger("robots")

    @classmethod
    def for_site(cls, base_url: str) -> "RobotsFile":
        parts = urlsplit(base_url)
        return cls(f"{parts.scheme}://{parts.netloc}/robots.txt")

    async def load(self, client) -> bool:
        """
        Fetch and parse robots.txt.

        Args:
            client: HttpClient used for the request

        Returns:
            True if a robots.txt was fetched and parsed
        """
        response = await client.get(self.robots_url)
        if response is None or response.status != 200:
            status = response.status if response else "no response"
            self.logger.info(f"No robots.txt at {self.robots_url} ({status})")
            return False

        self.parse(response.text)
        self.loaded = True
        self.logger.info(
            f"Loaded robots.txt from {self.robots_url}: {len(self.sitemaps)} sitemap(s)"
        )
        return True

    def parse(self, content: str) -> None:
        """
        Parse robots.txt content.

        Sitemap lines are global, not tied to a user-agent block, so every
        other directive is ignored.

        Args:
            content: robots.txt file content
        """
        for line in content.splitlines():
            line = line.split("#", 1)[0].strip()
            if ":" not in line:
                continue

            directive, value = line.split(":", 1)
            if directive.strip().lower() != "sitemap":
                continue
            value = value.strip()
            if value:
                sitemap = urljoin(self.robots_url, value)
                if sitemap not in self.sitemaps:
                    self.sitemaps.append(sitemap)
