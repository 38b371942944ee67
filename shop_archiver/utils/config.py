"""
Environment-style configuration for the shop archiver.

Every tunable has a documented default in constants.py; ArchiverSettings.from_env
reads overrides from the environment and the CLI applies its flags on top.
"""

import os
import re
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Mapping, Optional, Pattern, Tuple

from . import constants as C
from .domain import SAME_SITE_MODES, SameSitePolicy
from .paths import QUERY_MODES, UrlNormalizer


TRUE_VALUES = ("1", "true", "yes", "on")


class ConfigError(ValueError):
    """Fatal configuration problem detected before any work starts."""


def compile_regex(value: Optional[str], name: str) -> Optional[Pattern]:
    """
    Compile an optional case-insensitive pattern.

    Raises:
        ConfigError: If the pattern is malformed
    """
    if not value:
        return None
    try:
        return re.compile(value, re.IGNORECASE)
    except re.error as e:
        raise ConfigError(f"Invalid {name}: {e}") from e


def parse_id_range(value: Optional[str]) -> Optional[Tuple[int, int]]:
    """Parse an 'start-end' ID range override."""
    if not value:
        return None
    match = re.fullmatch(r"\s*(\d+)\s*[-:]\s*(\d+)\s*", value)
    if not match:
        raise ConfigError(f"Invalid ID_RANGE (expected start-end): {value}")
    start, end = int(match.group(1)), int(match.group(2))
    if end < start:
        raise ConfigError(f"Invalid ID_RANGE (end before start): {value}")
    return start, end


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in re.split(r"[,\s]+", value or "") if item.strip()]


@dataclass
class ArchiverSettings:
    """All tunables of discovery, capture and serving."""

    # discovery
    max_pages: int = C.DEFAULT_MAX_PAGES
    max_depth: int = C.DEFAULT_MAX_DEPTH
    same_site_mode: str = "subdomains"
    extra_hosts_regex: str = ""
    allow_regex: str = ""
    deny_regex: str = ""
    query_mode: str = "sort"
    keep_query_params: List[str] = field(default_factory=list)
    target_count: int = C.DEFAULT_TARGET_COUNT
    api_max_items: int = C.DEFAULT_API_MAX_ITEMS
    sitemap_max_urls: int = C.DEFAULT_SITEMAP_MAX_URLS
    pattern_sample_size: int = C.DEFAULT_PATTERN_SAMPLE_SIZE
    id_range: str = ""
    id_max_range: int = C.DEFAULT_ID_MAX_RANGE
    id_delay: float = C.DEFAULT_ID_DELAY
    id_probe: bool = False
    http_timeout: int = C.DEFAULT_TIMEOUT

    # capture
    concurrency: int = C.DEFAULT_CONCURRENCY
    nav_timeout: int = C.DEFAULT_NAV_TIMEOUT
    page_timeout: int = C.DEFAULT_PAGE_TIMEOUT
    retries: int = C.DEFAULT_RETRIES
    retry_delay: int = C.DEFAULT_RETRY_DELAY
    scroll_passes: int = C.DEFAULT_SCROLL_PASSES
    scroll_delay: int = C.DEFAULT_SCROLL_DELAY
    wait_extra: int = C.DEFAULT_WAIT_EXTRA
    quiet_millis: int = C.DEFAULT_QUIET_MILLIS
    max_capture_ms: int = C.DEFAULT_MAX_CAPTURE_MS
    asset_max_bytes: int = C.DEFAULT_ASSET_MAX_BYTES
    asset_body_timeout: int = C.DEFAULT_ASSET_BODY_TIMEOUT
    include_cross_origin: bool = False
    block_trackers: bool = True
    tracker_regex: str = C.DEFAULT_TRACKER_REGEX
    profiles: List[str] = field(default_factory=lambda: ["desktop"])
    headless: bool = True
    user_agent: str = C.DEFAULT_USER_AGENT

    # serving
    default_variant: str = "desktop"
    disable_fetch_cache: bool = False
    disable_html_inject: bool = False
    disable_spa_scripts: bool = False
    enable_graph_routing: bool = True
    start_path: str = ""

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ArchiverSettings":
        """
        Build settings from environment variables named after the fields
        in upper case (MAX_PAGES, ASSET_MAX_BYTES, ...).

        Raises:
            ConfigError: On non-numeric numbers or invalid values
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        defaults = cls()

        for f in fields(cls):
            raw = environ.get(f.name.upper())
            if raw is None or raw == "":
                continue
            current = getattr(defaults, f.name)
            try:
                if isinstance(current, bool):
                    values[f.name] = raw.strip().lower() in TRUE_VALUES
                elif isinstance(current, int):
                    values[f.name] = int(raw)
                elif isinstance(current, float):
                    values[f.name] = float(raw)
                elif isinstance(current, list):
                    values[f.name] = _split_list(raw)
                else:
                    values[f.name] = raw.strip()
            except ValueError as e:
                raise ConfigError(f"Invalid {f.name.upper()}={raw!r}: {e}") from e

        settings = cls(**values)
        settings.validate()
        return settings

    def with_overrides(self, **overrides: Any) -> "ArchiverSettings":
        """Copy with the non-None overrides applied, then validated."""
        clean = {k: v for k, v in overrides.items() if v is not None}
        settings = replace(self, **clean)
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.same_site_mode not in SAME_SITE_MODES:
            raise ConfigError(f"Invalid SAME_SITE_MODE: {self.same_site_mode}")
        if self.query_mode not in QUERY_MODES:
            raise ConfigError(f"Invalid QUERY_MODE: {self.query_mode}")
        unknown = [p for p in self.profiles if p not in C.PROFILES]
        if unknown or not self.profiles:
            raise ConfigError(f"Invalid PROFILES: {', '.join(unknown) or '(empty)'}")
        if self.default_variant not in C.PROFILES:
            raise ConfigError(f"Invalid DEFAULT_VARIANT: {self.default_variant}")
        if self.concurrency < 1:
            raise ConfigError("CONCURRENCY must be at least 1")
        if self.max_pages < 1 or self.max_depth < 0:
            raise ConfigError("MAX_PAGES must be >= 1 and MAX_DEPTH >= 0")
        if self.retries < 0:
            raise ConfigError("RETRIES must be >= 0")
        # compiled once here so malformed patterns fail before any work starts
        for name in ("allow_regex", "deny_regex", "extra_hosts_regex", "tracker_regex"):
            compile_regex(getattr(self, name), name.upper())
        parse_id_range(self.id_range)

    @property
    def allow_pattern(self) -> Optional[Pattern]:
        return compile_regex(self.allow_regex, "ALLOW_REGEX")

    @property
    def deny_pattern(self) -> Optional[Pattern]:
        return compile_regex(self.deny_regex, "DENY_REGEX")

    @property
    def tracker_pattern(self) -> Optional[Pattern]:
        if not self.block_trackers:
            return None
        return compile_regex(self.tracker_regex, "TRACKER_REGEX")

    @property
    def id_range_override(self) -> Optional[Tuple[int, int]]:
        return parse_id_range(self.id_range)

    def normalizer(self) -> UrlNormalizer:
        return UrlNormalizer(self.query_mode, self.keep_query_params)

    def same_site(self, seeds: List[str]) -> SameSitePolicy:
        return SameSitePolicy(
            seeds,
            mode=self.same_site_mode,
            extra_hosts=compile_regex(self.extra_hosts_regex, "EXTRA_HOSTS_REGEX")
        )

    def echo(self) -> Dict[str, Any]:
        """Plain dict of the settings for report files."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def asset_site(self, seeds: List[str]) -> SameSitePolicy:
        """
        Same-site policy for captured assets: sibling hosts of the shop
        (cdn., static., media.) count unless the mode is exact.
        """
        mode = "exact" if self.same_site_mode == "exact" else "etld"
        return SameSitePolicy(
            seeds,
            mode=mode,
            extra_hosts=compile_regex(self.extra_hosts_regex, "EXTRA_HOSTS_REGEX")
        )
