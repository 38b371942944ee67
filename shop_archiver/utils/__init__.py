"""
Utility modules for the shop archiver.

Contains logging, URL normalization, same-site policy, configuration and constants.
"""

from .log import setup_logger, get_logger
from .paths import UrlNormalizer, normalize, page_local_path, ensure_dir
from .domain import SameSitePolicy
from .config import ArchiverSettings, ConfigError

__all__ = [
    "setup_logger",
    "get_logger",
    "UrlNormalizer",
    "normalize",
    "page_local_path",
    "ensure_dir",
    "SameSitePolicy",
    "ArchiverSettings",
    "ConfigError",
]
