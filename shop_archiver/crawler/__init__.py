"""
Capture module for the shop archiver.

Contains the browser driver, asset store, DOM rewriting, manifest and the
capture engine.
"""

from .browser import PlaywrightDriver
from .capture import CaptureEngine
from .fingerprint import AssetStore, fingerprint
from .manifest import ManifestWriter, PageCaptureRecord
from .rewrite import PageRewriter

__all__ = [
    "PlaywrightDriver",
    "CaptureEngine",
    "AssetStore",
    "fingerprint",
    "ManifestWriter",
    "PageCaptureRecord",
    "PageRewriter",
]
