"""
Shop Archiver - offline archives of e-commerce sites.

This package discovers the pages of a shop, captures them in a headless
browser with their assets, and serves the captured run offline.
"""

__version__ = "1.0.0"
__author__ = "Shop Archiver Team"
