"""
Web module for the shop archiver.

Provides the Flask application that serves a captured run offline.
"""

from .app import create_app

__all__ = ["create_app"]
