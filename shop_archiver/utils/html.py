"""HTML parsing helper shared by the link extractor and the rewriters."""

from bs4 import BeautifulSoup, FeatureNotFound


def make_soup(html: str) -> BeautifulSoup:
    """Parse HTML with lxml, falling back to the stdlib parser when lxml is unavailable."""
    try:
        return BeautifulSoup(html, "lxml")
    except FeatureNotFound:
        return BeautifulSoup(html, "html.parser")
