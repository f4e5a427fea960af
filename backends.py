#!/usr/bin/env python3
"""
Wallpaper Downloader - Backend Contract

A backend translates one post URL of one website into wallpaper metadata.
Two construction strategies exist:
- API: rewrite the post URL into a JSON endpoint, one GET, keep the record
  (api_backends.py)
- Scraping: GET the post page, parse it once, apply per-site selector rules
  (web_scrapers.py)

Accessor results are three-state:
- a value
- None: the site does not offer this field (title/tags only)
- raised DownloaderError: the field should exist but could not be extracted
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional
from urllib.parse import urljoin, urlparse, urlunparse

from errors import ParseError

if TYPE_CHECKING:
    from http_client import HttpClient


class Backend(ABC):
    """
    Base class of every site adapter.

    Subclasses set HOST (matched exactly or as a dot-suffix of the URL host by
    the registry) and NAME, and implement create() plus the accessors.
    """

    HOST: str = ""
    NAME: str = ""

    def __init__(self, url: str):
        self.url = url

    @classmethod
    @abstractmethod
    async def create(cls, client: "HttpClient", url: str) -> "Backend":
        """
        Build the adapter for a post URL, issuing whatever requests it needs.

        Raises:
            DownloaderError: Transport, status or parse failure.
        """

    @abstractmethod
    def image_id(self) -> str:
        """Stable, backend-derived post ID."""

    @abstractmethod
    def image_urls(self) -> list[str]:
        """Full-resolution image URLs in the source's listing order."""

    def image_title(self) -> Optional[str]:
        """Post title, None if the site has none."""
        return None

    def image_tags(self) -> Optional[list[str]]:
        """Post tags, None if the site has none."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(url={self.url!r})"


# =============================================================================
# URL HELPERS
# =============================================================================

def with_path(url: str, path: str) -> str:
    """Return `url` with its path replaced (query and fragment dropped)."""
    parsed = urlparse(url)
    return urlunparse((parsed.scheme, parsed.netloc, path, "", "", ""))


def strip_prefix(path: str, prefix: str, url: Optional[str] = None) -> str:
    """
    Take the ID that follows a fixed path prefix.

    Raises:
        ParseError: The path does not start with the prefix or nothing follows it.
    """
    if not path.startswith(prefix):
        raise ParseError(f"URL path does not match {prefix}<id>", url)
    value = path[len(prefix):].strip("/")
    if not value:
        raise ParseError(f"URL path does not match {prefix}<id>", url)
    return value


def absolute_image_url(link: str, base: str) -> str:
    """
    Resolve a possibly relative link against the page URL.

    Raises:
        ParseError: The link is not an http(s) URL.
    """
    if not isinstance(link, str):
        raise ParseError(f"Not a usable image URL: {link!r}", base)
    try:
        resolved = urljoin(base, link.strip())
        parsed = urlparse(resolved)
    except ValueError as e:
        raise ParseError(f"Malformed image URL {link!r}: {e}", base) from e
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ParseError(f"Not a usable image URL: {link!r}", base)
    return resolved
