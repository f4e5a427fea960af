#!/usr/bin/env python3
"""
Wallpaper Downloader - Error Taxonomy

Every failure a backend or the HTTP layer can produce is one of:
- ConnectionFailed: the request could not be sent (DNS, TLS, refused)
- RequestFailed: the request was sent but the answer was unusable
  (non-2xx status, timeout, malformed request)
- ParseError: HTML/JSON/URL could not be parsed or a field was not found
- Unsupported: no backend is registered for the host

A title or tag list that a site simply does not offer is NOT an error:
backends return None for it.
"""

from typing import Optional


class DownloaderError(Exception):
    """Base class for all per-URL and per-file download failures."""

    kind = "error"

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.url = url

    def __str__(self) -> str:
        if self.url:
            return f"{self.message} ({self.url})"
        return self.message


class ConnectionFailed(DownloaderError):
    """The request could not be sent. Most likely a core network issue."""

    kind = "connection_failed"


class RequestFailed(DownloaderError):
    """The request was sent but the response was unexpected."""

    kind = "request_failed"


class ParseError(DownloaderError):
    """Website data could not be parsed."""

    kind = "parse_error"


class Unsupported(DownloaderError):
    """No backend is registered for the URL's host."""

    kind = "unsupported"

    def __init__(self, host: str, url: Optional[str] = None):
        super().__init__(f"{host or '<no host>'} is not supported", url)
        self.host = host


class ConfigError(Exception):
    """The configuration file is malformed or holds an invalid value."""


class DatabaseError(Exception):
    """The wallpaper database file could not be read."""
