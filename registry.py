#!/usr/bin/env python3
"""
Wallpaper Downloader - Backend Registry

Maps a URL's host to the backend that understands it. A host matches a
pattern when it is equal to it or ends with "." + pattern, so
www.artstation.com is routed to the artstation.com backend.

Patterns must be disjoint: no pattern may equal or be a dot-suffix of
another. The check runs when the table is built, so table order can never
decide which backend wins.
"""

import logging
from typing import TYPE_CHECKING, Iterable, Optional
from urllib.parse import urlparse

from api_backends import ArtStation, Danbooru, Wallhaven
from backends import Backend
from errors import Unsupported
from web_scrapers import ArtAbyss, ImageAbyss, WallpaperAbyss

if TYPE_CHECKING:
    from http_client import HttpClient

logger = logging.getLogger("wallpaper_dl")


def host_matches(host: str, pattern: str) -> bool:
    """Exact or dot-suffix host match."""
    host = (host or "").lower().rstrip(".")
    pattern = pattern.lower()
    return host == pattern or host.endswith(f".{pattern}")


def build_table(backends: Iterable[type[Backend]]) -> dict[str, type[Backend]]:
    """
    Build the host -> backend table.

    Raises:
        ValueError: A backend has no HOST or two host patterns overlap.
    """
    table: dict[str, type[Backend]] = {}
    for backend in backends:
        pattern = backend.HOST.lower()
        if not pattern:
            raise ValueError(f"{backend.__name__} has no HOST")
        for existing, other in table.items():
            if host_matches(pattern, existing) or host_matches(existing, pattern):
                raise ValueError(
                    f"Host patterns overlap: {pattern} ({backend.__name__}) "
                    f"and {existing} ({other.__name__})"
                )
        table[pattern] = backend
    return table


BACKENDS: dict[str, type[Backend]] = build_table([
    Wallhaven,
    WallpaperAbyss,
    ArtAbyss,
    ImageAbyss,
    ArtStation,
    Danbooru,
])


def lookup(url: str, table: Optional[dict[str, type[Backend]]] = None) -> type[Backend]:
    """
    Find the backend class for a URL without touching the network.

    Raises:
        Unsupported: No pattern matches the URL's host.
    """
    table = BACKENDS if table is None else table
    host = urlparse(url).hostname or ""
    matches = [backend for pattern, backend in table.items() if host_matches(host, pattern)]
    if not matches:
        raise Unsupported(host, url)
    return matches[0]


async def resolve(client: "HttpClient", url: str) -> Backend:
    """
    Construct the backend instance for a post URL.

    Raises:
        Unsupported: Host is not in the registry (no request is made).
        DownloaderError: The backend failed to construct.
    """
    backend_cls = lookup(url)
    logger.info(f"Fetching {url} ({backend_cls.NAME})")
    return await backend_cls.create(client, url)


def supported_hosts() -> list[str]:
    return sorted(BACKENDS)
