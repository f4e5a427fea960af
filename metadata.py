#!/usr/bin/env python3
"""
Wallpaper Downloader - Post Metadata

Reconciles a backend's accessors into one PostMetadata record. Image URLs
are mandatory; title and tags are best-effort and collapse to "not present"
whether the site lacks them or extraction failed.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse

from backends import Backend
from errors import DownloaderError, ParseError

logger = logging.getLogger("wallpaper_dl")


@dataclass
class PostMetadata:
    """Normalized metadata of one post."""
    id: str
    source: str  # post URL as given by the user
    images: list[str]
    title: Optional[str] = None
    tags: list[str] = field(default_factory=list)  # deduplicated, sorted

    @property
    def host(self) -> str:
        return (urlparse(self.source).hostname or "").lower()

    @property
    def is_multi(self) -> bool:
        return len(self.images) > 1

    def __repr__(self) -> str:
        return f"PostMetadata(id={self.id}, images={len(self.images)}, title={self.title!r})"


def normalize(backend: Backend) -> PostMetadata:
    """
    Build PostMetadata from a constructed backend.

    Raises:
        DownloaderError: image_urls() failed or returned nothing.
    """
    images = backend.image_urls()
    if not images:
        raise ParseError("Post has no images", backend.url)

    try:
        title = backend.image_title()
    except DownloaderError as e:
        logger.debug(f"Title not available for {backend.url}: {e}")
        title = None

    try:
        raw_tags = backend.image_tags()
    except DownloaderError as e:
        logger.debug(f"Tags not available for {backend.url}: {e}")
        raw_tags = None

    if raw_tags is not None and not isinstance(raw_tags, list):
        logger.debug(f"Ignoring tags of {backend.url}: not a list")
        raw_tags = None
    tags = sorted({tag.strip() for tag in raw_tags or [] if isinstance(tag, str) and tag.strip()})

    if not isinstance(title, str):
        title = None

    return PostMetadata(
        id=backend.image_id(),
        source=backend.url,
        images=list(images),
        title=title.strip() or None if title else None,
        tags=tags,
    )
