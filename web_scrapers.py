#!/usr/bin/env python3
"""
Wallpaper Downloader - Web Scraping Backends

Sites without a usable API, read by scraping the post page.
Supports the Alphacoders family: Wallpaper Abyss, Art Abyss, Image Abyss.

HTML Structure (shared by all three sites):
- Download button: <a id="{service}_{id}_download_button" href="https://...">
- Title: the `title` attribute of the main image element

All markup knowledge is kept as class-level data (SERVICE, TITLE_CSS, ID
extraction) so a layout change touches one backend only.
"""

import logging
from abc import abstractmethod
from typing import TYPE_CHECKING, Optional
from urllib.parse import parse_qs, urlparse

from bs4 import BeautifulSoup

from backends import Backend, absolute_image_url, strip_prefix
from errors import ParseError
from extractors import SelectAttr, extract, parse_document, require

if TYPE_CHECKING:
    from http_client import HttpClient

logger = logging.getLogger("wallpaper_dl")


# =============================================================================
# ALPHACODERS CORE
# =============================================================================

class AlphacodersBackend(Backend):
    """
    The core parts of every Alphacoders-based scraper.

    Subclasses provide:
        SERVICE: keyword used in the download button id ("wallpaper", "art", ...)
        TITLE_CSS: selector of the element whose `title` attribute is the title
        parse_id(): how the post ID is read from the URL
    """

    SERVICE: str = ""
    TITLE_CSS: str = ""
    DOWNLOAD_ATTR = "href"
    TITLE_ATTR = "title"

    def __init__(
        self,
        url: str,
        post_id: str,
        document: BeautifulSoup,
        download: SelectAttr,
        title: SelectAttr,
    ):
        super().__init__(url)
        self.post_id = post_id
        self.document = document
        self.download_rule = download
        self.title_rule = title

    @classmethod
    @abstractmethod
    def parse_id(cls, url: str) -> str:
        """Post ID from the URL. Raises ParseError when the URL has none."""

    @classmethod
    def build_rules(cls, post_id: str) -> tuple[SelectAttr, SelectAttr]:
        """Selector rules for one post. Raises ParseError on a malformed selector."""
        download = SelectAttr.parse(f"a#{cls.SERVICE}_{post_id}_download_button", cls.DOWNLOAD_ATTR)
        title = SelectAttr.parse(cls.TITLE_CSS, cls.TITLE_ATTR)
        return download, title

    @classmethod
    async def create(cls, client: "HttpClient", url: str) -> "AlphacodersBackend":
        post_id = cls.parse_id(url)
        download, title = cls.build_rules(post_id)

        response = await client.get(url)
        document = parse_document(response.text())
        logger.debug(f"{cls.NAME}: parsed post page for {post_id}")
        return cls(url, post_id, document, download, title)

    def image_id(self) -> str:
        return self.post_id

    def image_urls(self) -> list[str]:
        link = require(self.document, self.download_rule, self.url)
        return [absolute_image_url(link, self.url)]

    def image_title(self) -> Optional[str]:
        title = extract(self.document, self.title_rule)
        if title is None:
            raise ParseError(f"{self.NAME}: title element not found", self.url)
        return title


# =============================================================================
# ALPHACODERS SITES
# =============================================================================

class WallpaperAbyss(AlphacodersBackend):
    """Wallpaper Abyss, post URLs look like /big.php?i=<id>"""

    HOST = "wall.alphacoders.com"
    NAME = "Wallpaper Abyss"
    SERVICE = "wallpaper"
    TITLE_CSS = "img#main-content"

    @classmethod
    def parse_id(cls, url: str) -> str:
        values = parse_qs(urlparse(url).query).get("i")
        if not values or not values[0].strip():
            raise ParseError("URL query did not match i=<id>", url)
        return values[0].strip()


class ArtAbyss(AlphacodersBackend):
    """Art Abyss, post URLs look like /arts/view/<id>"""

    HOST = "art.alphacoders.com"
    NAME = "Art Abyss"
    SERVICE = "art"
    TITLE_CSS = "img.img-responsive"
    PATH_PREFIX = "/arts/view/"

    @classmethod
    def parse_id(cls, url: str) -> str:
        return strip_prefix(urlparse(url).path, cls.PATH_PREFIX, url)


class ImageAbyss(AlphacodersBackend):
    """Image Abyss, post URLs look like /pictures/view/<id>"""

    HOST = "pics.alphacoders.com"
    NAME = "Image Abyss"
    SERVICE = "picture"
    TITLE_CSS = "img.img-responsive"
    PATH_PREFIX = "/pictures/view/"

    @classmethod
    def parse_id(cls, url: str) -> str:
        return strip_prefix(urlparse(url).path, cls.PATH_PREFIX, url)
