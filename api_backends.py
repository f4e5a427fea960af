#!/usr/bin/env python3
"""
Wallpaper Downloader - API Backends

Sites with a public JSON API. Each backend rewrites the post URL into the
API endpoint, issues exactly one GET and keeps the decoded record:
- Wallhaven:  /w/<id>          -> /api/v1/w/<id>
- ArtStation: /artwork/<slug>  -> /projects/<slug>.json   (multi-asset)
- Danbooru:   /posts/<id>      -> /posts/<id>.json
"""

import logging
from typing import TYPE_CHECKING, Any, Optional
from urllib.parse import urlparse

from backends import Backend, absolute_image_url, strip_prefix, with_path
from errors import ParseError

if TYPE_CHECKING:
    from http_client import HttpClient

logger = logging.getLogger("wallpaper_dl")


async def fetch_json_object(client: "HttpClient", api_url: str) -> dict[str, Any]:
    """GET an API endpoint and insist on a JSON object."""
    response = await client.get(api_url)
    payload = response.json()
    if not isinstance(payload, dict):
        raise ParseError("API response is not a JSON object", api_url)
    return payload


# =============================================================================
# WALLHAVEN
# =============================================================================

class Wallhaven(Backend):
    """
    Backend for https://wallhaven.cc/

    API response (abridged):
        {"data": {"id": "abc123", "path": "https://w.wallhaven.cc/full/ab/...",
                  "category": "general", "purity": "sfw",
                  "tags": [{"id": 1, "name": "forest", ...}, ...]}}
    """

    HOST = "wallhaven.cc"
    NAME = "Wallhaven"

    def __init__(self, url: str, data: dict[str, Any]):
        super().__init__(url)
        self.data = data

    @classmethod
    async def create(cls, client: "HttpClient", url: str) -> "Wallhaven":
        api_url = with_path(url, f"/api/v1{urlparse(url).path}")
        payload = await fetch_json_object(client, api_url)

        data = payload.get("data")
        if not isinstance(data, dict) or not data.get("id"):
            raise ParseError("Wallhaven API response has no data.id", api_url)
        return cls(url, data)

    def image_id(self) -> str:
        return str(self.data["id"])

    def image_urls(self) -> list[str]:
        path = self.data.get("path")
        if not isinstance(path, str) or not path:
            raise ParseError("Wallhaven API response has no data.path", self.url)
        return [absolute_image_url(path, self.url)]

    def image_tags(self) -> Optional[list[str]]:
        raw_tags = self.data.get("tags")
        if not isinstance(raw_tags, list):
            return None

        tags = [
            tag["name"] for tag in raw_tags
            if isinstance(tag, dict) and isinstance(tag.get("name"), str) and tag["name"]
        ]
        category = self.data.get("category")
        if isinstance(category, str) and category:
            tags.append(category)
        return tags


# =============================================================================
# ARTSTATION
# =============================================================================

class ArtStation(Backend):
    """
    Backend for https://www.artstation.com/

    A project groups several assets (images, videos, 3D viewers, covers).
    Only assets of type "image" are wallpapers; their URLs point at the
    "large" rendition and are rewritten to the "4k" one.
    """

    HOST = "artstation.com"
    NAME = "ArtStation"
    PATH_PREFIX = "/artwork/"

    def __init__(self, url: str, slug: str, data: dict[str, Any]):
        super().__init__(url)
        self.slug = slug
        self.data = data

    @classmethod
    async def create(cls, client: "HttpClient", url: str) -> "ArtStation":
        slug = strip_prefix(urlparse(url).path, cls.PATH_PREFIX, url)
        api_url = with_path(url, f"/projects/{slug}.json")
        data = await fetch_json_object(client, api_url)
        return cls(url, slug, data)

    def image_id(self) -> str:
        return str(self.data.get("hash_id") or self.slug)

    def image_urls(self) -> list[str]:
        assets = self.data.get("assets")
        if not isinstance(assets, list):
            raise ParseError("ArtStation project has no asset list", self.url)

        urls = []
        for asset in assets:
            if not isinstance(asset, dict) or asset.get("asset_type") != "image":
                continue
            image_url = asset.get("image_url")
            if not image_url:
                continue
            urls.append(absolute_image_url(image_url.replace("/large/", "/4k/"), self.url))

        if not urls:
            raise ParseError("ArtStation project has no image assets", self.url)
        return urls

    def image_title(self) -> Optional[str]:
        title = self.data.get("title")
        if not isinstance(title, str) or not title.strip():
            return None
        return title.strip()

    def image_tags(self) -> Optional[list[str]]:
        tags = self.data.get("tags")
        if not isinstance(tags, list):
            return None
        return [tag for tag in tags if isinstance(tag, str) and tag]


# =============================================================================
# DANBOORU
# =============================================================================

class Danbooru(Backend):
    """Backend for https://danbooru.donmai.us/ (posts API, no titles)."""

    HOST = "danbooru.donmai.us"
    NAME = "Danbooru"

    def __init__(self, url: str, data: dict[str, Any]):
        super().__init__(url)
        self.data = data

    @classmethod
    async def create(cls, client: "HttpClient", url: str) -> "Danbooru":
        path = urlparse(url).path.rstrip("/")
        if not path.startswith("/posts/"):
            raise ParseError("URL path does not match /posts/<id>", url)
        data = await fetch_json_object(client, with_path(url, f"{path}.json"))
        if data.get("id") is None:
            raise ParseError("Danbooru API response has no id", url)
        return cls(url, data)

    def image_id(self) -> str:
        return str(self.data["id"])

    def image_urls(self) -> list[str]:
        # Restricted posts come back without file_url
        file_url = self.data.get("file_url")
        if not file_url:
            raise ParseError("Danbooru post has no file_url", self.url)
        return [absolute_image_url(file_url, self.url)]

    def image_tags(self) -> Optional[list[str]]:
        tag_string = self.data.get("tag_string")
        if not isinstance(tag_string, str):
            return None
        return tag_string.split()
