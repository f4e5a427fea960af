#!/usr/bin/env python3
"""
Wallpaper Downloader - HTTP Client

Thin wrapper around a single aiohttp session:
- Identifying User-Agent header on every request
- Per-request timeout
- Mandatory delay after every successful request, serialized per host
- aiohttp exceptions mapped onto the downloader error taxonomy
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlparse

import aiohttp

from errors import ConnectionFailed, ParseError, RequestFailed

logger = logging.getLogger("wallpaper_dl")

APP_NAME = "wallpaper-dl"
APP_VERSION = "0.4.0"
USER_AGENT = f"{APP_NAME}/{APP_VERSION}"


@dataclass
class HttpResponse:
    """A fully read HTTP response."""
    url: str  # final URL after redirects
    status: int
    content_type: str = ""
    content_disposition: Optional[str] = None
    body: bytes = b""

    def text(self, encoding: str = "utf-8") -> str:
        """Decode the body, replacing undecodable bytes."""
        return self.body.decode(encoding, errors="replace")

    def json(self) -> Any:
        """Deserialize the body as JSON."""
        try:
            return json.loads(self.body)
        except (ValueError, UnicodeDecodeError) as e:
            raise ParseError(f"Invalid JSON response: {e}", self.url) from e


class HttpClient:
    """
    Async HTTP client used by every backend and by the file downloader.

    Requests to the same host are serialized and followed by `delay_ms`
    of sleep, so target sites see at most one request per delay window
    no matter how many workers are running.

    Usage:
        async with HttpClient(delay_ms=450) as client:
            response = await client.get(url)
    """

    def __init__(
        self,
        user_agent: str = USER_AGENT,
        delay_ms: int = 450,
        timeout_sec: float = 30.0,
    ):
        self.user_agent = user_agent
        self.delay_ms = max(0, int(delay_ms))
        self.timeout_sec = timeout_sec
        self.session: Optional[aiohttp.ClientSession] = None
        self._host_locks: dict[str, asyncio.Lock] = {}
        self.request_count = 0

    async def __aenter__(self) -> "HttpClient":
        self.session = aiohttp.ClientSession(
            headers={"User-Agent": self.user_agent},
            timeout=aiohttp.ClientTimeout(total=self.timeout_sec),
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self.session is not None:
            await self.session.close()
            self.session = None

    def _lock_for(self, host: str) -> asyncio.Lock:
        lock = self._host_locks.get(host)
        if lock is None:
            lock = asyncio.Lock()
            self._host_locks[host] = lock
        return lock

    async def get(self, url: str) -> HttpResponse:
        """
        Issue one GET request and read the whole body.

        Args:
            url: Absolute URL to fetch.

        Returns:
            HttpResponse with the body fully read.

        Raises:
            ConnectionFailed: DNS/TLS/connection level failure.
            RequestFailed: Non-2xx status, timeout or malformed request.
            ParseError: The response body could not be read.
        """
        if self.session is None:
            raise RuntimeError("HttpClient must be used as an async context manager")

        host = (urlparse(url).hostname or "").lower()
        async with self._lock_for(host):
            response = await self._fetch(url)
            self.request_count += 1
            if self.delay_ms:
                await asyncio.sleep(self.delay_ms / 1000)
        return response

    async def _fetch(self, url: str) -> HttpResponse:
        logger.debug(f"GET {url}")
        try:
            async with self.session.get(url) as resp:
                if not 200 <= resp.status < 300:
                    raise RequestFailed(f"HTTP {resp.status} {resp.reason or ''}".strip(), url)
                body = await resp.read()
                return HttpResponse(
                    url=str(resp.url),
                    status=resp.status,
                    content_type=resp.headers.get("Content-Type", ""),
                    content_disposition=resp.headers.get("Content-Disposition"),
                    body=body,
                )
        except asyncio.TimeoutError as e:
            raise RequestFailed(f"Request timed out after {self.timeout_sec}s", url) from e
        except aiohttp.InvalidURL as e:
            raise RequestFailed(f"Invalid URL: {e}", url) from e
        except aiohttp.ClientPayloadError as e:
            raise ParseError(f"Could not read response body: {e}", url) from e
        except aiohttp.ClientConnectionError as e:
            raise ConnectionFailed(f"Connection failed: {e}", url) from e
        except aiohttp.ClientError as e:
            raise RequestFailed(f"Request failed: {e}", url) from e
