#!/usr/bin/env python3
"""
Wallpaper Downloader - Download Orchestrator

Drives one invocation end to end:
1. Validate and deduplicate input URLs, skip sources already in the database
2. Per URL: registry -> backend -> normalized metadata
3. Per image: fetch, resolve directory and filename, write, hash, record
4. Single-URL runs move the current wallpaper to the new file
5. Persist database and config once at the end

Failures are isolated per URL and per file. Only a failed save at the end
makes the run fail.

State of one input URL:
    PENDING -> DISPATCHED -> NORMALIZED | UNSUPPORTED | FAILED
    NORMALIZED -> SAVED | PARTIALLY_SAVED | ALL_FILES_FAILED
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional, Tuple
from urllib.parse import urlparse

import registry
from config_loader import ConfigLoader, Sort
from dedup_manager import WallpaperDatabase, atomic_write, content_hash, save_database
from errors import DownloaderError, Unsupported
from file_placement import file_extension, format_filename, resolve_directory, resolve_name
from metadata import PostMetadata, normalize
from reporting import RunStats

if TYPE_CHECKING:
    from http_client import HttpClient

logger = logging.getLogger("wallpaper_dl")


class UrlState(str, Enum):
    PENDING = "pending"
    DISPATCHED = "dispatched"
    NORMALIZED = "normalized"
    UNSUPPORTED = "unsupported"
    FAILED = "failed"
    SAVED = "saved"
    PARTIALLY_SAVED = "partially_saved"
    ALL_FILES_FAILED = "all_files_failed"

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS.get(self)


_TRANSITIONS: dict[UrlState, frozenset] = {
    UrlState.PENDING: frozenset({UrlState.DISPATCHED}),
    UrlState.DISPATCHED: frozenset({UrlState.NORMALIZED, UrlState.UNSUPPORTED, UrlState.FAILED}),
    UrlState.NORMALIZED: frozenset({
        UrlState.SAVED, UrlState.PARTIALLY_SAVED, UrlState.ALL_FILES_FAILED,
    }),
}


@dataclass
class SavedFile:
    """One image written (or found already stored) for a post."""
    digest: str
    path: Path
    relative: str
    image_url: str
    duplicate: bool = False  # bytes were already stored, nothing written


@dataclass
class UrlOutcome:
    """Result of one input URL."""
    url: str
    state: UrlState = UrlState.PENDING
    backend: Optional[str] = None
    metadata: Optional[PostMetadata] = None
    error: Optional[str] = None
    files: list[SavedFile] = field(default_factory=list)
    file_errors: list[str] = field(default_factory=list)

    @property
    def errors(self) -> list[str]:
        return ([self.error] if self.error else []) + self.file_errors

    def advance(self, state: UrlState) -> None:
        if state not in _TRANSITIONS.get(self.state, ()):
            raise RuntimeError(f"Invalid transition {self.state.value} -> {state.value} for {self.url}")
        self.state = state


def parse_urls(raw_urls: Iterable[str]) -> Tuple[list[str], list[str]]:
    """
    Validate input URLs and drop repeats, keeping first-seen order.

    Returns:
        Tuple of (valid urls, invalid inputs).
    """
    valid: dict[str, None] = {}
    invalid = []
    for raw in raw_urls:
        url = raw.strip()
        try:
            parsed = urlparse(url)
            usable = parsed.scheme in ("http", "https") and bool(parsed.hostname)
        except ValueError:
            usable = False
        if usable:
            valid.setdefault(url, None)
        else:
            invalid.append(raw)
    return list(valid), invalid


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class WallpaperDownloader:
    """
    Downloads posts into the configured directory and records them.

    Usage:
        async with HttpClient(...) as client:
            downloader = WallpaperDownloader(config, database, database_path, client)
            stats = await downloader.download(urls)
        downloader.persist()
    """

    def __init__(
        self,
        config: ConfigLoader,
        database: WallpaperDatabase,
        database_path: Path,
        client: "HttpClient",
    ):
        self.config = config
        self.settings = config.get_download_config()
        self.genres = config.get_genres() if self.settings.sort == Sort.GENRES else None
        self.database = database
        self.database_path = Path(database_path)
        self.client = client
        self.stats = RunStats()
        self._store_lock = asyncio.Lock()

    @property
    def root(self) -> Path:
        return self.settings.path

    async def download(self, urls: Iterable[str]) -> RunStats:
        """
        Download every new post among `urls`.

        Per-URL and per-file failures are recorded in the returned stats,
        never raised.
        """
        self.stats.start_time = datetime.now()
        valid, invalid = parse_urls(urls)
        self.stats.invalid_urls = invalid
        for raw in invalid:
            logger.warning(f"Ignoring invalid URL: {raw}")

        new, known = self.database.filter_new(valid)
        self.stats.known_urls = known
        for url in known:
            logger.info(f"Already downloaded: {url}")

        if not new:
            logger.info("No new wallpapers to download!")
            self.stats.end_time = datetime.now()
            return self.stats

        logger.info(f"📥 Downloading {len(new)} post(s) with {self.settings.workers} worker(s)")
        semaphore = asyncio.Semaphore(self.settings.workers)
        outcomes = await asyncio.gather(*(self._process(semaphore, url) for url in new))
        self.stats.outcomes = list(outcomes)

        if len(valid) == 1 and outcomes[0].files:
            digest = outcomes[0].files[0].digest
            self.config.set_current(digest)
            logger.info(f"Current wallpaper: {outcomes[0].files[0].path}")

        self.stats.end_time = datetime.now()
        return self.stats

    async def _process(self, semaphore: asyncio.Semaphore, url: str) -> UrlOutcome:
        outcome = UrlOutcome(url)
        async with semaphore:
            outcome.advance(UrlState.DISPATCHED)
            try:
                backend = await registry.resolve(self.client, url)
                outcome.backend = backend.NAME
                metadata = normalize(backend)
            except Unsupported as e:
                logger.warning(f"{e.host or url} is not supported!")
                outcome.error = str(e)
                outcome.advance(UrlState.UNSUPPORTED)
                return outcome
            except DownloaderError as e:
                logger.error(f"Failed to fetch post {url}: {e}")
                outcome.error = str(e)
                outcome.advance(UrlState.FAILED)
                return outcome
            except Exception as e:
                logger.exception(f"Unexpected error while processing {url}: {e}")
                outcome.error = f"{type(e).__name__}: {e}"
                outcome.advance(UrlState.FAILED)
                return outcome

            outcome.metadata = metadata
            outcome.advance(UrlState.NORMALIZED)
            logger.debug(f"{metadata!r} tags={metadata.tags}")

            for index, image_url in enumerate(metadata.images, start=1):
                try:
                    saved = await self._save_image(metadata, image_url, index if metadata.is_multi else None)
                except DownloaderError as e:
                    logger.error(f"Failed to download {image_url}: {e}")
                    outcome.file_errors.append(str(e))
                    continue
                except OSError as e:
                    logger.error(f"Failed to write file for {image_url}: {e}")
                    outcome.file_errors.append(f"{image_url}: {e}")
                    continue
                except Exception as e:
                    logger.exception(f"Unexpected error while saving {image_url} of {url}: {e}")
                    outcome.file_errors.append(f"{image_url}: {type(e).__name__}: {e}")
                    continue
                outcome.files.append(saved)

        if not outcome.files:
            outcome.advance(UrlState.ALL_FILES_FAILED)
        elif outcome.file_errors:
            outcome.advance(UrlState.PARTIALLY_SAVED)
        else:
            outcome.advance(UrlState.SAVED)
        return outcome

    async def _save_image(
        self,
        metadata: PostMetadata,
        image_url: str,
        index: Optional[int],
    ) -> SavedFile:
        """
        Fetch one image and store it under its resolved path.

        Raises:
            DownloaderError: The fetch failed.
            OSError: The file could not be written.
        """
        response = await self.client.get(image_url)
        data = response.body
        digest = content_hash(data)

        name = resolve_name(metadata.title, response.content_disposition, response.url or image_url, digest)
        filename = format_filename(metadata.id, name, file_extension(response.content_type), index)
        directory = resolve_directory(
            self.root, self.settings.sort.value, metadata.host, metadata.tags, self.genres,
        )
        target = directory / filename

        # Lookup, write and record must not interleave between workers
        async with self._store_lock:
            existing = self.database.get(digest)
            if existing is not None and (self.root / existing.file).exists():
                relative = existing.file
                path = self.root / relative
                duplicate = True
                logger.info(f"Already stored as {relative}, not saving {filename} again")
            else:
                with atomic_write(target, mode="wb") as f:
                    f.write(data)
                path = target
                relative = target.relative_to(self.root).as_posix()
                duplicate = False
                logger.info(f"✅ Saved {relative}")

            self.database.upsert(digest, metadata.source, relative)

        return SavedFile(digest=digest, path=path, relative=relative, image_url=image_url, duplicate=duplicate)

    def persist(self) -> bool:
        """
        Save database and config once, at the end of the run.

        Returns:
            False if either save failed; the on-disk state may then be stale.
        """
        ok = True

        if self.database.dirty or not self.database_path.exists():
            try:
                save_database(self.database, self.database_path)
                self.stats.database_saved = True
            except OSError as e:
                logger.critical(f"CRITICAL! Failed to save database {self.database_path}: {e}")
                self.stats.database_saved = False
                ok = False

        try:
            if self.config.save():
                self.stats.config_saved = True
        except OSError as e:
            logger.critical(f"CRITICAL! Failed to save config {self.config.config_path}: {e}")
            self.stats.config_saved = False
            ok = False

        return ok
