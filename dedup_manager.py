#!/usr/bin/env python3
"""
Wallpaper Downloader - Deduplication Manager

Content-addressable wallpaper database:
1. Pre-download: input URLs already recorded as a `source` are skipped
2. Post-download: files are keyed by the SHA256 of their bytes, so the same
   image reached through two different posts collapses into one entry

The database is loaded once at startup, mutated in memory and written once
at the end of the run. Entries added since the last save are lost on a crash.

File format (JSON):
    {"<sha256>": {"source": "<post url>", "file": "<path relative to root>"}}
"""

import hashlib
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any, Iterable, Iterator, Optional, Tuple

from errors import DatabaseError

logger = logging.getLogger("wallpaper_dl")


def content_hash(data: bytes) -> str:
    """SHA256 hex digest of raw file bytes."""
    return hashlib.sha256(data).hexdigest()


# =============================================================================
# DATABASE
# =============================================================================

@dataclass
class WallpaperEntry:
    """One stored wallpaper file."""
    source: str
    file: str  # relative to download.path, forward slashes

    def to_dict(self) -> dict[str, str]:
        return {"source": self.source, "file": self.file}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WallpaperEntry":
        return cls(source=str(data["source"]), file=str(data["file"]))


@dataclass
class WallpaperDatabase:
    """
    In-memory map of content hash -> WallpaperEntry.

    Tracks:
    - entries: hash -> {source, file}
    - a reverse source -> hash index for the pre-download check
    """
    entries: dict[str, WallpaperEntry] = field(default_factory=dict)
    _by_source: dict[str, str] = field(default_factory=dict, repr=False)
    dirty: bool = False

    def __post_init__(self) -> None:
        self._reindex()

    def _reindex(self) -> None:
        self._by_source = {entry.source: digest for digest, entry in self.entries.items()}

    def to_dict(self) -> dict[str, dict[str, str]]:
        return {digest: entry.to_dict() for digest, entry in sorted(self.entries.items())}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WallpaperDatabase":
        entries = {}
        for digest, raw in data.items():
            if not isinstance(raw, dict):
                raise DatabaseError(f"Malformed database entry: {digest}")
            try:
                entries[str(digest)] = WallpaperEntry.from_dict(raw)
            except KeyError as e:
                raise DatabaseError(f"Database entry {digest} is missing {e}") from e
        return cls(entries=entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, digest: str) -> bool:
        return digest in self.entries

    def get(self, digest: str) -> Optional[WallpaperEntry]:
        return self.entries.get(digest)

    def has_source(self, url: str) -> bool:
        """Check if a post URL has been downloaded before."""
        return url in self._by_source

    def find_by_source(self, url: str) -> Optional[Tuple[str, WallpaperEntry]]:
        digest = self._by_source.get(url)
        if digest is None:
            return None
        return digest, self.entries[digest]

    def find_by_file(self, path: Path, root: Path) -> Optional[Tuple[str, WallpaperEntry]]:
        """Find the entry whose file resolves to `path` (absolute or relative to root)."""
        path = Path(path).expanduser()
        if not path.is_absolute():
            candidates = [(Path.cwd() / path).resolve(), (root / path).resolve()]
        else:
            candidates = [path.resolve()]

        for digest, entry in self.entries.items():
            if (root / entry.file).resolve() in candidates:
                return digest, entry
        return None

    def lookup(self, target: str, root: Path) -> Optional[Tuple[str, WallpaperEntry]]:
        """Resolve a content hash, then a file path, then a source URL."""
        if target in self.entries:
            return target, self.entries[target]
        return self.find_by_file(Path(target), root) or self.find_by_source(target)

    def filter_new(self, urls: Iterable[str]) -> Tuple[list[str], list[str]]:
        """
        Split URLs into (new, already downloaded).

        Returns:
            Tuple of (urls to fetch, urls skipped), both in input order.
        """
        new, known = [], []
        for url in urls:
            (known if self.has_source(url) else new).append(url)
        return new, known

    def upsert(self, digest: str, source: str, file: str) -> bool:
        """
        Insert or overwrite an entry; the latest source wins.

        Returns:
            True if the hash was already known.
        """
        previous = self.entries.get(digest)
        if previous is not None and self._by_source.get(previous.source) == digest:
            del self._by_source[previous.source]

        self.entries[digest] = WallpaperEntry(source=source, file=file)
        self._by_source[source] = digest
        self.dirty = True
        return previous is not None


# =============================================================================
# PERSISTENCE
# =============================================================================

@contextmanager
def atomic_write(target: Path, mode: str = "w", encoding: str = "utf-8") -> Iterator[IO]:
    """
    Context manager for atomic file writes.

    Writes to a temp file in the target directory, then renames it over
    the target on success. The temp file is removed on error.
    """
    target = Path(target)
    target.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    temp_path = Path(temp_name)
    f = os.fdopen(fd, mode) if "b" in mode else os.fdopen(fd, mode, encoding=encoding)
    try:
        with f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, target)
    except BaseException:
        if temp_path.exists():
            temp_path.unlink()
        raise


def load_database(path: Path) -> WallpaperDatabase:
    """
    Load the whole database.

    A missing file is an empty database.

    Raises:
        DatabaseError: The file exists but cannot be read or parsed.
    """
    path = Path(path)
    if not path.exists():
        logger.info(f"Wallpaper database not found at {path}, starting empty")
        return WallpaperDatabase()

    try:
        data = json.loads(path.read_text(encoding="utf-8") or "{}")
    except (OSError, ValueError) as e:
        raise DatabaseError(f"Failed to read wallpaper database {path}: {e}") from e
    if not isinstance(data, dict):
        raise DatabaseError(f"Wallpaper database {path} is not a JSON object")

    db = WallpaperDatabase.from_dict(data)
    logger.debug(f"Loaded {len(db)} database entries from {path}")
    return db


def save_database(db: WallpaperDatabase, path: Path) -> None:
    """
    Write the whole database in one go.

    Raises:
        OSError: The file could not be written.
    """
    with atomic_write(Path(path)) as f:
        json.dump(db.to_dict(), f, indent=2)
        f.write("\n")
    db.dirty = False
    logger.debug(f"Saved {len(db)} database entries to {path}")
