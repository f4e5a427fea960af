#!/usr/bin/env python3
"""
Wallpaper Downloader - File Placement

Decides where a downloaded file goes:
- Directory: <root>/<hostname>, <root>/<best genre> or <root> (sort = none)
- Filename:  {post id}-{name}[-{index}].{ext}

Name resolution order (first hit wins):
1. Post title
2. filename parameter of the Content-Disposition header
3. Stem of the downloaded URL's path
4. Content hash
"""

import re
from pathlib import Path, PurePosixPath
from typing import Iterable, Mapping, Optional
from urllib.parse import unquote, urlparse

from aiohttp.multipart import content_disposition_filename, parse_content_disposition

# Content-Type -> file extension
EXTENSIONS: dict[str, str] = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/pjpeg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/avif": "avif",
    "image/bmp": "bmp",
    "image/x-ms-bmp": "bmp",
    "image/apng": "apng",
}
FALLBACK_EXTENSION = "bin"

_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f\x7f]')
MAX_NAME_LENGTH = 150


def file_extension(content_type: Optional[str]) -> str:
    """Extension for a Content-Type header value (parameters ignored)."""
    if not content_type:
        return FALLBACK_EXTENSION
    mime = content_type.split(";", 1)[0].strip().lower()
    return EXTENSIONS.get(mime, FALLBACK_EXTENSION)


def sanitize_name(name: str) -> str:
    """Make a title usable as a single path component."""
    cleaned = _UNSAFE_CHARS.sub("_", name).strip().strip(".")
    return cleaned[:MAX_NAME_LENGTH].rstrip()


def filename_from_disposition(header: Optional[str]) -> Optional[str]:
    """The stem of the Content-Disposition filename, if any."""
    if not header:
        return None
    _, params = parse_content_disposition(header)
    filename = content_disposition_filename(params, "filename")
    if not filename:
        return None
    stem = PurePosixPath(filename.replace("\\", "/")).stem
    return stem or None


def filename_from_url_path(url: str) -> Optional[str]:
    """The file stem of a URL's path, e.g. /full/ab/wallhaven-ab.jpg -> wallhaven-ab."""
    stem = PurePosixPath(unquote(urlparse(url).path)).stem
    return stem or None


def resolve_name(
    title: Optional[str],
    content_disposition: Optional[str],
    url: str,
    digest: str,
) -> str:
    """
    Pick the name part of a filename, stopping at the first candidate that
    survives sanitizing. The content hash always does.
    """
    candidates = (
        title,
        filename_from_disposition(content_disposition),
        filename_from_url_path(url),
    )
    for candidate in candidates:
        if candidate:
            name = sanitize_name(candidate)
            if name:
                return name
    return digest


def format_filename(post_id: str, name: str, ext: str, index: Optional[int] = None) -> str:
    """
    Format the final filename.

    Args:
        post_id: Backend-derived post ID
        name: Resolved name part
        ext: Extension without dot
        index: 1-based position for multi-image posts, None for single images
    """
    post_id = sanitize_name(post_id) or "post"
    if index is not None:
        return f"{post_id}-{name}-{index}.{ext}"
    return f"{post_id}-{name}.{ext}"


# =============================================================================
# DIRECTORY
# =============================================================================

def genre_score(keywords: Iterable[str], tags: set[str]) -> int:
    """Number of a genre's keywords present in the post's tag set."""
    return sum(1 for keyword in set(keywords) if keyword in tags)


def best_genre(genres: Optional[Mapping[str, list[str]]], tags: Iterable[str]) -> Optional[str]:
    """
    Highest-scoring genre for a tag set.

    Ties go to the genre that comes first in the table. A best score of zero
    (or no table at all) returns None.
    """
    if not genres:
        return None

    tag_set = set(tags)
    best, best_score = None, 0
    for genre, keywords in genres.items():
        score = genre_score(keywords or [], tag_set)
        if score > best_score:
            best, best_score = genre, score
    return best


def resolve_subdirectory(
    sort: str,
    host: str,
    tags: Iterable[str],
    genres: Optional[Mapping[str, list[str]]] = None,
) -> Optional[str]:
    """
    Subdirectory under the download root, None for sort = none.

    Args:
        sort: "hostname", "genres" or "none"
        host: Hostname of the post's source URL
        tags: Post tags
        genres: Genre -> keyword table (only consulted for sort = genres)
    """
    if sort == "none":
        return None
    if sort == "genres":
        genre = best_genre(genres, tags)
        if genre is not None:
            return sanitize_name(genre) or host
    return host


def resolve_directory(
    root: Path,
    sort: str,
    host: str,
    tags: Iterable[str],
    genres: Optional[Mapping[str, list[str]]] = None,
) -> Path:
    """Absolute target directory for a post's files."""
    subdirectory = resolve_subdirectory(sort, host, tags, genres)
    return root / subdirectory if subdirectory else root
