#!/usr/bin/env python3
"""
Wallpaper Downloader - Command Line Interface

Usage:
    wallpaper-dl <url>...            download posts
    wallpaper-dl current             print the current wallpaper's path
    wallpaper-dl current <target>    set the current wallpaper by hash, path or URL
                                     (an unseen URL is downloaded first)

Exit codes:
    0  success, including "nothing new to download"
    1  no valid URLs, unknown wallpaper, unreadable config/database,
       or the database/config could not be saved
    2  invalid arguments
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import registry
from config_loader import ConfigLoader, default_database_path, default_log_dir
from dedup_manager import WallpaperDatabase, load_database
from downloader import WallpaperDownloader, parse_urls
from errors import ConfigError, DatabaseError
from http_client import APP_NAME, APP_VERSION, HttpClient
from reporting import log_summary

logger = logging.getLogger("wallpaper_dl")

LOG_RETENTION_DAYS = 30


# =============================================================================
# LOGGING
# =============================================================================

def setup_logging(verbose: bool = False, log_dir: Optional[Path] = None) -> logging.Logger:
    """Configure console and file logging with timestamps."""
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # File handler
    if log_dir is not None:
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            _rotate_logs(log_dir, LOG_RETENTION_DAYS)
            date_str = datetime.now().strftime("%Y%m%d")
            file_handler = logging.FileHandler(log_dir / f"download_{date_str}.log", encoding="utf-8")
        except OSError as e:
            logger.warning(f"File logging disabled, cannot use {log_dir}: {e}")
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    return logger


def _rotate_logs(logs_dir: Path, max_days: int) -> None:
    """Remove log files older than max_days."""
    cutoff = datetime.now() - timedelta(days=max_days)

    for log_file in logs_dir.glob("download_*.log"):
        # Filename format: download_YYYYMMDD.log
        date_str = log_file.stem.rsplit("_", 1)[-1]
        try:
            file_date = datetime.strptime(date_str, "%Y%m%d")
        except ValueError:
            continue
        if file_date < cutoff:
            try:
                log_file.unlink()
            except OSError as e:
                logger.debug(f"Could not remove old log {log_file}: {e}")


# =============================================================================
# COMMANDS
# =============================================================================

async def _run_download(
    config: ConfigLoader,
    database: WallpaperDatabase,
    database_path: Path,
    urls: list[str],
) -> WallpaperDownloader:
    settings = config.get_download_config()
    async with HttpClient(
        user_agent=settings.user_agent,
        delay_ms=settings.delay,
        timeout_sec=settings.timeout,
    ) as client:
        downloader = WallpaperDownloader(config, database, database_path, client)
        await downloader.download(urls)
    return downloader


def download_command(
    config: ConfigLoader,
    database: WallpaperDatabase,
    database_path: Path,
    urls: list[str],
) -> int:
    """Download posts, persist, log the summary."""
    valid, _ = parse_urls(urls)
    if not valid:
        logger.error("No valid URLs provided!")
        return 1

    downloader = asyncio.run(_run_download(config, database, database_path, urls))
    persisted = downloader.persist()
    if downloader.stats.outcomes:
        log_summary(downloader.stats)
    return 0 if persisted else 1


def current_command(
    config: ConfigLoader,
    database: WallpaperDatabase,
    database_path: Path,
    target: Optional[str],
) -> int:
    """Print or set the current wallpaper."""
    root = config.get_download_config().path

    if target is None:
        digest = config.get_wallpaper_config().current
        if not digest:
            logger.error("No current wallpaper set!")
            return 1
        entry = database.get(digest)
        if entry is None:
            logger.error(f"Current wallpaper {digest} is not in the database!")
            return 1
        print(root / entry.file)
        return 0

    found = database.lookup(target, root)
    if found is None:
        urls, _ = parse_urls([target])
        if not urls:
            logger.error(f"No wallpaper matches {target}")
            return 1

        # Single-URL downloads become the current wallpaper on success
        code = download_command(config, database, database_path, urls)
        found = database.find_by_source(urls[0])
        if found is None:
            logger.error(f"Failed to download {target}")
            return 1
        print(root / found[1].file)
        return code

    digest, entry = found
    config.set_current(digest)
    try:
        config.save()
    except OSError as e:
        logger.critical(f"CRITICAL! Failed to save config {config.config_path}: {e}")
        return 1
    print(root / entry.file)
    return 0


# =============================================================================
# ENTRY POINT
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Download wallpapers from image boards and sort them into folders",
        epilog="Supported sites: " + ", ".join(registry.supported_hosts()),
    )
    parser.add_argument(
        "targets",
        nargs="+",
        metavar="URL",
        help="Post URLs to download, or 'current [hash|path|url]'"
    )
    parser.add_argument(
        "--version", "-V",
        action="version",
        version=f"%(prog)s {APP_VERSION}"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging on the console"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Config file (default: platform config dir, or $WALLDL_CONFIG)"
    )
    parser.add_argument(
        "--database",
        type=Path,
        default=None,
        help="Wallpaper database (default: platform data dir, or $WALLDL_DATABASE)"
    )
    parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        help="Directory for log files (default: platform log dir)"
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    is_current = args.targets[0] == "current"
    if is_current and len(args.targets) > 2:
        parser.error("current takes at most one hash, path or URL")

    setup_logging(args.verbose, args.log_dir or default_log_dir())

    database_path = args.database or default_database_path()
    try:
        config = ConfigLoader(args.config)
        # Validate everything up front; a bad value must not surface mid-run
        config.get_download_config()
        config.get_genres()
        database = load_database(database_path)
    except (ConfigError, DatabaseError) as e:
        logger.critical(f"CRITICAL! {e}")
        return 1

    if is_current:
        target = args.targets[1] if len(args.targets) == 2 else None
        return current_command(config, database, database_path, target)
    return download_command(config, database, database_path, args.targets)


if __name__ == "__main__":
    sys.exit(main())
