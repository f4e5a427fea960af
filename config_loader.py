#!/usr/bin/env python3
"""
Wallpaper Downloader - Configuration Loader

Loads configuration from config.yaml with environment variable overrides.
Provides type-safe access to configuration values.

Example config.yaml:
    download:
      path: ~/Pictures/Wallpapers
      sort: genres        # hostname | genres | none
      delay: 450          # ms after every request
      workers: 1
    genres:
      nature: [forest, mountain, lake]
      space: [galaxy, planet, nebula]
    wallpaper:
      current: 3f2a...    # content hash
"""

import copy
import os
import re
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import platformdirs
import yaml

from dedup_manager import atomic_write
from errors import ConfigError
from http_client import APP_NAME, USER_AGENT

logger = logging.getLogger("wallpaper_dl")


def default_config_path() -> Path:
    """config.yaml in the platform config dir, or $WALLDL_CONFIG."""
    override = os.environ.get("WALLDL_CONFIG")
    if override:
        return Path(override).expanduser()
    return Path(platformdirs.user_config_dir(APP_NAME)) / "config.yaml"


def default_database_path() -> Path:
    """wallpapers.json in the platform data dir, or $WALLDL_DATABASE."""
    override = os.environ.get("WALLDL_DATABASE")
    if override:
        return Path(override).expanduser()
    return Path(platformdirs.user_data_dir(APP_NAME)) / "wallpapers.json"


def default_log_dir() -> Path:
    return Path(platformdirs.user_log_dir(APP_NAME))


class Sort(str, Enum):
    """Subdirectory policy."""
    HOSTNAME = "hostname"
    GENRES = "genres"
    NONE = "none"


@dataclass
class DownloadConfig:
    """Download configuration."""
    path: Path = field(default_factory=lambda: Path(platformdirs.user_pictures_dir()))
    sort: Sort = Sort.HOSTNAME
    delay: int = 450  # ms
    workers: int = 1
    timeout: float = 30.0  # sec per request
    user_agent: str = USER_AGENT


@dataclass
class WallpaperConfig:
    """Current wallpaper pointer."""
    current: Optional[str] = None


class ConfigLoader:
    """
    Load configuration from YAML with environment variable overrides.

    Environment variables use the format: WALLDL_<SECTION>_<KEY>
    Examples:
        WALLDL_DOWNLOAD_DELAY=0
        WALLDL_DOWNLOAD_SORT=genres
        WALLDL_DOWNLOAD_PATH=/mnt/wallpapers

    Overrides only affect this process: save() writes what was read from
    the file plus the changes made through this object.
    """

    ENV_PREFIX = "WALLDL_"

    def __init__(self, config_path: Path = None):
        """
        Initialize configuration loader.

        Args:
            config_path: Path to config.yaml file. Defaults to the platform config dir.

        Raises:
            ConfigError: The file exists but is not a valid YAML mapping.
        """
        self.config_path = Path(config_path) if config_path else default_config_path()
        self.file_config: dict = {}
        self.raw_config: dict = {}
        self.exists = False
        self.dirty = False
        self._load()

    def _load(self) -> None:
        """Load configuration from YAML file."""
        if self.config_path.exists():
            try:
                with open(self.config_path, encoding="utf-8") as f:
                    loaded = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigError(f"Failed to read config {self.config_path}: {e}") from e
            if not isinstance(loaded, dict):
                raise ConfigError(f"Config {self.config_path} is not a mapping")
            self.file_config = loaded
            self.exists = True
            logger.debug(f"Loaded configuration from {self.config_path}")
        else:
            logger.warning(f"Config file not found: {self.config_path}, using defaults")
            self.file_config = {}

        self.raw_config = copy.deepcopy(self.file_config)

        # Apply environment variable overrides
        self._apply_env_overrides()

        # Expand environment variable references in values
        self.raw_config = self._expand_env_vars(self.raw_config)

    def _apply_env_overrides(self) -> None:
        """Override configuration values from WALLDL_* environment variables."""
        for key, value in os.environ.items():
            if not key.startswith(self.ENV_PREFIX):
                continue

            # Parse key: WALLDL_SECTION_KEY -> section.key
            parts = key[len(self.ENV_PREFIX):].lower().split("_")

            if len(parts) >= 2:
                section = parts[0]
                config_key = "_".join(parts[1:])

                typed_value = self._parse_value(value)

                if section not in self.raw_config:
                    self.raw_config[section] = {}

                if isinstance(self.raw_config[section], dict):
                    self.raw_config[section][config_key] = typed_value
                    logger.debug(f"Config override: {section}.{config_key} = {typed_value}")

    def _parse_value(self, value: str) -> Any:
        """Parse string value to appropriate Python type."""
        # Number
        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        # Boolean
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        # String
        return value

    def _expand_env_vars(self, obj: Any) -> Any:
        """Expand ${VAR} references in configuration values."""
        if isinstance(obj, str):
            # Match ${VAR_NAME} patterns
            pattern = r'\$\{([^}]+)\}'
            for var_name in re.findall(pattern, obj):
                env_value = os.environ.get(var_name, "")
                obj = obj.replace(f"${{{var_name}}}", env_value)
            return obj
        elif isinstance(obj, dict):
            return {k: self._expand_env_vars(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._expand_env_vars(item) for item in obj]
        return obj

    def _section(self, name: str) -> dict:
        section = self.raw_config.get(name)
        if section is None:
            return {}
        if not isinstance(section, dict):
            raise ConfigError(f"Config section '{name}' must be a mapping")
        return section

    def get_download_config(self) -> DownloadConfig:
        """
        Get download configuration as dataclass.

        Raises:
            ConfigError: A value has the wrong type or sort is unknown.
        """
        download = self._section("download")
        defaults = DownloadConfig()

        try:
            sort = Sort(str(download.get("sort", defaults.sort.value)).lower())
        except ValueError:
            choices = ", ".join(s.value for s in Sort)
            raise ConfigError(f"download.sort must be one of: {choices}") from None

        try:
            return DownloadConfig(
                path=Path(str(download.get("path") or defaults.path)).expanduser(),
                sort=sort,
                delay=max(0, int(download.get("delay", defaults.delay))),
                workers=max(1, int(download.get("workers", defaults.workers))),
                timeout=float(download.get("timeout", defaults.timeout)),
                user_agent=str(download.get("user_agent") or defaults.user_agent),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid download configuration: {e}") from e

    def get_genres(self) -> Optional[dict[str, list[str]]]:
        """
        Genre -> keyword table in file order, None when not configured.

        Raises:
            ConfigError: The table is not a mapping of lists.
        """
        genres = self.raw_config.get("genres")
        if not genres:
            return None
        if not isinstance(genres, dict):
            raise ConfigError("genres must map a genre name to a list of keywords")

        table: dict[str, list[str]] = {}
        for genre, keywords in genres.items():
            if isinstance(keywords, str):
                keywords = [keywords]
            if not isinstance(keywords, list):
                raise ConfigError(f"genres.{genre} must be a list of keywords")
            table[str(genre)] = [str(k) for k in keywords]
        return table

    def get_wallpaper_config(self) -> WallpaperConfig:
        """Get wallpaper configuration as dataclass."""
        current = self._section("wallpaper").get("current")
        return WallpaperConfig(current=str(current) if current else None)

    def set_current(self, digest: str) -> None:
        """Point the current wallpaper at a content hash."""
        for config in (self.file_config, self.raw_config):
            section = config.get("wallpaper")
            if not isinstance(section, dict):
                section = config["wallpaper"] = {}
            section["current"] = digest
        self.dirty = True
        logger.debug(f"Current wallpaper set to {digest}")

    def to_record(self) -> dict:
        """The record written by save(): file contents plus defaults for download.*"""
        record = copy.deepcopy(self.file_config)
        download = record.setdefault("download", {})
        if isinstance(download, dict):
            defaults = DownloadConfig()
            download.setdefault("path", str(defaults.path))
            download.setdefault("sort", defaults.sort.value)
            download.setdefault("delay", defaults.delay)
        return record

    def save(self, force: bool = False) -> bool:
        """
        Write the config file if it is new or has changed.

        Returns:
            True if the file was written.

        Raises:
            OSError: The file could not be written.
        """
        if not (force or self.dirty or not self.exists):
            return False

        with atomic_write(self.config_path) as f:
            yaml.safe_dump(self.to_record(), f, default_flow_style=False, sort_keys=False)

        self.exists = True
        self.dirty = False
        logger.debug(f"Saved configuration to {self.config_path}")
        return True
