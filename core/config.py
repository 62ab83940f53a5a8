"""
Configuration management for Wallstats.
Handles loading, validation, and defaults of the stats cache settings.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from core.stats_cache import OPTIMISTIC_SERIES

# Get the directory where config.py is located
_SCRIPT_DIR = Path(os.path.dirname(os.path.abspath(__file__)))

# Project root detection: if we're in core/, go up one level
if _SCRIPT_DIR.name == 'core':
    _PROJECT_ROOT = _SCRIPT_DIR.parent
else:
    _PROJECT_ROOT = _SCRIPT_DIR

SERIES_NAME_PATTERN = re.compile(r"[A-Za-z0-9_-]{1,64}")

DEFAULT_SERIES = ["desktop", "mobile", "avatar"]


def is_valid_series(name) -> bool:
    return (
        isinstance(name, str)
        and bool(SERIES_NAME_PATTERN.fullmatch(name))
        and name != OPTIMISTIC_SERIES
    )


@dataclass
class PathConfig:
    """Configuration for file paths and directories."""
    data_folder: str = str(_PROJECT_ROOT / "data")
    logs_folder: str = str(_PROJECT_ROOT / "logs")
    durable_cache_file: str = "stats_cache.json"

    @property
    def durable_cache_path(self) -> Path:
        return Path(self.data_folder) / self.durable_cache_file


@dataclass
class CacheConfig:
    """Configuration for the stats cache."""
    # Canonical snapshots older than this are treated as a miss
    ttl_seconds: int = 60 * 60

    # Known content series, listed by the maintenance tool even when not
    # cached. Other well-formed names are still accepted.
    series: List[str] = field(default_factory=lambda: list(DEFAULT_SERIES))

    # Storage quotas, same format as "5MB" / "512KB". 0 = unlimited.
    durable_quota: str = "5MB"
    session_quota: str = "5MB"
    durable_quota_bytes: int = 5 * 1024 * 1024
    session_quota_bytes: int = 5 * 1024 * 1024


@dataclass
class LoggingConfig:
    """Configuration for log output."""
    log_level: str = "info"
    max_log_files: int = 5


def parse_quota(quota_str) -> int:
    """Parse a quota string and return bytes.

    Supports formats:
    - "5MB" or "5mb" -> 5 * 1024^2 bytes
    - "512KB" -> 512 * 1024 bytes
    - "1GB" -> 1024^3 bytes
    - "4096" -> bytes
    - "" or "0" -> 0 (no quota)

    Raises:
        ValueError: if the string cannot be parsed or is negative.
    """
    if isinstance(quota_str, int) and not isinstance(quota_str, bool):
        if quota_str < 0:
            raise ValueError(f"Quota must not be negative: {quota_str}")
        return quota_str
    if not isinstance(quota_str, str):
        raise ValueError(f"Quota must be a string or integer, got {type(quota_str).__name__}")

    value = quota_str.strip().upper()
    if not value or value == "0":
        return 0

    multipliers = [("GB", 1024 ** 3), ("MB", 1024 ** 2), ("KB", 1024), ("B", 1)]
    for suffix, multiplier in multipliers:
        if value.endswith(suffix):
            number = value[:-len(suffix)].strip()
            break
    else:
        number, multiplier = value, 1

    try:
        size = float(number)
    except ValueError:
        raise ValueError(f"Invalid quota '{quota_str}'")
    if size < 0:
        raise ValueError(f"Quota must not be negative: '{quota_str}'")
    return int(size * multiplier)


class ConfigManager:
    """Manages application configuration loading and validation.

    A missing settings file is not an error: every setting has a default.
    """

    def __init__(self, config_file: str):
        self.config_file = Path(config_file)
        self.settings_data: Dict[str, Any] = {}
        self.paths = PathConfig()
        self.cache = CacheConfig()
        self.logging = LoggingConfig()

    def load_config(self) -> None:
        """Load configuration from file and validate."""
        logging.debug(f"Loading configuration from: {self.config_file}")

        if self.config_file.exists():
            try:
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    self.settings_data = json.load(f)
                logging.debug("Configuration file loaded successfully")
            except json.JSONDecodeError as e:
                logging.error(f"Invalid JSON in settings file: {type(e).__name__}: {e}")
                raise ValueError(f"Invalid JSON in settings file: {e}")
        else:
            logging.info(f"Settings file not found, using defaults: {self.config_file}")
            self.settings_data = {}

        if not isinstance(self.settings_data, dict):
            raise ValueError("Settings file must contain a JSON object")

        self._validate_types()
        self._load_all_configs()
        self._validate_values()

        logging.debug("Configuration loaded and validated successfully")

    def _load_all_configs(self) -> None:
        self._load_path_config()
        self._load_cache_config()
        self._load_logging_config()

    def _load_path_config(self) -> None:
        self.paths.data_folder = self.settings_data.get('data_folder', self.paths.data_folder)
        self.paths.logs_folder = self.settings_data.get('logs_folder', self.paths.logs_folder)
        self.paths.durable_cache_file = self.settings_data.get(
            'durable_cache_file', self.paths.durable_cache_file
        )

    def _load_cache_config(self) -> None:
        self.cache.ttl_seconds = self.settings_data.get('cache_ttl_seconds', self.cache.ttl_seconds)
        self.cache.series = list(self.settings_data.get('series', self.cache.series))
        self.cache.durable_quota = self.settings_data.get('durable_quota', self.cache.durable_quota)
        self.cache.session_quota = self.settings_data.get('session_quota', self.cache.session_quota)
        self.cache.durable_quota_bytes = parse_quota(self.cache.durable_quota)
        self.cache.session_quota_bytes = parse_quota(self.cache.session_quota)

    def _load_logging_config(self) -> None:
        self.logging.log_level = self.settings_data.get('log_level', self.logging.log_level)
        self.logging.max_log_files = self.settings_data.get('max_log_files', self.logging.max_log_files)

    def _validate_types(self) -> None:
        """Validate that configuration values have correct types."""
        type_checks = {
            'data_folder': str,
            'logs_folder': str,
            'durable_cache_file': str,
            'cache_ttl_seconds': int,
            'series': list,
            'durable_quota': (str, int),
            'session_quota': (str, int),
            'log_level': str,
            'max_log_files': int,
        }

        type_errors = []
        for name, expected_type in type_checks.items():
            if name not in self.settings_data:
                continue
            value = self.settings_data[name]
            # bool is an int subclass and never a valid number here
            if isinstance(value, bool) or not isinstance(value, expected_type):
                expected = expected_type.__name__ if isinstance(expected_type, type) else \
                    " or ".join(t.__name__ for t in expected_type)
                type_errors.append(f"'{name}' expected {expected}, got {type(value).__name__}")

        if type_errors:
            error_msg = "Type validation errors: " + "; ".join(type_errors)
            logging.error(error_msg)
            raise TypeError(error_msg)

    def _validate_values(self) -> None:
        """Validate configuration value ranges and constraints."""
        errors = []

        if self.cache.ttl_seconds <= 0:
            errors.append("cache_ttl_seconds must be positive")

        bad_series = [s for s in self.cache.series if not is_valid_series(s)]
        if bad_series:
            errors.append(f"Invalid series names: {bad_series}")

        if self.logging.max_log_files < 1:
            errors.append("max_log_files must be at least 1")

        if self.logging.log_level.lower() not in ("debug", "info", "warning", "error", "critical"):
            errors.append(f"Invalid log_level: {self.logging.log_level}")

        if errors:
            error_msg = "Configuration errors: " + "; ".join(errors)
            logging.error(error_msg)
            raise ValueError(error_msg)

    def ensure_data_folder(self) -> None:
        Path(self.paths.data_folder).mkdir(parents=True, exist_ok=True)
