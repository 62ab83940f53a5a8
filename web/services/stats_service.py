"""Stats cache service wiring - builds the storage tiers from configuration"""

import logging
from typing import Optional

from core.config import ConfigManager
from core.stats_cache import StatsCacheService
from core.storage import JsonFileStore, MemoryStore


def build_stats_cache(config: ConfigManager, clock=None) -> StatsCacheService:
    """Create a StatsCacheService backed by a JSON file and an in-memory session store.

    The session store lives as long as the server process, which is the
    lifetime of a session for the API.
    """
    config.ensure_data_folder()

    durable_path = config.paths.durable_cache_path
    durable_store = JsonFileStore(
        durable_path,
        quota_bytes=config.cache.durable_quota_bytes or None,
    )
    session_store = MemoryStore(quota_bytes=config.cache.session_quota_bytes or None)

    kwargs = {"ttl_seconds": config.cache.ttl_seconds}
    if clock is not None:
        kwargs["clock"] = clock

    logging.info(f"[StatsCache] Durable cache at {durable_path} (TTL {config.cache.ttl_seconds}s)")
    return StatsCacheService(durable_store, session_store, **kwargs)


def load_config(settings_file, data_dir=None, logs_dir=None) -> ConfigManager:
    """Load settings, falling back to the web defaults for folders not set in the file."""
    config = ConfigManager(str(settings_file))
    config.load_config()
    settings = config.settings_data
    if data_dir is not None and 'data_folder' not in settings:
        config.paths.data_folder = str(data_dir)
    if logs_dir is not None and 'logs_folder' not in settings:
        config.paths.logs_folder = str(logs_dir)
    return config
