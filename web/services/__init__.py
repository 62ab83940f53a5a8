"""Business logic services"""

from web.services.stats_service import build_stats_cache, load_config

__all__ = [
    "build_stats_cache",
    "load_config",
]
