"""FastAPI dependencies - shared instances and utilities"""

from fastapi import Request

from core.config import ConfigManager
from core.stats_cache import StatsCacheService


def get_stats_cache(request: Request) -> StatsCacheService:
    """Get the StatsCacheService created at application startup"""
    return request.app.state.stats_cache


def get_config(request: Request) -> ConfigManager:
    """Get the ConfigManager loaded at application startup"""
    return request.app.state.config
