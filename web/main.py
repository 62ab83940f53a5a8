"""Wallstats Web API - FastAPI Application"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from core.config import ConfigManager
from core.logging_config import LoggingManager
from core.stats_cache import StatsCacheService
from web.config import DATA_DIR, LOGS_DIR, SETTINGS_FILE
from web.routers import api
from web.services import build_stats_cache, load_config


def _suppress_noisy_loggers():
    """Every optimistic increment is a request; keep them out of the access log"""
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def create_app(
    stats_cache: Optional[StatsCacheService] = None,
    config: Optional[ConfigManager] = None,
    setup_logging: bool = True,
) -> FastAPI:
    """Build the FastAPI app.

    When ``stats_cache`` is given it is used as-is; otherwise settings are
    loaded and the service is built on startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        _suppress_noisy_loggers()
        app_config = config or load_config(SETTINGS_FILE, data_dir=DATA_DIR, logs_dir=LOGS_DIR)
        app.state.config = app_config

        logging_manager = None
        if setup_logging:
            logging_manager = LoggingManager(
                app_config.paths.logs_folder,
                app_config.logging.log_level,
                app_config.logging.max_log_files,
            )
            logging_manager.setup_logging()

        app.state.stats_cache = stats_cache or build_stats_cache(app_config)
        logging.info("Wallstats API started")

        yield

        # Shutdown
        logging.info("Wallstats API shutting down")
        if logging_manager is not None:
            logging_manager.shutdown()

    app = FastAPI(
        title="Wallstats",
        description="Wallpaper popularity stats cache with optimistic updates",
        version="0.1.0",
        lifespan=lifespan
    )
    app.include_router(api.router, prefix="/api", tags=["stats"])
    return app


app = create_app()
