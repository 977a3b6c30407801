"""
StockPulse API

FastAPI application that serves the composed dashboard and exposes cache
management endpoints. One cache instance, one composer and one warmer
live on app.state for the lifetime of the process.

Run with:
    uvicorn api.main:app --reload
"""

import logging
import sys
from datetime import date
from typing import Callable, Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from sqlalchemy.orm import sessionmaker

from stockpulse import __version__
from stockpulse.cache import CacheInvalidator, KeyValueCache, create_cache
from stockpulse.cache.config import CacheConfig, get_cache_config
from stockpulse.cache.warming import CacheWarmer, create_warming_executor
from stockpulse.dashboard import DashboardComposer, DashboardFetchers, TrendEstimator
from stockpulse.database import check_db_connection, get_session_factory, init_db

from api import cache as cache_routes
from api import dashboard as dashboard_routes

load_dotenv()

# Configure logging to stdout
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,  # Explicitly use stdout
    force=True,  # Override any existing config
)
logger = logging.getLogger(__name__)

# Quiet down chatty loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_app(
    session_factory: Optional[sessionmaker] = None,
    cache: Optional[KeyValueCache] = None,
    config: Optional[CacheConfig] = None,
    trend_estimator: Optional[TrendEstimator] = None,
    today: Callable[[], date] = date.today,
) -> FastAPI:
    """
    Build the application.

    Collaborators default to the environment-configured ones; tests pass
    their own session factory and cache.
    """
    app = FastAPI(
        title="StockPulse Dashboard API",
        description="Cached dashboard aggregates for the inventory back office",
        version=__version__,
    )

    app.include_router(dashboard_routes.router)
    app.include_router(cache_routes.router)

    @app.on_event("startup")
    async def startup_event():
        """Initialize database, cache and background warming."""
        app_config = config or get_cache_config()
        factory = session_factory

        if factory is None:
            logger.info("Initializing database...")
            try:
                init_db()
                if check_db_connection():
                    logger.info("Database connection verified")
                else:
                    logger.warning("Database connection check failed - continuing anyway")
            except Exception as e:
                logger.error(f"Database initialization failed: {e}")
                # Don't fail startup; slices degrade until the store is back
            factory = get_session_factory()

        app_cache = cache or create_cache(app_config)
        fetchers = DashboardFetchers(
            factory,
            trend_estimator=trend_estimator,
            config=app_config,
            today=today,
        )
        composer = DashboardComposer(app_cache, fetchers.as_slices(), app_config)

        # Warming queries get their own threads and write to the same cache
        warming_executor = create_warming_executor(app_config)
        warming_fetchers = DashboardFetchers(
            factory,
            trend_estimator=trend_estimator,
            config=app_config,
            today=today,
            executor=warming_executor,
        )
        warmer = CacheWarmer(
            DashboardComposer(app_cache, warming_fetchers.as_slices(), app_config),
            warming_fetchers.list_active_shop_ids,
            config=app_config,
            today=today,
        )

        app.state.cache = app_cache
        app.state.composer = composer
        app.state.warmer = warmer
        app.state.warming_executor = warming_executor
        app.state.invalidator = CacheInvalidator(app_cache)

        if app_config.warming_enabled:
            await warmer.start()

        logger.info(f"StockPulse API started (cache backend: {app_cache.backend_name})")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stop the warmer and release the cache."""
        await app.state.warmer.stop()
        app.state.warming_executor.shutdown(wait=False, cancel_futures=True)
        await app.state.cache.close()

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": __version__}

    return app


app = create_app()
