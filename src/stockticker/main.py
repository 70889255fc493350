"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. The lifespan is the composition root: it builds the database
engine and the StockTicker, starts it, and tears everything down again
on shutdown. Handlers reach the ticker through app.state (see
api/dependencies.py).

Tests pass a ready-made ticker (wired to fakes) into create_app(); the
lifespan then only starts and stops it.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncEngine

from stockticker import __version__
from stockticker.api import api_router
from stockticker.config import Settings, settings
from stockticker.db.engine import build_engine, build_session_factory
from stockticker.exceptions import ObservationError
from stockticker.realtime.pubsub import RedisChannelSubscriber, connect_redis
from stockticker.services.ticker import StockTicker

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. Teardown order is the reverse of setup: stop observing,
    then close Redis, then dispose the engine.
    """
    config: Settings = app.state.config
    logger.info(
        "stockticker.starting",
        version=__version__,
        environment=config.environment,
        port=config.port,
        change_source=config.change_source,
    )

    owns_engine = False
    if app.state.ticker is None:
        app.state.engine = build_engine(config.database_url, echo=config.debug)
        owns_engine = True
        app.state.ticker = StockTicker.from_settings(
            config, build_session_factory(app.state.engine)
        )
    ticker: StockTicker = app.state.ticker

    # Redis fan-out to other processes is optional
    redis_client = None
    if config.redis_url:
        try:
            redis_client = await connect_redis(config.redis_url)
            ticker.registry.add(RedisChannelSubscriber(redis_client, config.redis_channel))
            logger.info("stockticker.redis_connected", channel=config.redis_channel)
        except Exception as e:
            logger.warning("stockticker.redis_unavailable", error=str(e))

    # Without a change source the app still serves snapshots; /health says degraded
    try:
        await ticker.start()
    except ObservationError as e:
        ticker.last_error = e
        logger.error("stockticker.change_source_unavailable", error=str(e))

    yield

    logger.info("stockticker.shutdown")
    await ticker.stop()

    if redis_client is not None:
        await redis_client.aclose()

    if owns_engine:
        await app.state.engine.dispose()


def create_app(
    config: Optional[Settings] = None,
    ticker: Optional[StockTicker] = None,
    engine: Optional[AsyncEngine] = None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    config = config or settings
    app = FastAPI(
        title="Stock Ticker",
        description="Live stock prices pushed to browsers as the database changes",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.ticker = ticker
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    from stockticker.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: stockticker.main:app)
app = create_app()
