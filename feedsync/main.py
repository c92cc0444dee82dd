# feedsync/main.py
# FastAPI application exposing the feed sync layer.
# Serve with any ASGI server, e.g. `feedsync.main:get_app` as a factory.

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from feedsync import config
from feedsync.db.storage import RedisKeyValueStore
from feedsync.middleware.error_handler import ErrorHandlerMiddleware, setup_exception_handlers
from feedsync.observability.logger import configure_logging
from feedsync.observability.tracing import init_otel
from feedsync.routers.batches import router as batches_router
from feedsync.routers.cache import router as cache_router
from feedsync.routers.health import router as health_router
from feedsync.routers.session import router as session_router
from feedsync.state import AppState
from feedsync.utils.logger import log_info


@asynccontextmanager
async def lifespan(app: FastAPI):
    state: AppState = app.state.feedsync
    state.start()
    log_info("feedsync started")
    try:
        yield
    finally:
        state.close()
        if isinstance(state.store, RedisKeyValueStore):
            await state.store.close()
        log_info("feedsync stopped")


def create_app(state: Optional[AppState] = None, instrument: bool = False) -> FastAPI:
    app = FastAPI(
        title="Feed Sync API",
        description="Offline feed cache, stable timestamp and batch progress for Soonlist clients",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.feedsync = state or AppState()

    # Error handler should be outermost to catch all errors
    app.add_middleware(ErrorHandlerMiddleware, debug=config.DEBUG)
    setup_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(cache_router, prefix="/api")
    app.include_router(batches_router, prefix="/api")
    app.include_router(session_router, prefix="/api")

    if instrument:
        init_otel(app=app, service_name=config.SERVICE_NAME)

    return app


def get_app() -> FastAPI:
    """Production entry point: JSON logging and tracing enabled."""
    configure_logging(config)
    return create_app(instrument=True)
