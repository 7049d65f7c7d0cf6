"""
FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from jobsync import __version__
from jobsync.api.routes import (
    auth_router,
    health_router,
    internal_router,
    jobs_router,
    sync_router,
)
from jobsync.config import get_settings
from jobsync.db import close_db, get_engine, init_db
from jobsync.observability.logging import setup_logging
from jobsync.observability.metrics import setup_metrics
from jobsync.observability.tracing import (
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_tracing,
    shutdown_tracing,
)
from jobsync.sync.broadcast import Broadcaster
from jobsync.sync.log import build_sync_log
from jobsync.worker.handlers import load_handler_modules
from jobsync.worker.main import Dispatcher

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Opens the database and the sync log, and builds the broadcaster and
    the dispatcher used by the cron endpoint.
    """
    settings = get_settings()

    # Startup
    setup_logging()
    metrics = setup_metrics()
    setup_tracing()
    await init_db()
    instrument_sqlalchemy(get_engine().sync_engine)
    load_handler_modules(settings.worker_handler_modules)

    sync_log = build_sync_log(settings)
    app.state.sync_log = sync_log
    app.state.broadcaster = Broadcaster(sync_log, metrics=metrics)
    app.state.dispatcher = Dispatcher(settings=settings, metrics=metrics)

    logger.info("Application started")

    yield

    # Shutdown
    await sync_log.close()
    await close_db()
    shutdown_tracing()
    logger.info("Application shutdown")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: The configured application instance.
    """
    app = FastAPI(
        title="jobsync API",
        description="Background job queue and tenant sync log",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(jobs_router)
    app.include_router(sync_router)
    app.include_router(internal_router)

    # Instrument with OpenTelemetry
    instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()

    uvicorn.run(
        "jobsync.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    run()
