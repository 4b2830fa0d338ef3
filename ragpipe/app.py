"""FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from ragpipe.api.dependencies import get_run_controller
from ragpipe.api.routers import api_router
from ragpipe.config.settings import Settings, get_settings
from ragpipe.infrastructure.logging.logger import setup_logging

settings = get_settings()

setup_logging(
    level=settings.log_level,
    json_output=not settings.debug,
    silence_noisy_loggers=True,
)

logger = logging.getLogger(__name__)


def _validate_startup_config(settings: Settings) -> None:
    """Validate required configuration at startup."""
    if not settings.backend_url:
        logger.warning("backend_url is empty - runs will fail to connect")
    if not settings.default_table:
        logger.warning("default_table is empty - runs must specify config.table")
    if bool(settings.backend_username) != bool(settings.backend_password):
        logger.warning("Only one of backend_username/backend_password is set - basic auth disabled")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup and shutdown lifecycle."""
    logger.info("Starting %s", settings.app_name)
    _validate_startup_config(settings)
    yield
    logger.info("Shutting down %s", settings.app_name)
    controller = get_run_controller()
    handle = controller.active_run
    if handle is not None:
        handle.cancel()
        await handle.wait()
        logger.info("Active run %s cancelled on shutdown", handle.run_id)


app = FastAPI(
    title=settings.app_name,
    description="Streaming orchestrator for the retrieval-augmented generation pipeline",
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials="*" not in settings.allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])

app.include_router(api_router, prefix="/api")
