"""
SPA proxy host - forwards unrouted requests to a SPA development server.

Entry point for the FastAPI application.
"""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from dotenv import load_dotenv

from spa_proxy.logging import get_logger
from spa_proxy.state import app_state
from spa_proxy.routers import internal
from spa_proxy.routers.spa import use_spa_proxy
from spa_proxy.services.launch_options import resolve_forwarding_options
from spa_proxy.config import get_config

load_dotenv()

logger = get_logger(__name__)


async def _shutdown_forwarder() -> None:
    """Close the shared HTTP client."""
    if app_state.forwarder:
        await app_state.forwarder.aclose()
        logger.info("HTTP client closed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - handles startup and shutdown."""
    if app_state.options:
        logger.info(f"Forwarding unrouted requests to {app_state.options.destination}")
    else:
        logger.info("SPA forwarding disabled")

    yield

    await _shutdown_forwarder()

app = FastAPI(
    title="SPA Proxy",
    description="Forwards unrouted requests to a SPA development server",
    lifespan=lifespan
)

app.include_router(internal.router)

# Must stay last so every other route wins
use_spa_proxy(app, resolve_forwarding_options(get_config()))
