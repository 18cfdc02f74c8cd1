"""
Application factory

Builds the FastAPI app from a ProxyConfig. Components are created once and
closed when the app shuts down.

Run with:
    uvicorn --factory image_proxy.main:create_app
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from image_fetcher.client import OriginFetcher
from throttler.backends import create_backend
from throttler.firewall import CloudflareFirewall
from throttler.throttler import Throttler

from .config import ProxyConfig
from .routes_fastapi import router
from .server import ImageServer

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: Optional[str] = None) -> None:
    """Console logging; level from LOG_LEVEL unless given."""
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)


def build_throttler(config: ProxyConfig) -> Optional[Throttler]:
    """Throttler for the configured driver, or None when throttling is off."""
    throttler_config = config.throttler
    if not throttler_config.enabled:
        return None

    firewall = CloudflareFirewall(throttler_config.firewall) if throttler_config.firewall.enabled else None
    return Throttler(create_backend(throttler_config), throttler_config, firewall)


def create_app(
    config: Optional[ProxyConfig] = None,
    fetcher: Optional[OriginFetcher] = None,
    throttler: Optional[Throttler] = None,
) -> FastAPI:
    """
    Create the image proxy app.

    Args:
        config: Configuration (defaults to ProxyConfig.from_env())
        fetcher: Origin fetcher override (tests pass one with a mock transport)
        throttler: Throttler override; built from config when omitted

    Returns:
        FastAPI app
    """
    config = config or ProxyConfig.from_env()
    if throttler is None:
        throttler = build_throttler(config)

    server = ImageServer(config, fetcher=fetcher, throttler=throttler)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"[ImageProxy] Starting (throttler: {'on' if throttler else 'off'}, "
            f"max size: {config.fetch.max_image_size or 'unlimited'})"
        )
        try:
            yield
        finally:
            await server.close()
            logger.info("[ImageProxy] Stopped")

    app = FastAPI(
        title="Image Proxy",
        description="Image cache & resize proxy",
        lifespan=lifespan,
    )
    app.state.image_server = server
    app.include_router(router)
    return app

