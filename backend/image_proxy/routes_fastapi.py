"""
Image Proxy API Routes

Provides endpoints for:
- Fetching, transforming and re-encoding origin images (?url=...)
- Health check
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse, Response
from pydantic import BaseModel

from .server import BANNER, ImageServer

logger = logging.getLogger(__name__)


# ============================================
# Models
# ============================================

class HealthResponse(BaseModel):
    status: str = "healthy"
    service: str = "image-proxy"
    throttler_enabled: bool
    throttler_driver: str
    firewall_enabled: bool


# ============================================
# Router
# ============================================

router = APIRouter(tags=["Image Proxy"])


def get_server(request: Request) -> ImageServer:
    return request.app.state.image_server


# ============================================
# Endpoints
# ============================================

@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Health check endpoint."""
    server = get_server(request)
    throttler_config = server.config.throttler
    return HealthResponse(
        throttler_enabled=server.throttler is not None,
        throttler_driver=server.throttler.backend.name if server.throttler is not None else "none",
        firewall_enabled=throttler_config.firewall.enabled,
    )


@router.get("/")
async def proxy_image(request: Request):
    """
    Fetch an origin image and return it transformed.

    Example:
        GET /?url=example.com/image.jpg&w=300&h=300&t=square&a=attention
    """
    # Last value wins for repeated keys
    params = dict(request.query_params)
    if not params.get("url"):
        return PlainTextResponse(BANNER)

    client_ip = request.client.host if request.client else None
    result = await get_server(request).handle(params, client_ip)

    return Response(
        content=result.body,
        status_code=result.status_code,
        media_type=result.media_type,
        headers=result.headers,
    )
