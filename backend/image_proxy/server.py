"""
Image Server

Per-request orchestration: validate -> admit -> fetch -> decode -> transform
-> encode -> respond. Each stage raises a classified ProxyError; this module
turns kinds into client responses through one table and never looks at
httpx/Pillow exceptions itself.
"""

import asyncio
import html
import logging
from dataclasses import dataclass, field
from threading import Event
from types import MappingProxyType
from typing import Callable, Dict, Mapping, Optional

from image_fetcher.client import OriginFetcher
from manipulators.pipeline import ManipulationPipeline
from throttler.throttler import Throttler

from .config import ProxyConfig
from .encoder import EncodedImage, encode
from .errors import (
    ErrorKind,
    ImageTooBigError,
    InvalidRedirectUrlError,
    InvalidUrlError,
    OriginError,
    ProxyError,
    TransformError,
    format_bytes,
)
from .raster import decode
from .urls import parse_url, sanitize_error_redirect

logger = logging.getLogger(__name__)


# ============================================
# Response messages
# ============================================

INVALID_URL_MESSAGE = (
    "Error 404: Server couldn't parse the ?url= that you were looking for, because it isn't a valid url."
)
INVALID_REDIRECT_URL_MESSAGE = "Error 404: Unable to parse the redirection URL."
IMAGE_TOO_BIG_MESSAGE = "The image is too big to be downloaded.\nImage size {size}\nMax image size: {max_size}"
ORIGIN_ERROR_MESSAGE = (
    "Error 404: Server couldn't parse the ?url= that you were looking for, "
    "error it got: The requested URL returned error: {status}"
)
DNS_ERROR_MESSAGE = (
    "Error 410: Server couldn't parse the ?url= that you were looking for, because the hostname "
    "of the origin is unresolvable (DNS) or blocked by policy."
)
UNKNOWN_ERROR_MESSAGE = (
    "Something's wrong!\n"
    "It looks as though we've broken something on our system.\n"
    "Don't panic, we are fixing it! Please come back in a while.. "
)

BANNER = "Image cache & resize proxy. Usage: /?url=<image url>&w=<width>&h=<height>"


@dataclass
class ProxyResponse:
    """Transport-agnostic response; routes turn it into a FastAPI Response."""
    status_code: int
    body: bytes
    media_type: str = "text/plain"
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def text(cls, status_code: int, message: str, media_type: str = "text/plain") -> "ProxyResponse":
        return cls(status_code=status_code, body=message.encode("utf-8"), media_type=media_type)

    @classmethod
    def redirect(cls, location: str) -> "ProxyResponse":
        return cls(status_code=302, body=b"", headers={"Location": location})


# ============================================
# Error dispatch
# ============================================

def _status_body(status_code: int, header: str) -> Callable[[ProxyError], ProxyResponse]:
    """'<status> <header> - <message>' responses."""
    def render(error: ProxyError) -> ProxyResponse:
        return ProxyResponse.text(status_code, f"{status_code} {header} - {error.message}")
    return render


def _fixed_body(status_code: int, message: str) -> Callable[[ProxyError], ProxyResponse]:
    def render(error: ProxyError) -> ProxyResponse:
        return ProxyResponse.text(status_code, message)
    return render


def _image_too_big(error: ProxyError) -> ProxyResponse:
    max_bytes = error.max_bytes if isinstance(error, ImageTooBigError) else 0
    return ProxyResponse.text(
        400,
        IMAGE_TOO_BIG_MESSAGE.format(size=error.message, max_size=format_bytes(max_bytes)),
    )


def _origin_error(error: ProxyError) -> ProxyResponse:
    status = error.status_line if isinstance(error, OriginError) else error.message
    return ProxyResponse.text(
        404,
        ORIGIN_ERROR_MESSAGE.format(status=html.escape(status)),
        media_type="text/html",
    )


ERROR_RESPONSES: Dict[ErrorKind, Callable[[ProxyError], ProxyResponse]] = {
    ErrorKind.INVALID_URL: _fixed_body(404, INVALID_URL_MESSAGE),
    ErrorKind.INVALID_REDIRECT_URL: _fixed_body(404, INVALID_REDIRECT_URL_MESSAGE),
    ErrorKind.INVALID_IMAGE: lambda error: ProxyResponse.text(400, error.message),
    ErrorKind.IMAGE_TOO_BIG: _image_too_big,
    ErrorKind.IMAGE_TOO_LARGE: _status_body(400, "Bad Request"),
    ErrorKind.IMAGE_NOT_READABLE: _status_body(400, "Bad Request"),
    ErrorKind.TRANSFORM_ERROR: _status_body(400, "Bad Request"),
    ErrorKind.DNS_ERROR: _fixed_body(410, DNS_ERROR_MESSAGE),
    ErrorKind.ORIGIN_ERROR: _origin_error,
    ErrorKind.RATE_EXCEEDED: _status_body(429, "Too Many Requests"),
    ErrorKind.UNKNOWN: _fixed_body(500, UNKNOWN_ERROR_MESSAGE),
}


# ============================================
# Server
# ============================================

class ImageServer:
    """
    Serves one request at a time per call; safe to share between tasks.

    Usage:
        server = ImageServer(config, OriginFetcher(config.fetch), throttler)
        response = await server.handle(request.query_params, client_ip)
    """

    def __init__(
        self,
        config: Optional[ProxyConfig] = None,
        fetcher: Optional[OriginFetcher] = None,
        throttler: Optional[Throttler] = None,
        pipeline: Optional[ManipulationPipeline] = None,
    ):
        self.config = config or ProxyConfig()
        self.fetcher = fetcher or OriginFetcher(self.config.fetch)
        self.throttler = throttler
        self.pipeline = pipeline or ManipulationPipeline(max_image_pixels=self.config.max_image_pixels)

    async def close(self) -> None:
        await self.fetcher.close()
        if self.throttler is not None:
            await self.throttler.close()

    async def handle(self, query: Mapping[str, str], client_ip: Optional[str] = None) -> ProxyResponse:
        """
        Run one request through the whole pipeline.

        Args:
            query: Query parameters (last value wins for repeated keys)
            client_ip: Identity used for admission control

        Returns:
            ProxyResponse (image, redirect or error)
        """
        params = MappingProxyType(dict(query))
        url = params.get("url", "")

        try:
            return await self._handle(params, client_ip or "unknown")
        except ProxyError as e:
            return self._error_response(e, params, url)
        except Exception as e:
            logger.warning(f"[ImageServer] URL: {url}, Message: {e}, Instance: {type(e).__name__}", exc_info=True)
            return ERROR_RESPONSES[ErrorKind.UNKNOWN](ProxyError(str(e)))

    async def _handle(self, params: Mapping[str, str], client_ip: str) -> ProxyResponse:
        # Validating
        try:
            url = parse_url(params.get("url", ""))
        except ValueError as e:
            raise InvalidUrlError(str(e))

        # Admitting
        if self.throttler is not None:
            await self.throttler.check(client_ip)

        # On timeout the worker stops at the next stage boundary; a running
        # stage is not interrupted
        cancelled = Event()

        # Fetching; the temp file is removed when the block exits
        async with self.fetcher.fetch(url) as fetched:
            try:
                encoded = await asyncio.wait_for(
                    asyncio.to_thread(self._process, fetched.path, params, cancelled),
                    timeout=self.config.process_timeout or None,
                )
            except asyncio.TimeoutError:
                cancelled.set()
                raise TransformError(f"Processing took longer than {self.config.process_timeout}s")

        return self._image_response(encoded, params)

    def _process(self, path: str, params: Mapping[str, str], cancelled: Event) -> EncodedImage:
        """Decode, transform and encode. Runs in a worker thread."""
        raster = decode(path, page=_get_page(params), max_pixels=self.config.max_image_pixels)
        self.pipeline.apply(raster, params, cancelled)
        if cancelled.is_set():
            raise TransformError("Processing cancelled before encoding")
        return encode(raster, params, self.config.default_quality)

    def _image_response(self, encoded: EncodedImage, params: Mapping[str, str]) -> ProxyResponse:
        headers = {"Cache-Control": f"public, max-age={self.config.cache_max_age}"}

        filename = params.get("filename", "")
        if filename and filename.isalnum() and filename.isascii():
            headers["Content-Disposition"] = f"inline; filename={filename}.{encoded.extension}"

        if params.get("encoding") == "base64":
            return ProxyResponse(
                status_code=200,
                body=encoded.to_data_url().encode("ascii"),
                media_type="text/plain",
                headers=headers,
            )
        return ProxyResponse(status_code=200, body=encoded.data, media_type=encoded.media_type, headers=headers)

    def _error_response(self, error: ProxyError, params: Mapping[str, str], url: str) -> ProxyResponse:
        kind = error.kind
        self._log_error(error, url)

        # Only non-DNS origin failures may fall back to a caller-supplied image
        redirect = params.get("errorredirect")
        if kind is ErrorKind.ORIGIN_ERROR and redirect:
            try:
                location = sanitize_error_redirect(parse_url(redirect))
            except ValueError as e:
                error = InvalidRedirectUrlError(str(e))
                kind = error.kind
            else:
                logger.info(f"[ImageServer] Redirecting failed {url} to {location}")
                return ProxyResponse.redirect(location)

        render = ERROR_RESPONSES.get(kind, ERROR_RESPONSES[ErrorKind.UNKNOWN])
        return render(error)

    @staticmethod
    def _log_error(error: ProxyError, url: str) -> None:
        kind = error.kind
        if kind is ErrorKind.INVALID_IMAGE:
            logger.warning(f"[ImageServer] Non-supported image. URL: {url}")
        elif kind is ErrorKind.IMAGE_TOO_BIG:
            logger.warning(f"[ImageServer] Image too big. URL: {url}")
        elif kind is ErrorKind.IMAGE_TOO_LARGE:
            logger.warning(f"[ImageServer] Image too large. URL: {url}")
        elif kind is ErrorKind.IMAGE_NOT_READABLE:
            logger.warning(f"[ImageServer] Image not readable. URL: {url} Message: {error.message}")
        elif kind is ErrorKind.TRANSFORM_ERROR:
            logger.warning(f"[ImageServer] Transform error. URL: {url} Message: {error.message} {error.details}")
        elif kind in (ErrorKind.ORIGIN_ERROR, ErrorKind.DNS_ERROR):
            logger.info(f"[ImageServer] Origin request error: {error.message} URL: {url}")
        elif kind is ErrorKind.UNKNOWN:
            logger.warning(f"[ImageServer] URL: {url}, Message: {error.message}, Instance: {type(error).__name__}")
        else:
            logger.debug(f"[ImageServer] {kind.value}: {error.message}")


def _get_page(params: Mapping[str, str]) -> int:
    try:
        page = int(params.get("page", "0"))
    except ValueError:
        return 0
    return max(page, 0)
