"""
Origin Fetcher

Downloads an origin image into a bounded temporary file:
- Streams the body and aborts as soon as the byte ceiling is crossed
- Rejects MIME types outside the allow-list before reading the body
- Enforces connect/total timeouts and a redirect budget
- Classifies failures (DNS vs. reachable-but-failing origin)

The temp file is removed when the fetch scope ends, on every exit path.
"""

import asyncio
import logging
import os
import socket
import tempfile
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional

import httpx

from image_proxy.config import FetchConfig
from image_proxy.errors import (
    DnsError,
    ImageTooBigError,
    InvalidImageError,
    OriginError,
)
from image_proxy.urls import path_extension

logger = logging.getLogger(__name__)

# Extensions some decoders need to see on disk to sniff the format
_KEEP_EXTENSIONS = ("svg", "ico")

_DNS_MESSAGES = (
    "name or service not known",
    "nodename nor servname provided",
    "temporary failure in name resolution",
    "getaddrinfo failed",
    "no address associated with hostname",
)


class FetchFailure(str, Enum):
    """Why a fetch failed."""
    NETWORK = "network"
    DNS = "dns"
    TOO_BIG = "too_big"
    TYPE_REJECTED = "type_rejected"
    TIMEOUT = "timeout"
    TOO_MANY_REDIRECTS = "too_many_redirects"
    HTTP_STATUS = "http_status"


@dataclass
class FetchResult:
    """A fetched origin body stored in a local temp file."""
    url: str
    path: str
    mime_type: str
    size: int


def _is_dns_error(exc: BaseException) -> bool:
    """Look for a resolver failure anywhere in the exception chain."""
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, socket.gaierror):
            return True
        message = str(current).lower()
        if any(text in message for text in _DNS_MESSAGES):
            return True
        current = current.__cause__ or current.__context__
    return False


class OriginFetcher:
    """
    Fetches origin images under strict resource limits.

    Usage:
        fetcher = OriginFetcher(config.fetch)
        async with fetcher.fetch(url) as result:
            decode(result.path)
    """

    def __init__(
        self,
        config: Optional[FetchConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or FetchConfig()

        timeout = httpx.Timeout(
            self.config.timeout or None,
            connect=self.config.connect_timeout or None,
        )
        self.http_client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            max_redirects=self.config.max_redirects,
            headers={
                "User-Agent": self.config.user_agent,
                "Accept": "image/*,*/*;q=0.8",
            },
            transport=transport,
        )

    async def close(self) -> None:
        """Close HTTP client."""
        await self.http_client.aclose()

    @asynccontextmanager
    async def fetch(self, url: str) -> AsyncIterator[FetchResult]:
        """
        Fetch `url` into a temp file that lives for the duration of the block.

        Raises:
            DnsError: Host unresolvable or blocked by policy
            OriginError: Origin answered with an error, timed out, or too many redirects
            ImageTooBigError: Body exceeded max_image_size
            InvalidImageError: Content-Type outside the allow-list
        """
        path = self._create_tmp_file(url)
        try:
            try:
                result = await asyncio.wait_for(
                    self._download(url, path),
                    timeout=self.config.timeout or None,
                )
            except asyncio.TimeoutError:
                logger.error(f"[OriginFetcher] Timeout: {url[:80]}")
                raise OriginError(
                    "Request timed out",
                    reason="Request timed out",
                    failure=FetchFailure.TIMEOUT,
                )
            yield result
        finally:
            self._remove_tmp_file(path)

    def _create_tmp_file(self, url: str) -> str:
        extension = path_extension(url)
        suffix = f".{extension}" if extension in _KEEP_EXTENSIONS else ""
        fd, path = tempfile.mkstemp(prefix="imo_", suffix=suffix, dir=self.config.tmp_dir)
        os.close(fd)
        return path

    @staticmethod
    def _remove_tmp_file(path: str) -> None:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"[OriginFetcher] Failed to remove temp file {path}: {e}")

    async def _download(self, url: str, path: str) -> FetchResult:
        logger.info(f"[OriginFetcher] Fetching: {url[:80]}")
        try:
            async with self.http_client.stream("GET", url) as response:
                self._check_response(url, response)
                mime_type = self._check_mime_type(response)
                size = await self._write_body(response, path)
        except httpx.TooManyRedirects:
            logger.error(f"[OriginFetcher] Too many redirects: {url[:80]}")
            raise OriginError(
                f"Will not follow more than {self.config.max_redirects} redirects",
                reason="Too many redirects",
                failure=FetchFailure.TOO_MANY_REDIRECTS,
            )
        except httpx.TimeoutException as e:
            logger.error(f"[OriginFetcher] Timeout: {url[:80]}")
            raise OriginError(
                "Request timed out",
                reason="Request timed out",
                failure=FetchFailure.TIMEOUT,
                error=str(e),
            )
        except httpx.TransportError as e:
            if _is_dns_error(e):
                logger.error(f"[OriginFetcher] DNS error: {url[:80]} - {e}")
                raise DnsError(str(e), failure=FetchFailure.DNS)
            logger.error(f"[OriginFetcher] Transport error: {url[:80]} - {e}")
            raise OriginError(str(e), reason=str(e), failure=FetchFailure.NETWORK)

        logger.info(f"[OriginFetcher] Fetched: {url[:60]} ({size} bytes, {mime_type or 'unknown type'})")
        return FetchResult(url=url, path=path, mime_type=mime_type, size=size)

    def _check_response(self, url: str, response: httpx.Response) -> None:
        # Forward proxies (squid) report resolver failures with this header
        if "ERR_DNS_FAIL" in response.headers.get("X-Squid-Error", ""):
            logger.error(f"[OriginFetcher] DNS error reported by proxy: {url[:80]}")
            raise DnsError("ERR_DNS_FAIL", failure=FetchFailure.DNS)

        if response.status_code >= 400:
            logger.error(f"[OriginFetcher] HTTP error {response.status_code}: {url[:80]}")
            raise OriginError(
                f"Origin returned HTTP {response.status_code}",
                status_code=response.status_code,
                reason=response.reason_phrase,
                failure=FetchFailure.HTTP_STATUS,
            )

    def _check_mime_type(self, response: httpx.Response) -> str:
        mime_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        allowed = self.config.allowed_mime_types
        if mime_type and allowed and mime_type not in allowed:
            logger.warning(f"[OriginFetcher] Rejected content-type: {mime_type}")
            raise InvalidImageError(
                f"Unsupported image format: {mime_type}",
                failure=FetchFailure.TYPE_REJECTED,
            )
        return mime_type

    async def _write_body(self, response: httpx.Response, path: str) -> int:
        max_size = self.config.max_image_size
        received = 0
        with open(path, "wb") as f:
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if max_size and received > max_size:
                    # Leaving the stream context closes the connection mid-transfer
                    logger.warning(f"[OriginFetcher] Aborted after {received} bytes (max {max_size})")
                    raise ImageTooBigError(received, max_size)
                f.write(chunk)
        return received
