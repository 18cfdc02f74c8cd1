"""
Error Taxonomy

Every stage of a request classifies its own failures into exactly one
ErrorKind before raising. The server maps kinds to client responses in a
single table (see server.py) and never inspects raw httpx/Pillow errors.
"""

from enum import Enum
from typing import Any, Dict


class ErrorKind(str, Enum):
    """Client-visible failure kinds."""
    INVALID_URL = "invalid_url"
    INVALID_REDIRECT_URL = "invalid_redirect_url"
    INVALID_IMAGE = "invalid_image"
    IMAGE_TOO_BIG = "image_too_big"
    IMAGE_TOO_LARGE = "image_too_large"
    IMAGE_NOT_READABLE = "image_not_readable"
    TRANSFORM_ERROR = "transform_error"
    DNS_ERROR = "dns_error"
    ORIGIN_ERROR = "origin_error"
    RATE_EXCEEDED = "rate_exceeded"
    UNKNOWN = "unknown"


class ProxyError(Exception):
    """Base exception for all classified proxy failures."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details: Dict[str, Any] = details
        super().__init__(message)


class InvalidUrlError(ProxyError):
    """The ?url= parameter is not a usable URI."""
    kind = ErrorKind.INVALID_URL


class InvalidRedirectUrlError(ProxyError):
    """The ?errorredirect= parameter is not a usable URI."""
    kind = ErrorKind.INVALID_REDIRECT_URL


class InvalidImageError(ProxyError):
    """Bytes were rejected by the decoder or by the MIME allow-list."""
    kind = ErrorKind.INVALID_IMAGE


class ImageTooBigError(ProxyError):
    """The origin body exceeded the byte ceiling."""
    kind = ErrorKind.IMAGE_TOO_BIG

    def __init__(self, received_bytes: int, max_bytes: int):
        self.received_bytes = received_bytes
        self.max_bytes = max_bytes
        super().__init__(
            format_bytes(received_bytes),
            received_bytes=received_bytes,
            max_bytes=max_bytes,
        )


class ImageTooLargeError(ProxyError):
    """Decoded or requested pixel count exceeds the ceiling."""
    kind = ErrorKind.IMAGE_TOO_LARGE


class ImageNotReadableError(ProxyError):
    """Header decoded fine but reading pixel data failed."""
    kind = ErrorKind.IMAGE_NOT_READABLE


class TransformError(ProxyError):
    """A codec or pipeline operation faulted."""
    kind = ErrorKind.TRANSFORM_ERROR


class DnsError(ProxyError):
    """Origin host is unresolvable or blocked by policy."""
    kind = ErrorKind.DNS_ERROR


class OriginError(ProxyError):
    """Origin was reachable but answered with an error, or transport failed."""
    kind = ErrorKind.ORIGIN_ERROR

    def __init__(self, message: str, status_code: int = 0, reason: str = "", **details: Any):
        self.status_code = status_code
        self.reason = reason
        super().__init__(message, status_code=status_code, reason=reason, **details)

    @property
    def status_line(self) -> str:
        """'<status> <reason>' as reported to the client."""
        if self.status_code:
            return f"{self.status_code} {self.reason}".strip()
        return self.reason or self.message


class RateExceededError(ProxyError):
    """The admission controller rejected the client."""
    kind = ErrorKind.RATE_EXCEEDED


def format_bytes(size: int, precision: int = 2) -> str:
    """Human readable byte size, e.g. 1536 -> '1.50 KB'."""
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(max(size, 0))
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{value:.{precision}f} {units[index]}"
