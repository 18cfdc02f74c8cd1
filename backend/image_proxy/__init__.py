"""
Image Proxy Module

On-demand image cache & resize proxy. Fetches an origin image, applies the
requested transformations and returns the re-encoded result for edge caching.

Features:
- Bounded streaming origin fetch (size, type, redirect and time limits)
- Ordered manipulation pipeline (resize, crop, shape, tone, filters)
- Per-client throttling with escalation to a Cloudflare firewall ban
- Deterministic error responses per failure kind

The HTTP app lives in image_proxy.main (create_app); it is not imported here
so the leaf modules can be used by the fetcher, throttler and manipulators.
"""

from .config import FetchConfig, FirewallConfig, ProxyConfig, ThrottlerConfig
from .errors import ErrorKind, ProxyError

__all__ = [
    "ProxyConfig",
    "FetchConfig",
    "ThrottlerConfig",
    "FirewallConfig",
    "ErrorKind",
    "ProxyError",
]
