"""
Proxy Configuration

Immutable configuration built once at startup (ProxyConfig.from_env) and
handed to each component's constructor. Nothing reads the environment after
that point.
"""

import os
import tempfile
from dataclasses import dataclass, field
from typing import FrozenSet, Optional


DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; ImageFetcher/7.0; +https://github.com/image-resize-proxy)"

# Decompression-bomb guard shared by decode and thumbnail
DEFAULT_MAX_IMAGE_PIXELS = 71_000_000


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_set(name: str) -> FrozenSet[str]:
    value = os.getenv(name, "")
    return frozenset(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class FetchConfig:
    """Limits for the origin fetch client."""
    connect_timeout: float = 5.0        # Seconds to wait for a connection
    timeout: float = 10.0               # Seconds for the whole transfer
    max_image_size: int = 0             # Max body size in bytes (0 = unlimited)
    max_redirects: int = 10
    allowed_mime_types: FrozenSet[str] = frozenset()  # Empty = allow all
    user_agent: str = DEFAULT_USER_AGENT
    tmp_dir: Optional[str] = None       # None = system temp dir


@dataclass(frozen=True)
class FirewallConfig:
    """Cloudflare access-rule credentials used for ban directives."""
    email: str = ""
    auth_key: str = ""
    api_base: str = "https://api.cloudflare.com/client/v4"
    timeout: float = 5.0
    max_attempts: int = 3

    @property
    def enabled(self) -> bool:
        return bool(self.email and self.auth_key)


@dataclass(frozen=True)
class ThrottlerConfig:
    """Admission control settings."""
    enabled: bool = False
    driver: str = "memory"              # memory | redis | memcached
    redis_url: str = "redis://localhost:6379/0"
    memcached_host: str = "localhost"
    memcached_port: int = 11211
    prefix: str = "images_"
    allowed_requests: int = 700         # Requests per window
    cache_time: int = 180               # Window length in seconds
    ban_time: int = 3600                # Lockout length in seconds
    ban_threshold: int = 1              # Lockouts before a firewall ban
    whitelist: FrozenSet[str] = frozenset()
    firewall: FirewallConfig = field(default_factory=FirewallConfig)


@dataclass(frozen=True)
class ProxyConfig:
    """Top-level configuration for the image proxy."""
    fetch: FetchConfig = field(default_factory=FetchConfig)
    throttler: ThrottlerConfig = field(default_factory=ThrottlerConfig)
    max_image_pixels: int = DEFAULT_MAX_IMAGE_PIXELS
    process_timeout: float = 30.0       # Seconds for decode + pipeline + encode
    cache_max_age: int = 60 * 60 * 24 * 365
    default_quality: int = 85

    @classmethod
    def from_env(cls) -> "ProxyConfig":
        """Build the configuration from environment variables."""
        fetch = FetchConfig(
            connect_timeout=_env_float("IMAGE_CONNECT_TIMEOUT", 5.0),
            timeout=_env_float("IMAGE_TIMEOUT", 10.0),
            max_image_size=_env_int("IMAGE_MAX_SIZE_BYTES", 0),
            max_redirects=_env_int("IMAGE_MAX_REDIRECTS", 10),
            allowed_mime_types=_env_set("IMAGE_ALLOWED_MIME_TYPES"),
            user_agent=os.getenv("IMAGE_USER_AGENT", DEFAULT_USER_AGENT),
            tmp_dir=os.getenv("IMAGE_TMP_DIR") or tempfile.gettempdir(),
        )
        firewall = FirewallConfig(
            email=os.getenv("CLOUDFLARE_EMAIL", ""),
            auth_key=os.getenv("CLOUDFLARE_AUTH_KEY", ""),
        )
        throttler = ThrottlerConfig(
            enabled=_env_bool("THROTTLER_ENABLED", False),
            driver=os.getenv("THROTTLER_DRIVER", "redis").strip().lower(),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            memcached_host=os.getenv("MEMCACHED_HOST", "localhost"),
            memcached_port=_env_int("MEMCACHED_PORT", 11211),
            prefix=os.getenv("THROTTLER_PREFIX", "images_"),
            allowed_requests=_env_int("THROTTLER_ALLOWED_REQUESTS", 700),
            cache_time=_env_int("THROTTLER_CACHE_TIME", 180),
            ban_time=_env_int("THROTTLER_BAN_TIME", 3600),
            ban_threshold=_env_int("THROTTLER_BAN_THRESHOLD", 1),
            whitelist=_env_set("THROTTLER_WHITELIST"),
            firewall=firewall,
        )
        return cls(
            fetch=fetch,
            throttler=throttler,
            max_image_pixels=_env_int("IMAGE_MAX_PIXELS", DEFAULT_MAX_IMAGE_PIXELS),
            process_timeout=_env_float("IMAGE_PROCESS_TIMEOUT", 30.0),
            cache_max_age=_env_int("IMAGE_CACHE_MAX_AGE", 60 * 60 * 24 * 365),
        )
