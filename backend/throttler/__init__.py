"""
Throttler Module

Distributed admission control for the image proxy.

Features:
- Fixed-window request counting per client IP
- Memory, Redis or Memcached backend, chosen by configuration
- Lockouts with escalation to Cloudflare firewall bans
- Whitelist bypass, fail-open on backend errors
"""

from .backends import (
    MemcachedThrottleBackend,
    MemoryThrottleBackend,
    RedisThrottleBackend,
    ThrottleBackend,
    create_backend,
)
from .firewall import BanDirective, CloudflareFirewall
from .throttler import Admission, Throttler

__all__ = [
    "Admission",
    "BanDirective",
    "CloudflareFirewall",
    "MemcachedThrottleBackend",
    "MemoryThrottleBackend",
    "RedisThrottleBackend",
    "ThrottleBackend",
    "Throttler",
    "create_backend",
]
