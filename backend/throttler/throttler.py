"""
Admission Controller

Fixed-window request counting per client identity:
- More than `allowed_requests` within `cache_time` seconds locks the client
  out for `ban_time` seconds (every request answered with 429)
- Every lockout counts as a violation; reaching `ban_threshold` violations
  sends a ban directive to the firewall in the background
- Whitelisted identities bypass the controller
- Backend failures fail open (request admitted, warning logged)
"""

import logging
from enum import Enum
from typing import Optional

from image_proxy.config import ThrottlerConfig
from image_proxy.errors import RateExceededError

from .backends import ThrottleBackend
from .firewall import BanDirective, CloudflareFirewall, ban_expiry

logger = logging.getLogger(__name__)

RATE_EXCEEDED_MESSAGE = "There are an unusual number of requests coming from this IP address."


class Admission(str, Enum):
    """Outcome of an admission check."""
    ALLOWED = "allowed"
    THROTTLED = "throttled"


class Throttler:
    """
    Per-identity rate limiting on top of a ThrottleBackend.

    Usage:
        throttler = Throttler(create_backend(cfg), cfg, CloudflareFirewall(cfg.firewall))
        await throttler.check(client_ip)  # raises RateExceededError
    """

    def __init__(
        self,
        backend: ThrottleBackend,
        config: Optional[ThrottlerConfig] = None,
        firewall: Optional[CloudflareFirewall] = None,
    ):
        self.backend = backend
        self.config = config or ThrottlerConfig()
        self.firewall = firewall

    def _counter_key(self, identity: str) -> str:
        return f"{self.config.prefix}{identity}"

    def _lockout_key(self, identity: str) -> str:
        return f"{self.config.prefix}{identity}_lockout"

    def _violations_key(self, identity: str) -> str:
        return f"{self.config.prefix}{identity}_violations"

    async def admit(self, identity: str) -> Admission:
        """
        Decide whether a request from `identity` may proceed.

        Returns:
            Admission.ALLOWED or Admission.THROTTLED
        """
        if identity in self.config.whitelist:
            return Admission.ALLOWED

        try:
            return await self._admit(identity)
        except Exception as e:
            # Fail open
            logger.warning(f"[Throttler] Backend {self.backend.name} unavailable, admitting {identity}: {e!r}")
            return Admission.ALLOWED

    async def check(self, identity: str) -> None:
        """
        Raises:
            RateExceededError: If `identity` is throttled
        """
        if await self.admit(identity) is Admission.THROTTLED:
            raise RateExceededError(RATE_EXCEEDED_MESSAGE, identity=identity)

    async def _admit(self, identity: str) -> Admission:
        if await self.backend.exists(self._lockout_key(identity)):
            return Admission.THROTTLED

        hits = await self.backend.incr(self._counter_key(identity), self.config.cache_time)
        if hits > self.config.allowed_requests:
            await self._lockout(identity, hits)
            return Admission.THROTTLED

        return Admission.ALLOWED

    async def _lockout(self, identity: str, hits: int) -> None:
        config = self.config
        logger.warning(
            f"[Throttler] {identity} exceeded {config.allowed_requests} requests "
            f"in {config.cache_time}s ({hits}), locked out for {config.ban_time}s"
        )
        await self.backend.set(self._lockout_key(identity), 1, config.ban_time)
        await self.backend.delete(self._counter_key(identity))

        threshold = max(config.ban_threshold, 1)
        violations = await self.backend.incr(
            self._violations_key(identity),
            config.ban_time * threshold + config.cache_time,
        )
        if violations < threshold or self.firewall is None or not self.firewall.enabled:
            return

        directive = BanDirective(
            identity=identity,
            reason=f"{violations} rate limit violation(s)",
            expires_at=ban_expiry(config.ban_time),
        )
        self.firewall.dispatch(directive)
        await self.backend.delete(self._violations_key(identity))

    async def close(self) -> None:
        await self.backend.close()
        if self.firewall is not None:
            await self.firewall.close()
