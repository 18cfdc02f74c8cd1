"""
Firewall Control Plane

Sends ban directives to the Cloudflare access-rules API so persistent
abusers are blocked at the edge. Calls run as background tasks with a
bounded number of attempts; failures are logged and never reach the
admission decision.
"""

import asyncio
import ipaddress
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Set

import httpx

from image_proxy.config import FirewallConfig

logger = logging.getLogger(__name__)

ACCESS_RULES_PATH = "/user/firewall/access_rules/rules"


@dataclass(frozen=True)
class BanDirective:
    """Request to block `identity` at the network edge."""
    identity: str
    reason: str
    expires_at: datetime

    @property
    def target(self) -> str:
        """Cloudflare configuration target for the identity."""
        try:
            version = ipaddress.ip_address(self.identity).version
        except ValueError:
            return "ip"
        return "ip6" if version == 6 else "ip"

    def to_rule(self) -> dict:
        return {
            "mode": "block",
            "configuration": {"target": self.target, "value": self.identity},
            "notes": f"Banned until {self.expires_at.strftime('%Y-%m-%d %H:%M:%S %Z')} ({self.reason})",
        }


class CloudflareFirewall:
    """
    Best-effort client for the Cloudflare access-rules endpoint.

    Usage:
        firewall = CloudflareFirewall(config.throttler.firewall)
        firewall.dispatch(BanDirective(ip, "rate limit", expires_at))
    """

    def __init__(
        self,
        config: Optional[FirewallConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_delay: float = 1.0,
    ):
        self.config = config or FirewallConfig()
        self.retry_delay = retry_delay
        self.http_client = httpx.AsyncClient(
            base_url=self.config.api_base,
            timeout=self.config.timeout,
            headers={
                "X-Auth-Email": self.config.email,
                "X-Auth-Key": self.config.auth_key,
                "Content-Type": "application/json",
            },
            transport=transport,
        )
        self._tasks: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def dispatch(self, directive: BanDirective) -> Optional[asyncio.Task]:
        """Schedule `ban` in the background and return the task."""
        if not self.enabled:
            return None
        task = asyncio.create_task(self.ban(directive))
        # Hold a reference until the task finishes
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def ban(self, directive: BanDirective) -> bool:
        """
        Create a block rule for the directive's identity.

        Returns:
            True if Cloudflare accepted the rule, False after all attempts failed.
        """
        rule = directive.to_rule()
        for attempt in range(1, self.config.max_attempts + 1):
            try:
                response = await asyncio.wait_for(
                    self.http_client.post(ACCESS_RULES_PATH, json=rule),
                    timeout=self.config.timeout,
                )
                response.raise_for_status()
                body = response.json()
                if body.get("success", False):
                    logger.info(f"[Firewall] Banned {directive.identity} until {directive.expires_at.isoformat()}")
                    return True
                logger.warning(f"[Firewall] Ban rejected for {directive.identity}: {body.get('errors')}")
                return False
            except (httpx.HTTPError, asyncio.TimeoutError, ValueError) as e:
                logger.warning(
                    f"[Firewall] Ban attempt {attempt}/{self.config.max_attempts} "
                    f"for {directive.identity} failed: {e!r}"
                )
                if attempt < self.config.max_attempts:
                    await asyncio.sleep(self.retry_delay * attempt)
        logger.error(f"[Firewall] Giving up banning {directive.identity}")
        return False

    async def close(self) -> None:
        """Wait for pending bans, then close the HTTP client."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.http_client.aclose()


def ban_expiry(ban_time: int) -> datetime:
    """UTC timestamp `ban_time` seconds from now."""
    return datetime.now(timezone.utc) + timedelta(seconds=ban_time)
