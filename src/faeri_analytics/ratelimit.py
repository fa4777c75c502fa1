"""
Rate limiting for the public track endpoint.

Counters live in the datastore (``hit_rate_limit`` procedure: a keyed
counter with a TTL window), so every server instance sees the same counts.
Nothing is kept in process memory.
"""

import hashlib
import logging
from typing import Protocol

from .errors import PersistenceError

logger = logging.getLogger(__name__)


class CounterStore(Protocol):
    async def hit_rate_limit(self, key: str, window_seconds: int) -> int: ...


class RateLimiter:
    """Shared-counter rate limiter keyed by hashed client IP.

    Fails open: if the counter store is unreachable, requests are allowed
    and a warning is logged.
    """

    def __init__(
        self,
        store: CounterStore,
        max_requests: int = 60,
        window_seconds: int = 60,
        salt: str = "",
    ):
        self.store = store
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.salt = salt

    @property
    def enabled(self) -> bool:
        return self.max_requests > 0

    def _key(self, scope: str, ip: str) -> str:
        """Hash IP with salt (no raw IPs stored in the counter table)."""
        digest = hashlib.sha256(f"{self.salt}:{ip}".encode()).hexdigest()[:16]
        return f"{scope}:{digest}"

    async def is_rate_limited(self, scope: str, ip: str) -> bool:
        """Count this request and report whether it is over the limit."""
        if not self.enabled:
            return False

        try:
            count = await self.store.hit_rate_limit(self._key(scope, ip), self.window_seconds)
        except PersistenceError:
            logger.warning(f"Rate limit check for '{scope}' skipped: counter store unavailable")
            return False

        if count > self.max_requests:
            logger.info(f"Rate limited '{scope}' ({count}/{self.max_requests} in {self.window_seconds}s)")
            return True
        return False
