"""Per-domain politeness limiter for the local extract worker."""
import asyncio
import logging
import time
from collections import defaultdict
from typing import Callable, Dict
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


class RateLimiter:
    """Spaces out requests to the same host.

    Each caller reserves the next free slot for its domain under a lock and
    then sleeps outside of it, so waiting on one domain never blocks another.
    """

    def __init__(self, rate_per_second: float, clock: Callable[[], float] = time.monotonic):
        self.rate_per_second = rate_per_second
        self.min_interval = 1.0 / rate_per_second if rate_per_second > 0 else 0.0
        self._clock = clock
        self._next_slot: Dict[str, float] = defaultdict(float)
        self._lock = asyncio.Lock()

    @staticmethod
    def domain_of(url: str) -> str:
        parsed = urlparse(url)
        return parsed.netloc.lower()

    async def reserve(self, url: str) -> float:
        """Reserve a slot for ``url`` and return how long to wait for it."""
        if self.min_interval <= 0:
            return 0.0
        domain = self.domain_of(url)
        async with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot[domain])
            self._next_slot[domain] = slot + self.min_interval
        return slot - now

    async def acquire(self, url: str) -> None:
        """Wait if necessary to respect the per-domain rate."""
        delay = await self.reserve(url)
        if delay > 0:
            logger.debug(f"Rate limit: waiting {delay:.2f}s for {self.domain_of(url)}")
            await asyncio.sleep(delay)
