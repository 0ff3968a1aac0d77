"""Per-host pacing between consecutive requests."""
import asyncio
import logging
import time
from collections import defaultdict
from typing import Callable, Dict
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


class RequestPacer:
    """Keeps at least 1/rate seconds between requests to the same host."""

    def __init__(self, rate_per_second: float, clock: Callable[[], float] = time.monotonic):
        self.rate_per_second = rate_per_second
        self.min_interval = 1.0 / rate_per_second if rate_per_second > 0 else 0.0
        self._clock = clock
        self._last_request: Dict[str, float] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @staticmethod
    def _host(url: str) -> str:
        parsed = urlparse(url)
        return f"{parsed.scheme}://{parsed.netloc}"

    async def acquire(self, url: str) -> float:
        """Wait if needed. Returns the number of seconds slept."""
        if self.min_interval <= 0:
            return 0.0

        host = self._host(url)
        async with self._locks[host]:
            waited = 0.0
            last = self._last_request.get(host)
            if last is not None:
                elapsed = self._clock() - last
                if elapsed < self.min_interval:
                    waited = self.min_interval - elapsed
                    logger.debug(f"Pacing {host}: sleeping {waited:.3f}s")
                    await asyncio.sleep(waited)
            self._last_request[host] = self._clock()
            return waited
