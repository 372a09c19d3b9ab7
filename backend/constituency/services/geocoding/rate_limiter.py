"""
Request spacing for the geocoding provider
"""
import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Keeps successive provider requests at least ``rate_limit_delay`` seconds apart

    Share one instance between every client of the same provider; separate
    instances do not see each other's requests.
    """

    def __init__(self, rate_limit_delay: float = 1.0):
        """
        Args:
            rate_limit_delay: Minimum seconds between requests (Nominatim allows one per second)
        """
        self.rate_limit_delay = rate_limit_delay
        self.last_request_time = 0.0
        self._lock: Optional[asyncio.Lock] = None

    async def wait_for_rate_limit(self):
        """Sleep until the next request is allowed; concurrent callers queue up"""
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            loop = asyncio.get_running_loop()
            time_since_last = loop.time() - self.last_request_time
            if time_since_last < self.rate_limit_delay:
                wait = self.rate_limit_delay - time_since_last
                logger.debug(f"Rate limiting geocoding request for {wait:.2f}s")
                await asyncio.sleep(wait)
            self.last_request_time = loop.time()
