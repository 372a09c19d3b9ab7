"""
HTTP client for the Nominatim search API
"""
import httpx
import logging
import math
from typing import Optional, Tuple
from constituency.config import config
from constituency.services.shared.exceptions import GeocodingProviderError
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

Coordinates = Tuple[float, float]


class NominatimGeocoder:
    """Resolves free-text addresses to (lat, lng) with one result per query"""

    def __init__(
        self,
        base_url: str = config.GEOCODING_PROVIDER_URL,
        user_agent: str = config.GEOCODING_USER_AGENT,
        rate_limiter: Optional[RateLimiter] = None,
        timeout: float = config.GEOCODING_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Args:
            base_url: Search endpoint URL
            user_agent: Identifying User-Agent, required by the provider's usage policy
            rate_limiter: Request spacing (default: GEOCODING_RATE_LIMIT_DELAY)
            timeout: Request timeout in seconds
            transport: Optional httpx transport, used by tests to stub the provider
        """
        self.base_url = base_url
        self.rate_limiter = rate_limiter or RateLimiter(config.GEOCODING_RATE_LIMIT_DELAY)
        self.client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"User-Agent": user_agent},
        )

    async def geocode(self, address: str) -> Optional[Coordinates]:
        """
        Look up ``address``

        Returns:
            (lat, lng), or None when the provider has no usable result

        Raises:
            GeocodingProviderError: the provider answered with a non-success status
            httpx.HTTPError: transport failure
        """
        await self.rate_limiter.wait_for_rate_limit()

        response = await self.client.get(
            self.base_url,
            params={"format": "json", "limit": 1, "q": address},
        )
        if not response.is_success:
            raise GeocodingProviderError(
                f"Geocoding provider returned HTTP {response.status_code}",
                provider_status=response.status_code,
            )

        try:
            results = response.json()
        except ValueError:
            logger.warning(f"Geocoding provider returned invalid JSON for {address!r}")
            return None

        if not results:
            return None

        try:
            lat, lng = float(results[0]["lat"]), float(results[0]["lon"])
        except (KeyError, TypeError, ValueError):
            lat = lng = math.nan

        if math.isnan(lat) or math.isnan(lng):
            logger.warning(f"Geocoding result without usable coordinates for {address!r}")
            return None
        return lat, lng

    async def close(self):
        await self.client.aclose()
