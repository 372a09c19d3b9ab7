"""
HTTP client for constituency API requests
"""
import httpx
import logging
from typing import Any, Dict, List, Optional
from constituency.config import config
from constituency.models.schemas import ActionResult

logger = logging.getLogger(__name__)


class ConstituencyAPIClient:
    """Calls the constituency API and decodes its ``ActionResult`` bodies"""

    def __init__(
        self,
        base_url: str,
        user_email: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize API client

        Args:
            base_url: Server root, e.g. ``http://localhost:8000``
            user_email: Signed-in staff email forwarded in the auth header
            timeout: Request timeout in seconds
            transport: Optional httpx transport (ASGI app or mock in tests)
        """
        self.base_url = base_url.rstrip("/")
        headers = {}
        if user_email:
            headers[config.AUTH_EMAIL_HEADER] = user_email
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "ConstituencyAPIClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        await self.client.aclose()

    @staticmethod
    def _decode(response: httpx.Response) -> ActionResult:
        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict) and "success" in body:
            return ActionResult(**body)

        logger.warning(f"Unexpected response from {response.request.url}: HTTP {response.status_code}")
        return ActionResult(success=False, error=f"Unexpected response (HTTP {response.status_code})")

    async def request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> ActionResult:
        """
        Send a request and return its ``ActionResult``

        Server-side failures come back as ``success=False``; transport
        failures (connection refused, timeouts) raise ``httpx.HTTPError``.
        """
        response = await self.client.request(method, path, json=json, params=params)
        return self._decode(response)

    async def import_chunk(
        self,
        version_id: int,
        header_map: Dict[str, int],
        lines: List[str],
        start_row_index: int,
        skip_version_check: bool
    ) -> ActionResult:
        return await self.request(
            "POST",
            f"/api/spr-voters/versions/{version_id}/import-chunk",
            json={
                "header_map": header_map,
                "lines": lines,
                "start_row_index": start_row_index,
                "skip_version_check": skip_version_check,
            },
        )

    async def match_households(self, version_id: int) -> ActionResult:
        return await self.request("POST", f"/api/spr-voters/versions/{version_id}/match-households")

    async def start_geocoding(self, version_id: int) -> ActionResult:
        return await self.request("POST", f"/api/geocoding/versions/{version_id}/start")

    async def pause_geocoding(self, job_id: int) -> ActionResult:
        return await self.request("POST", f"/api/geocoding/jobs/{job_id}/pause")

    async def resume_geocoding(self, job_id: int) -> ActionResult:
        return await self.request("POST", f"/api/geocoding/jobs/{job_id}/resume")

    async def get_latest_geocoding_job(self, version_id: int) -> ActionResult:
        return await self.request("GET", f"/api/geocoding/versions/{version_id}/latest")

    async def start_reference_geocoding(self, target: str) -> ActionResult:
        """Start geocoding ``parliaments`` or ``localities``"""
        return await self.request("POST", f"/api/geocoding/{target}/start")

    async def get_latest_reference_geocoding_job(self, target: str) -> ActionResult:
        return await self.request("GET", f"/api/geocoding/{target}/latest")
