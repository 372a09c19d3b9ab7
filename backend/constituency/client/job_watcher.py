"""
Polling observer for geocoding jobs
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Union
from constituency.config import config
from constituency.models.schemas import GeocodingJobStatus
from constituency.services.shared.retry import SleepFunc
from .api_client import ConstituencyAPIClient

logger = logging.getLogger(__name__)

JobCallback = Callable[[GeocodingJobStatus], Union[None, Awaitable[None]]]


async def _notify(callback, value):
    if callback is None:
        return
    result = callback(value)
    if asyncio.iscoroutine(result):
        await result


class GeocodingJobWatcher:
    """
    Polls the latest geocoding job of a version, or of the parliament or
    locality table when ``target`` is given, until it stops

    Watching ends when the job completes or fails (``on_finished`` fires, the
    hook for refreshing voter data), when it is paused, or when the version
    has no job at all. A failed poll is logged and retried on the next tick.
    """

    def __init__(
        self,
        client: ConstituencyAPIClient,
        poll_interval: float = config.JOB_POLL_INTERVAL_SECONDS,
        sleep: SleepFunc = asyncio.sleep
    ):
        self.client = client
        self.poll_interval = poll_interval
        self.sleep = sleep

    async def poll_once(self, version_id: Optional[int], target: Optional[str] = None) -> Optional[GeocodingJobStatus]:
        if target is not None:
            result = await self.client.get_latest_reference_geocoding_job(target)
        else:
            result = await self.client.get_latest_geocoding_job(version_id)
        if not result.success:
            raise RuntimeError(result.error or "Failed to fetch geocoding job")
        if result.data is None:
            return None
        return GeocodingJobStatus(**result.data)

    async def watch(
        self,
        version_id: Optional[int],
        on_update: Optional[JobCallback] = None,
        on_finished: Optional[JobCallback] = None,
        target: Optional[str] = None
    ) -> Optional[GeocodingJobStatus]:
        """Poll until the job stops; returns the last job seen"""
        last_job: Optional[GeocodingJobStatus] = None

        while True:
            try:
                job = await self.poll_once(version_id, target=target)
            except Exception as e:
                scope = target or f"version {version_id}"
                logger.warning(f"Polling geocoding job for {scope} failed: {e}")
                await self.sleep(self.poll_interval)
                continue

            if job is None:
                return last_job

            last_job = job
            await _notify(on_update, job)

            if job.is_terminal:
                await _notify(on_finished, job)
                return job
            if job.status == "paused":
                return job

            await self.sleep(self.poll_interval)
