"""
Background processing of geocoding jobs
"""
import asyncio
import httpx
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set
from datetime import datetime
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from constituency.config import config
from constituency.db.database import AsyncSessionLocal
from constituency.services.shared.exceptions import GeocodingProviderError
from .geocoder import NominatimGeocoder
from .job_manager import GeocodingJobManager
from .rate_limiter import RateLimiter
from .targets import PendingRecord, TargetSource, get_target_source

logger = logging.getLogger(__name__)

# Global set to track running background tasks for graceful shutdown
_running_tasks: Set[asyncio.Task] = set()


@dataclass
class JobCounters:
    processed: int = 0
    geocoded: int = 0
    failed: int = 0
    skipped: int = 0
    last_voter_id: Optional[int] = None


class GeocodingRunner:
    """
    Processes one geocoding job until it completes, fails, or is paused

    The job status is re-read before every record, so a pause takes effect
    after the record in flight. Progress and the resume cursor are flushed every
    ``flush_every`` records and whenever the run stops. The record set comes
    from the job target: a version's voters, or the parliament or locality table.

    Geocoders built by the default factory share the runner's ``rate_limiter``,
    so concurrent jobs together stay within the provider's request rate.
    """

    def __init__(
        self,
        job_manager: Optional[GeocodingJobManager] = None,
        geocoder_factory: Optional[Callable[[], NominatimGeocoder]] = None,
        flush_every: int = config.GEOCODING_PROGRESS_FLUSH_EVERY,
        region_suffix: str = config.GEOCODING_REGION_SUFFIX,
        rate_limiter: Optional[RateLimiter] = None
    ):
        self.job_manager = job_manager or GeocodingJobManager()
        self.rate_limiter = rate_limiter or RateLimiter(config.GEOCODING_RATE_LIMIT_DELAY)
        self.geocoder_factory = geocoder_factory or self._build_geocoder
        self.flush_every = max(1, flush_every)
        self.region_suffix = region_suffix
        self._job_tasks: Dict[int, asyncio.Task] = {}

    def _build_geocoder(self) -> NominatimGeocoder:
        return NominatimGeocoder(rate_limiter=self.rate_limiter)

    def schedule(self, job_id: int) -> asyncio.Task:
        """
        Run the job in a background task tracked for shutdown

        A job resumed while its previous run is still winding down waits for
        that run to exit, so a job never has two runs at once.
        """
        previous = self._job_tasks.get(job_id)
        task = asyncio.create_task(self._run_after(previous, job_id))
        self._job_tasks[job_id] = task
        _running_tasks.add(task)
        task.add_done_callback(_running_tasks.discard)
        task.add_done_callback(lambda done: self._forget(job_id, done))
        return task

    def _forget(self, job_id: int, task: asyncio.Task):
        if self._job_tasks.get(job_id) is task:
            del self._job_tasks[job_id]

    async def _run_after(self, previous: Optional[asyncio.Task], job_id: int):
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        await self.run(job_id)

    async def _fetch_remaining(self, source: TargetSource, version_id: Optional[int],
                               after_id: Optional[int]) -> List[PendingRecord]:
        async with AsyncSessionLocal() as session:
            return await source.fetch_pending(session, version_id, after_id, self.region_suffix)

    async def _save_coordinates(self, source: TargetSource, record_id: int, lat: float, lng: float):
        async with AsyncSessionLocal() as session:
            await session.execute(
                update(source.model)
                .where(source.model.id == record_id)
                .values(lat=lat, lng=lng, updated_at=datetime.utcnow())
            )
            await session.commit()

    async def _flush(self, job_id: int, counters: JobCounters, total_voters: Optional[int] = None):
        await self.job_manager.update_job_progress(
            job_id,
            processed_voters=counters.processed,
            geocoded_count=counters.geocoded,
            failed_count=counters.failed,
            skipped_count=counters.skipped,
            last_voter_id=counters.last_voter_id,
            total_voters=total_voters,
        )

    async def _geocode_record(
        self,
        geocoder: NominatimGeocoder,
        source: TargetSource,
        record: PendingRecord,
        counters: JobCounters
    ):
        if record.address is None:
            counters.skipped += 1
            return

        try:
            coordinates = await geocoder.geocode(record.address)
        except (GeocodingProviderError, httpx.HTTPError) as e:
            logger.warning(f"Geocoding failed for {source.label} record {record.id}: {e}")
            counters.failed += 1
            return

        if coordinates is None:
            counters.failed += 1
            return

        try:
            await self._save_coordinates(source, record.id, *coordinates)
        except SQLAlchemyError as e:
            logger.warning(f"Could not store coordinates for {source.label} record {record.id}: {e}")
            counters.failed += 1
            return
        counters.geocoded += 1

    async def run(self, job_id: int):
        """Process a job from its resume cursor"""
        try:
            job = await self.job_manager.begin_run(job_id)
            if job is None:
                logger.info(f"Geocoding job {job_id} is no longer runnable", extra={"job_id": job_id})
                return

            source = get_target_source(job.target)
            counters = JobCounters(
                processed=job.processed_voters,
                geocoded=job.geocoded_count,
                failed=job.failed_count,
                skipped=job.skipped_count,
                last_voter_id=job.last_voter_id,
            )
            records = await self._fetch_remaining(source, job.version_id, job.last_voter_id)

            total = max(job.total_voters, counters.processed + len(records))
            if total != job.total_voters:
                await self._flush(job_id, counters, total_voters=total)

            logger.info(
                f"Geocoding job {job_id}: {len(records)} {source.label} remaining "
                f"({counters.processed}/{total} already processed)",
                extra={"job_id": job_id, "version_id": job.version_id}
            )

            geocoder = self.geocoder_factory()
            try:
                for record in records:
                    status = await self.job_manager.get_status(job_id)
                    if status != "running":
                        if status == "paused":
                            await self._flush(job_id, counters)
                            logger.info(
                                f"Geocoding job {job_id} paused at {counters.processed}/{total}",
                                extra={"job_id": job_id}
                            )
                        return

                    await self._geocode_record(geocoder, source, record, counters)
                    counters.processed += 1
                    counters.last_voter_id = record.id

                    if counters.processed % self.flush_every == 0:
                        await self._flush(job_id, counters)
            finally:
                await geocoder.close()

            await self._flush(job_id, counters)
            await self.job_manager.complete_job(job_id)

        except asyncio.CancelledError:
            logger.info(f"Geocoding job {job_id} interrupted", extra={"job_id": job_id})
            raise
        except Exception as e:
            logger.error(f"Geocoding job {job_id} crashed: {e}", exc_info=True, extra={"job_id": job_id})
            await self.job_manager.fail_job(job_id, str(e) or type(e).__name__)
