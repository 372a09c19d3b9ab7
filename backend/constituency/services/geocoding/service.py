"""
Geocoding job operations exposed to the API
"""
import logging
from typing import Optional
from constituency.db.database import AsyncSessionLocal, GeocodingJob, SprVoterVersion
from constituency.services.shared.exceptions import InputValidationError, RecordNotFoundError
from .job_manager import GeocodingJobManager
from .runner import GeocodingRunner
from .targets import GeocodingTarget, ReferenceGeocodingTarget, get_target_source

logger = logging.getLogger(__name__)


class GeocodingService:
    """Start, pause, resume and inspect geocoding jobs for voters, parliaments and localities"""

    def __init__(
        self,
        job_manager: Optional[GeocodingJobManager] = None,
        runner: Optional[GeocodingRunner] = None
    ):
        self.job_manager = job_manager or GeocodingJobManager()
        self.runner = runner or GeocodingRunner(job_manager=self.job_manager)

    async def _count_pending(self, target: GeocodingTarget, version_id: Optional[int]) -> int:
        source = get_target_source(target)
        async with AsyncSessionLocal() as session:
            if source.per_version:
                version = await session.get(SprVoterVersion, version_id)
                if version is None:
                    raise RecordNotFoundError("Invalid version ID", record_id=version_id)
            return await source.count_pending(session, version_id)

    async def _start(
        self,
        target: GeocodingTarget,
        version_id: Optional[int],
        created_by: Optional[int]
    ) -> GeocodingJob:
        total = await self._count_pending(target, version_id)
        if total == 0:
            raise InputValidationError(f"No {target.value} found that need geocoding")

        job = await self.job_manager.create_job(version_id, total, created_by=created_by, target=target)
        self.runner.schedule(job.id)
        return job

    async def start_job(self, version_id: int, created_by: Optional[int] = None) -> GeocodingJob:
        """Create a job for the version's voters without coordinates and run it in the background"""
        return await self._start(GeocodingTarget.VOTERS, version_id, created_by)

    async def start_reference_job(
        self,
        target: ReferenceGeocodingTarget,
        created_by: Optional[int] = None
    ) -> GeocodingJob:
        """Create a job for named parliaments or localities without coordinates"""
        return await self._start(GeocodingTarget(target.value), None, created_by)

    async def pause_job(self, job_id: int) -> GeocodingJob:
        return await self.job_manager.pause_job(job_id)

    async def resume_job(self, job_id: int) -> GeocodingJob:
        job = await self.job_manager.resume_job(job_id)
        self.runner.schedule(job.id)
        return job

    async def get_job(self, job_id: int) -> GeocodingJob:
        job = await self.job_manager.get_job(job_id)
        if job is None:
            raise RecordNotFoundError("Geocoding job not found", record_id=job_id)
        return job

    async def get_latest_job(self, version_id: int) -> Optional[GeocodingJob]:
        return await self.job_manager.get_latest_job(version_id)

    async def get_latest_reference_job(self, target: ReferenceGeocodingTarget) -> Optional[GeocodingJob]:
        return await self.job_manager.get_latest_job(None, target=GeocodingTarget(target.value))

    async def reschedule_pending_jobs(self) -> int:
        """Run jobs that were created but never started by a previous process"""
        scheduled = 0
        for job in await self.job_manager.get_incomplete_jobs():
            if job.status == "pending":
                self.runner.schedule(job.id)
                scheduled += 1
        return scheduled
