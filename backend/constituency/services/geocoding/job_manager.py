"""
Persistence and state transitions for geocoding jobs
"""
import logging
from typing import Optional, List
from datetime import datetime
from sqlalchemy import select, update, desc, func
from sqlalchemy.exc import IntegrityError
from constituency.config import config
from constituency.db.database import (
    AsyncSessionLocal,
    GeocodingJob,
    ACTIVE_JOB_STATUSES,
)
from constituency.services.shared.exceptions import InvalidStateError, RecordNotFoundError
from constituency.services.shared.retry import retry_on_db_lock
from .targets import GeocodingTarget

logger = logging.getLogger(__name__)

ACTIVE_JOB_MESSAGE = "A geocoding job is already in progress for this version"


def active_job_message(target: GeocodingTarget) -> str:
    if target == GeocodingTarget.VOTERS:
        return ACTIVE_JOB_MESSAGE
    return f"A {target.value} geocoding job is already in progress"


class GeocodingJobManager:
    """
    Creates geocoding jobs and moves them through their states

    Status changes that depend on the current status are written as a single
    conditional UPDATE, so two callers racing on the same job cannot both win.
    """

    def _scope_conditions(self, target: GeocodingTarget, version_id: Optional[int]) -> list:
        if version_id is None:
            return [GeocodingJob.target == target.value, GeocodingJob.version_id.is_(None)]
        return [GeocodingJob.target == target.value, GeocodingJob.version_id == version_id]

    async def create_job(
        self,
        version_id: Optional[int],
        total_voters: int,
        created_by: Optional[int] = None,
        target: GeocodingTarget = GeocodingTarget.VOTERS
    ) -> GeocodingJob:
        """Create a pending job, rejecting it if its version or table already has an active one"""
        target = GeocodingTarget(target)
        active_message = active_job_message(target)
        async with AsyncSessionLocal() as session:
            existing = await session.execute(
                select(GeocodingJob.id).where(
                    *self._scope_conditions(target, version_id),
                    GeocodingJob.status.in_(ACTIVE_JOB_STATUSES),
                )
            )
            if existing.first() is not None:
                raise InvalidStateError(active_message)

            job = GeocodingJob(
                target=target.value,
                version_id=version_id,
                status="pending",
                total_voters=total_voters,
                processed_voters=0,
                geocoded_count=0,
                failed_count=0,
                skipped_count=0,
                created_by=created_by,
            )
            session.add(job)
            try:
                await session.commit()
            except IntegrityError as e:
                # Lost a race with a concurrent start for the same version or table
                await session.rollback()
                raise InvalidStateError(active_message) from e
            await session.refresh(job)
            scope = f"version {version_id}" if version_id is not None else target.value
            logger.info(
                f"Created geocoding job {job.id} for {scope} ({total_voters} records)",
                extra={"job_id": job.id, "version_id": version_id}
            )
            return job

    async def get_job(self, job_id: int) -> Optional[GeocodingJob]:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(GeocodingJob).where(GeocodingJob.id == job_id)
            )
            return result.scalar_one_or_none()

    async def get_latest_job(
        self,
        version_id: Optional[int],
        target: GeocodingTarget = GeocodingTarget.VOTERS
    ) -> Optional[GeocodingJob]:
        """Most recently created job for a version, or for a reference table when version_id is None"""
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(GeocodingJob)
                .where(*self._scope_conditions(GeocodingTarget(target), version_id))
                .order_by(desc(GeocodingJob.created_at), desc(GeocodingJob.id))
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def get_status(self, job_id: int) -> Optional[str]:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(GeocodingJob.status).where(GeocodingJob.id == job_id)
            )
            return result.scalar_one_or_none()

    async def _transition(self, job_id: int, from_statuses: tuple, **values) -> bool:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                update(GeocodingJob)
                .where(GeocodingJob.id == job_id, GeocodingJob.status.in_(from_statuses))
                .values(updated_at=datetime.utcnow(), **values)
            )
            await session.commit()
            return result.rowcount > 0

    async def _require_job(self, job_id: int) -> GeocodingJob:
        job = await self.get_job(job_id)
        if job is None:
            raise RecordNotFoundError("Geocoding job not found", record_id=job_id)
        return job

    async def pause_job(self, job_id: int) -> GeocodingJob:
        if not await self._transition(job_id, ("running",), status="paused"):
            job = await self._require_job(job_id)
            raise InvalidStateError(
                f"Cannot pause job: Job is not running (current status: {job.status})",
                current_status=job.status,
            )
        logger.info(f"Paused geocoding job {job_id}", extra={"job_id": job_id})
        return await self._require_job(job_id)

    async def resume_job(self, job_id: int) -> GeocodingJob:
        if not await self._transition(job_id, ("paused",), status="running"):
            job = await self._require_job(job_id)
            raise InvalidStateError(
                f"Cannot resume job: Job is not paused (current status: {job.status})",
                current_status=job.status,
            )
        logger.info(f"Resumed geocoding job {job_id}", extra={"job_id": job_id})
        return await self._require_job(job_id)

    async def begin_run(self, job_id: int) -> Optional[GeocodingJob]:
        """
        Mark a pending or resumed job as running

        Returns:
            The job, or None if it was paused or finished before the run began
        """
        job = await self.get_job(job_id)
        if job is None or job.status not in ("pending", "running"):
            return None
        values = {"status": "running"}
        if job.started_at is None:
            values["started_at"] = datetime.utcnow()
        if not await self._transition(job_id, ("pending", "running"), **values):
            return None
        return await self.get_job(job_id)

    @retry_on_db_lock(max_retries=config.DEFAULT_MAX_RETRIES, base_delay=config.DEFAULT_RETRY_DELAY)
    async def update_job_progress(
        self,
        job_id: int,
        processed_voters: int,
        geocoded_count: int,
        failed_count: int,
        skipped_count: int,
        last_voter_id: Optional[int] = None,
        total_voters: Optional[int] = None
    ):
        """Persist counters and the resume cursor"""
        values = {
            "processed_voters": processed_voters,
            "geocoded_count": geocoded_count,
            "failed_count": failed_count,
            "skipped_count": skipped_count,
            "updated_at": datetime.utcnow(),
        }
        if last_voter_id is not None:
            values["last_voter_id"] = last_voter_id
        if total_voters is not None:
            values["total_voters"] = total_voters

        async with AsyncSessionLocal() as session:
            await session.execute(
                update(GeocodingJob).where(GeocodingJob.id == job_id).values(**values)
            )
            await session.commit()

    async def complete_job(self, job_id: int) -> bool:
        """Mark a running job completed; a job paused meanwhile stays paused"""
        completed = await self._transition(
            job_id, ("running",), status="completed", completed_at=datetime.utcnow()
        )
        if completed:
            logger.info(f"Geocoding job {job_id} completed", extra={"job_id": job_id})
        return completed

    async def fail_job(self, job_id: int, error_message: str) -> bool:
        """Mark a running job failed; a job paused or finished meanwhile keeps its status"""
        failed = await self._transition(
            job_id,
            ("running",),
            status="failed",
            error_message=error_message,
            completed_at=datetime.utcnow(),
        )
        if failed:
            logger.error(f"Geocoding job {job_id} failed: {error_message}", extra={"job_id": job_id})
        else:
            logger.warning(
                f"Geocoding job {job_id} stopped with an error after leaving running: {error_message}",
                extra={"job_id": job_id}
            )
        return failed

    async def get_incomplete_jobs(self) -> List[GeocodingJob]:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(GeocodingJob)
                .where(GeocodingJob.status.in_(ACTIVE_JOB_STATUSES))
                .order_by(desc(GeocodingJob.created_at))
            )
            return list(result.scalars().all())

    async def pause_interrupted_jobs(self) -> int:
        """
        Move jobs left running by a previous process to paused

        No runner survives a restart, so these jobs continue only through an
        explicit resume.
        """
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                update(GeocodingJob)
                .where(GeocodingJob.status == "running")
                .values(status="paused", updated_at=datetime.utcnow())
            )
            await session.commit()
            return result.rowcount

    async def get_recent_jobs(
        self,
        version_id: Optional[int] = None,
        limit: int = 10,
        target: Optional[GeocodingTarget] = None
    ) -> List[GeocodingJob]:
        async with AsyncSessionLocal() as session:
            query = select(GeocodingJob)
            if version_id is not None:
                query = query.where(GeocodingJob.version_id == version_id)
            if target is not None:
                query = query.where(GeocodingJob.target == GeocodingTarget(target).value)
            result = await session.execute(
                query.order_by(desc(GeocodingJob.created_at), desc(GeocodingJob.id)).limit(limit)
            )
            return list(result.scalars().all())

    async def count_active_jobs(self) -> int:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(func.count(GeocodingJob.id)).where(GeocodingJob.status.in_(ACTIVE_JOB_STATUSES))
            )
            return result.scalar() or 0
