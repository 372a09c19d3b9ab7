"""
Application startup tasks
"""
import logging
from constituency.api.dependencies import get_geocoding_service

logger = logging.getLogger(__name__)


async def recover_geocoding_jobs():
    """
    Bring geocoding jobs left behind by a previous process to a resumable state

    Jobs that were running lost their worker and are paused so an administrator
    can resume them; jobs that were created but never started are run now.
    """
    try:
        service = get_geocoding_service()
        paused = await service.job_manager.pause_interrupted_jobs()
        if paused:
            logger.info(f"Paused {paused} interrupted geocoding job(s); resume them to continue")

        incomplete_jobs = await service.job_manager.get_incomplete_jobs()
        for job in incomplete_jobs:
            logger.info(
                f"  - Job {job.id}: version {job.version_id}, status={job.status}, "
                f"processed={job.processed_voters}/{job.total_voters}"
            )

        scheduled = await service.reschedule_pending_jobs()
        if scheduled:
            logger.info(f"Scheduled {scheduled} pending geocoding job(s)")
    except Exception as e:
        logger.warning(f"Could not recover geocoding jobs on startup: {e}")


async def setup_startup_tasks():
    """Set up all startup tasks"""
    await recover_geocoding_jobs()
    logger.info("Application startup complete - ready to accept requests")
