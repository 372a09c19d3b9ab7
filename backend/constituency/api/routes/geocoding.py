from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect
from typing import Optional
import asyncio
import logging
from constituency.api.dependencies import get_current_access, get_geocoding_service
from constituency.api.exceptions import APIError, ServiceUnavailableError
from constituency.api.security import (
    EXPENSIVE_RATE_LIMIT, MAX_CONCURRENT_GEOCODING_JOBS, READ_RATE_LIMIT, WRITE_RATE_LIMIT, limiter,
    log_security_event,
)
from constituency.config import config
from constituency.db.database import AsyncSessionLocal, TERMINAL_JOB_STATUSES
from constituency.models.schemas import ActionResult, GeocodingJobStatus
from constituency.services.access import UserAccess, get_user_access
from constituency.services.geocoding import GeocodingService, GeocodingTarget, ReferenceGeocodingTarget
from constituency.services.shared.exceptions import ConstituencyServiceError

logger = logging.getLogger(__name__)

router = APIRouter()


def job_message(job) -> dict:
    """Push message for one job snapshot"""
    status = GeocodingJobStatus.model_validate(job)
    return {
        "type": "progress" if status.status == "running" else status.status,
        "job_id": status.id,
        "data": {
            **status.model_dump(mode="json"),
            "percentage": status.percentage,
        }
    }


def _check_job_capacity(active_jobs: int, operation: str, request: Request):
    if active_jobs >= MAX_CONCURRENT_GEOCODING_JOBS:
        log_security_event("resource_limit", {
            "operation": operation,
            "active_jobs": active_jobs,
            "max_jobs": MAX_CONCURRENT_GEOCODING_JOBS
        }, request)
        raise ServiceUnavailableError(
            f"Too many geocoding jobs in progress ({active_jobs}); try again later",
            details={"max_jobs": MAX_CONCURRENT_GEOCODING_JOBS}
        )


@router.post("/versions/{version_id}/start", response_model=ActionResult)
@limiter.limit(EXPENSIVE_RATE_LIMIT)
async def start_geocoding(
    request: Request,
    version_id: int,
    access: UserAccess = Depends(get_current_access),
    service: GeocodingService = Depends(get_geocoding_service)
):
    """Start geocoding the version's voters that have no coordinates"""
    access.require_admin("geocode voters")
    _check_job_capacity(await service.job_manager.count_active_jobs(), "start_geocoding", request)

    try:
        job = await service.start_job(version_id, created_by=access.staff_id)
        return ActionResult(success=True, data=GeocodingJobStatus.model_validate(job))
    except (ConstituencyServiceError, APIError):
        raise
    except Exception as e:
        logger.error(f"Error starting geocoding for version {version_id}: {e}", exc_info=True)
        raise APIError(f"Failed to start geocoding: {str(e)}")


@router.post("/{target}/start", response_model=ActionResult)
@limiter.limit(EXPENSIVE_RATE_LIMIT)
async def start_reference_geocoding(
    request: Request,
    target: ReferenceGeocodingTarget,
    access: UserAccess = Depends(get_current_access),
    service: GeocodingService = Depends(get_geocoding_service)
):
    """Start geocoding the named parliaments or localities that have no coordinates"""
    access.require_admin(f"geocode {target.value}")
    _check_job_capacity(await service.job_manager.count_active_jobs(), f"start_{target.value}_geocoding", request)

    try:
        job = await service.start_reference_job(target, created_by=access.staff_id)
        return ActionResult(success=True, data=GeocodingJobStatus.model_validate(job))
    except (ConstituencyServiceError, APIError):
        raise
    except Exception as e:
        logger.error(f"Error starting {target.value} geocoding: {e}", exc_info=True)
        raise APIError(f"Failed to start geocoding: {str(e)}")


@router.post("/jobs/{job_id}/pause", response_model=ActionResult)
@limiter.limit(WRITE_RATE_LIMIT)
async def pause_geocoding(
    request: Request,
    job_id: int,
    access: UserAccess = Depends(get_current_access),
    service: GeocodingService = Depends(get_geocoding_service)
):
    access.require_admin("pause geocoding jobs")
    job = await service.pause_job(job_id)
    return ActionResult(success=True, data=GeocodingJobStatus.model_validate(job))


@router.post("/jobs/{job_id}/resume", response_model=ActionResult)
@limiter.limit(WRITE_RATE_LIMIT)
async def resume_geocoding(
    request: Request,
    job_id: int,
    access: UserAccess = Depends(get_current_access),
    service: GeocodingService = Depends(get_geocoding_service)
):
    access.require_admin("resume geocoding jobs")
    job = await service.resume_job(job_id)
    return ActionResult(success=True, data=GeocodingJobStatus.model_validate(job))


@router.get("/jobs/{job_id}", response_model=ActionResult)
@limiter.limit(READ_RATE_LIMIT)
async def get_geocoding_job(
    request: Request,
    job_id: int,
    access: UserAccess = Depends(get_current_access),
    service: GeocodingService = Depends(get_geocoding_service)
):
    access.require_authenticated()
    job = await service.get_job(job_id)
    return ActionResult(success=True, data=GeocodingJobStatus.model_validate(job))


@router.get("/jobs", response_model=ActionResult)
@limiter.limit(READ_RATE_LIMIT)
async def list_geocoding_jobs(
    request: Request,
    version_id: Optional[int] = Query(None, description="Only jobs for this version"),
    target: Optional[GeocodingTarget] = Query(None, description="Only jobs for this target"),
    limit: int = Query(10, ge=1, le=100),
    access: UserAccess = Depends(get_current_access),
    service: GeocodingService = Depends(get_geocoding_service)
):
    """Recent geocoding jobs, newest first"""
    access.require_authenticated()
    jobs = await service.job_manager.get_recent_jobs(version_id=version_id, limit=limit, target=target)
    return ActionResult(success=True, data=[GeocodingJobStatus.model_validate(job) for job in jobs])


@router.get("/versions/{version_id}/latest", response_model=ActionResult)
@limiter.limit(READ_RATE_LIMIT)
async def get_latest_geocoding_job(
    request: Request,
    version_id: int,
    access: UserAccess = Depends(get_current_access),
    service: GeocodingService = Depends(get_geocoding_service)
):
    """Latest job for a version; data is null when the version was never geocoded"""
    access.require_authenticated()
    job = await service.get_latest_job(version_id)
    return ActionResult(
        success=True,
        data=GeocodingJobStatus.model_validate(job) if job is not None else None
    )


@router.get("/{target}/latest", response_model=ActionResult)
@limiter.limit(READ_RATE_LIMIT)
async def get_latest_reference_geocoding_job(
    request: Request,
    target: ReferenceGeocodingTarget,
    access: UserAccess = Depends(get_current_access),
    service: GeocodingService = Depends(get_geocoding_service)
):
    """Latest parliament or locality job; data is null when none was started"""
    access.require_authenticated()
    job = await service.get_latest_reference_job(target)
    return ActionResult(
        success=True,
        data=GeocodingJobStatus.model_validate(job) if job is not None else None
    )


@router.websocket("/ws/{job_id}")
async def websocket_job_status(websocket: WebSocket, job_id: int):
    """WebSocket endpoint for real-time geocoding progress"""
    await websocket.accept()

    try:
        async with AsyncSessionLocal() as session:
            access = await get_user_access(session, websocket.headers.get(config.AUTH_EMAIL_HEADER))
        if not access.is_authenticated:
            await websocket.send_json({"type": "error", "message": "Authentication required"})
            return

        service = get_geocoding_service()
        last_message = None
        while True:
            job = await service.job_manager.get_job(job_id)
            if job is None:
                await websocket.send_json({"type": "error", "message": "Geocoding job not found"})
                break

            message = job_message(job)
            if message != last_message:
                await websocket.send_json(message)
                last_message = message

            # Paused jobs are resumed by a new request; observers reconnect then
            if job.status in TERMINAL_JOB_STATUSES or job.status == "paused":
                break

            await asyncio.sleep(config.JOB_POLL_INTERVAL_SECONDS)

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for geocoding job {job_id}")
    except Exception as e:
        logger.error(f"Error in WebSocket for geocoding job {job_id}: {e}", exc_info=True)
        try:
            await websocket.send_json({"type": "error", "message": str(e)})
        except Exception as ws_err:
            logger.debug(f"Error sending WebSocket message: {ws_err}")
    finally:
        try:
            await websocket.close()
        except Exception as close_err:
            logger.debug(f"Error closing WebSocket: {close_err}")
