from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
from constituency.api.dependencies import get_current_access
from constituency.api.exceptions import APIError, ValidationError
from constituency.api.security import (
    EXPENSIVE_RATE_LIMIT, IMPORT_CHUNK_RATE_LIMIT, MAX_CHUNK_LINES, READ_RATE_LIMIT, WRITE_RATE_LIMIT,
    csv_within_size_limit, limiter, log_security_event
)
from constituency.db.database import get_db, SprVoterVersion
from constituency.models.schemas import (
    ActionResult, ChunkImportRequest, CsvContentRequest, ImportResult, MatchResult,
    VersionCreate, VersionSummary
)
from constituency.services.access import UserAccess
from constituency.services.shared.exceptions import ConstituencyServiceError
from constituency.services.spr_voters import (
    count_voters, create_version, export_voters_to_csv, get_version,
    import_voters_chunk, import_voters_from_csv, list_versions,
    match_voters_with_households,
)
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


def _version_summary(version: SprVoterVersion, voter_count: int = None) -> VersionSummary:
    return VersionSummary(
        id=version.id,
        name=version.name,
        description=version.description,
        election_date=version.election_date,
        is_active=version.is_active,
        created_at=version.created_at,
        voter_count=voter_count,
    )


@router.post("/versions", response_model=ActionResult)
@limiter.limit(WRITE_RATE_LIMIT)
async def create_voter_version(
    request: Request,
    payload: VersionCreate,
    db: AsyncSession = Depends(get_db),
    access: UserAccess = Depends(get_current_access)
):
    """Create a voter list version"""
    access.require_admin("create voter versions")
    try:
        version = await create_version(
            db,
            name=payload.name,
            description=payload.description,
            election_date=payload.election_date,
            is_active=payload.is_active,
            created_by=access.staff_id,
        )
        return ActionResult(success=True, data=_version_summary(version, 0))
    except (ConstituencyServiceError, APIError):
        raise
    except Exception as e:
        logger.error(f"Error creating voter version: {e}", exc_info=True)
        raise APIError(f"Failed to create voter version: {str(e)}")


@router.get("/versions", response_model=ActionResult)
@limiter.limit(READ_RATE_LIMIT)
async def get_voter_versions(
    request: Request,
    db: AsyncSession = Depends(get_db),
    access: UserAccess = Depends(get_current_access)
):
    """List voter versions, newest first"""
    access.require_authenticated()
    versions = await list_versions(db)
    summaries: List[VersionSummary] = [
        _version_summary(version, await count_voters(db, version.id)) for version in versions
    ]
    return ActionResult(success=True, data=summaries)


@router.get("/versions/{version_id}", response_model=ActionResult)
@limiter.limit(READ_RATE_LIMIT)
async def get_voter_version(
    request: Request,
    version_id: int,
    db: AsyncSession = Depends(get_db),
    access: UserAccess = Depends(get_current_access)
):
    access.require_authenticated()
    version = await get_version(db, version_id)
    return ActionResult(success=True, data=_version_summary(version, await count_voters(db, version_id)))


@router.post("/versions/{version_id}/import-chunk", response_model=ActionResult)
@limiter.limit(IMPORT_CHUNK_RATE_LIMIT)
async def import_voter_chunk(
    request: Request,
    version_id: int,
    payload: ChunkImportRequest,
    db: AsyncSession = Depends(get_db),
    access: UserAccess = Depends(get_current_access)
):
    """Import one chunk of SPR CSV lines sent by the chunked upload client"""
    access.require_admin("import voters")

    if len(payload.lines) > MAX_CHUNK_LINES:
        log_security_event("resource_limit", {
            "operation": "import_chunk",
            "lines": len(payload.lines),
            "max_lines": MAX_CHUNK_LINES
        }, request)
        raise ValidationError(
            f"Chunk too large: {len(payload.lines)} lines (maximum {MAX_CHUNK_LINES})",
            details={"max_lines": MAX_CHUNK_LINES}
        )

    try:
        result = await import_voters_chunk(
            db,
            version_id,
            header_map=payload.header_map,
            lines=payload.lines,
            start_row_index=payload.start_row_index,
            skip_version_check=payload.skip_version_check,
        )
        return ActionResult(success=True, data=ImportResult(**result))
    except (ConstituencyServiceError, APIError):
        raise
    except Exception as e:
        logger.error(f"Error importing voter chunk for version {version_id}: {e}", exc_info=True)
        raise APIError(f"Failed to import voters: {str(e)}")


@router.post("/versions/{version_id}/import", response_model=ActionResult)
@limiter.limit(EXPENSIVE_RATE_LIMIT)
async def import_voter_csv(
    request: Request,
    version_id: int,
    payload: CsvContentRequest,
    db: AsyncSession = Depends(get_db),
    access: UserAccess = Depends(get_current_access)
):
    """Import a whole SPR CSV file in one request"""
    access.require_admin("import voters")

    if not csv_within_size_limit(payload.csv_content):
        log_security_event("resource_limit", {"operation": "import_csv"}, request)
        raise ValidationError("CSV file is too large; use the chunked import instead")

    try:
        result = await import_voters_from_csv(db, version_id, payload.csv_content)
        return ActionResult(success=True, data=ImportResult(**result))
    except (ConstituencyServiceError, APIError):
        raise
    except Exception as e:
        logger.error(f"Error importing voter CSV for version {version_id}: {e}", exc_info=True)
        raise APIError(f"Failed to import voters: {str(e)}")


@router.post("/versions/{version_id}/match-households", response_model=ActionResult)
@limiter.limit(EXPENSIVE_RATE_LIMIT)
async def match_households(
    request: Request,
    version_id: int,
    db: AsyncSession = Depends(get_db),
    access: UserAccess = Depends(get_current_access)
):
    """Link unmatched voters of a version to household members"""
    access.require_admin("match voters")
    try:
        result = await match_voters_with_households(db, version_id)
        return ActionResult(success=True, data=MatchResult(**result))
    except (ConstituencyServiceError, APIError):
        raise
    except Exception as e:
        logger.error(f"Error matching voters for version {version_id}: {e}", exc_info=True)
        raise APIError(f"Failed to match voters: {str(e)}")


@router.get("/versions/{version_id}/export")
@limiter.limit(EXPENSIVE_RATE_LIMIT)
async def export_voters(
    request: Request,
    version_id: int,
    db: AsyncSession = Depends(get_db),
    access: UserAccess = Depends(get_current_access)
):
    """Export a version's voters as SPR-format CSV"""
    access.require_admin("export voters")
    csv_text = await export_voters_to_csv(db, version_id)
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=spr_voters_version_{version_id}.csv"}
    )
