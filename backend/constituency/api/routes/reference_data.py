from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import logging
from constituency.api.dependencies import get_current_access
from constituency.api.exceptions import APIError, ValidationError
from constituency.api.security import (
    EXPENSIVE_RATE_LIMIT, READ_RATE_LIMIT, WRITE_RATE_LIMIT, csv_within_size_limit, limiter, log_security_event
)
from constituency.db.database import get_db
from constituency.models.schemas import ActionResult, CsvContentRequest, ImportResult, PopulateResult
from constituency.services.access import UserAccess
from constituency.services.reference_data import (
    REFERENCE_TABLE_CONFIGS, ReferenceTable, export_reference_data_to_csv,
    import_reference_data_from_csv, populate_reference_data_from_spr,
)
from constituency.services.shared.exceptions import ConstituencyServiceError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/tables", response_model=ActionResult)
async def list_reference_tables(access: UserAccess = Depends(get_current_access)):
    """Reference tables with their CSV columns"""
    access.require_authenticated()
    tables = [
        {
            "table": table.value,
            "columns": table_config.csv_header,
            "supports_spr_population": table_config.supports_spr_population,
        }
        for table, table_config in REFERENCE_TABLE_CONFIGS.items()
    ]
    return ActionResult(success=True, data=tables)


@router.post("/{table}/import", response_model=ActionResult)
@limiter.limit(WRITE_RATE_LIMIT)
async def import_reference_data(
    request: Request,
    table: ReferenceTable,
    payload: CsvContentRequest,
    db: AsyncSession = Depends(get_db),
    access: UserAccess = Depends(get_current_access)
):
    """Import reference rows from CSV; names must be unique per table"""
    access.require_admin("import reference data")

    if not csv_within_size_limit(payload.csv_content):
        log_security_event("resource_limit", {"operation": "import_reference_data", "table": table.value}, request)
        raise ValidationError("CSV file is too large")

    try:
        result = await import_reference_data_from_csv(db, table, payload.csv_content)
        return ActionResult(success=True, data=ImportResult(**result))
    except (ConstituencyServiceError, APIError):
        raise
    except Exception as e:
        logger.error(f"Error importing {table.value}: {e}", exc_info=True)
        raise APIError(f"Failed to import {table.value}: {str(e)}")


@router.get("/{table}/export")
@limiter.limit(READ_RATE_LIMIT)
async def export_reference_data(
    request: Request,
    table: ReferenceTable,
    db: AsyncSession = Depends(get_db),
    access: UserAccess = Depends(get_current_access)
):
    access.require_authenticated()
    csv_text = await export_reference_data_to_csv(db, table)
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={table.value}.csv"}
    )


@router.post("/{table}/populate", response_model=ActionResult)
@limiter.limit(EXPENSIVE_RATE_LIMIT)
async def populate_reference_data(
    request: Request,
    table: ReferenceTable,
    version_id: Optional[int] = Query(None, description="Limit to one voter version"),
    db: AsyncSession = Depends(get_db),
    access: UserAccess = Depends(get_current_access)
):
    """Add reference rows derived from distinct SPR voter values"""
    access.require_admin("populate reference data")
    try:
        result = await populate_reference_data_from_spr(db, table, version_id=version_id)
        return ActionResult(success=True, data=PopulateResult(**result))
    except (ConstituencyServiceError, APIError):
        raise
    except Exception as e:
        logger.error(f"Error populating {table.value} from SPR data: {e}", exc_info=True)
        raise APIError(f"Failed to populate {table.value}: {str(e)}")
