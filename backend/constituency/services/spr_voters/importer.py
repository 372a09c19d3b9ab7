"""
Server-side SPR voter import

Rows arrive either as a whole CSV file or as a chunk of raw CSV lines with a
header map computed by the client. Each chunk is inserted in batches; a batch
that fails is retried row by row so one bad row costs only itself.
"""
import logging
from typing import Any, Dict, List, Sequence, Tuple
from sqlalchemy import insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from constituency.config import config
from constituency.db.database import SprVoter, SprVoterVersion
from constituency.services.shared.csv_utils import (
    build_header_map,
    cap_errors,
    get_value,
    parse_csv_line,
    parse_date_of_birth,
    parse_int,
    split_csv_lines,
)
from constituency.services.shared.exceptions import CsvValidationError, DatabaseLockError, RecordNotFoundError
from constituency.services.shared.retry import retry_on_db_lock
from .columns import DATE_COLUMNS, INTEGER_COLUMNS, REQUIRED_COLUMN, SPR_COLUMN_FIELDS

logger = logging.getLogger(__name__)

NumberedRow = Tuple[int, Dict[str, Any]]

# _insert_records raises DatabaseLockError once its lock retries run out
INSERT_ERRORS = (SQLAlchemyError, DatabaseLockError)


def db_error_message(error: Exception) -> str:
    """Driver-level message of a database error, without SQLAlchemy's statement dump"""
    orig = getattr(error, "orig", None)
    return str(orig) if orig is not None else str(error)


def require_name_column(header_map: Dict[str, int]) -> None:
    if REQUIRED_COLUMN not in header_map:
        raise CsvValidationError(
            f"Missing required column: {REQUIRED_COLUMN}",
            missing_columns=[REQUIRED_COLUMN],
        )


def build_voter_record(
    values: Sequence[str],
    header_map: Dict[str, int],
    version_id: int
) -> Dict[str, Any]:
    """Map one parsed CSV row onto spr_voters columns"""
    record: Dict[str, Any] = {"version_id": version_id}
    for column, field in SPR_COLUMN_FIELDS.items():
        raw = get_value(values, header_map, column)
        if column in INTEGER_COLUMNS:
            record[field] = parse_int(raw)
        elif column in DATE_COLUMNS:
            record[field] = parse_date_of_birth(raw)
        else:
            record[field] = raw
    return record


async def ensure_version_exists(session: AsyncSession, version_id: int) -> SprVoterVersion:
    result = await session.execute(
        select(SprVoterVersion).where(SprVoterVersion.id == version_id)
    )
    version = result.scalar_one_or_none()
    if version is None:
        raise RecordNotFoundError("Invalid version ID", record_id=version_id)
    return version


@retry_on_db_lock(max_retries=config.DEFAULT_MAX_RETRIES, base_delay=config.DEFAULT_RETRY_DELAY)
async def _insert_records(session: AsyncSession, records: List[Dict[str, Any]]) -> None:
    try:
        await session.execute(insert(SprVoter), records)
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        raise


async def insert_voter_rows(
    session: AsyncSession,
    rows: List[NumberedRow],
    batch_size: int = config.IMPORT_BATCH_SIZE
) -> Tuple[int, List[str]]:
    """
    Insert numbered voter records

    Returns:
        (inserted count, row errors)
    """
    imported = 0
    errors: List[str] = []

    for start in range(0, len(rows), batch_size):
        batch = rows[start:start + batch_size]
        try:
            await _insert_records(session, [record for _, record in batch])
            imported += len(batch)
            continue
        except INSERT_ERRORS as e:
            logger.warning(
                f"Batch insert of {len(batch)} voters failed, retrying row by row: {db_error_message(e)}"
            )

        for row_number, record in batch:
            try:
                await _insert_records(session, [record])
                imported += 1
            except INSERT_ERRORS as e:
                errors.append(f"Row {row_number}: {db_error_message(e)}")

    return imported, errors


async def import_voter_lines(
    session: AsyncSession,
    version_id: int,
    header_map: Dict[str, int],
    lines: Sequence[str],
    start_row_index: int = 0
) -> Dict[str, Any]:
    """
    Parse and insert CSV data lines

    Row numbers in errors are ``start_row_index + i + 1`` so that chunked and
    whole-file imports number data rows the same way.
    """
    rows: List[NumberedRow] = []
    errors: List[str] = []

    for i, line in enumerate(lines):
        row_number = start_row_index + i + 1
        if not line.strip():
            continue
        values = parse_csv_line(line)
        nama = get_value(values, header_map, REQUIRED_COLUMN)
        if not nama:
            errors.append(f"Row {row_number}: Name is required")
            continue
        rows.append((row_number, build_voter_record(values, header_map, version_id)))

    imported, insert_errors = await insert_voter_rows(session, rows)
    errors.extend(insert_errors)

    logger.info(
        f"Imported {imported} voters into version {version_id} "
        f"(rows {start_row_index + 1}-{start_row_index + len(lines)}, {len(errors)} errors)",
        extra={"version_id": version_id}
    )
    return {"imported": imported, "errors": cap_errors(errors, config.MAX_REPORTED_ERRORS)}


async def import_voters_chunk(
    session: AsyncSession,
    version_id: int,
    header_map: Dict[str, int],
    lines: Sequence[str],
    start_row_index: int,
    skip_version_check: bool = False
) -> Dict[str, Any]:
    """Import one chunk of CSV lines sent by the chunked upload client"""
    require_name_column(header_map)
    if not skip_version_check:
        await ensure_version_exists(session, version_id)
    return await import_voter_lines(session, version_id, header_map, lines, start_row_index)


async def import_voters_from_csv(
    session: AsyncSession,
    version_id: int,
    content: str
) -> Dict[str, Any]:
    """Import a complete SPR CSV file in one call"""
    lines = split_csv_lines(content)
    if len(lines) < 2:
        raise CsvValidationError("CSV file must have at least a header and one data row")

    header_map = build_header_map(lines[0])
    require_name_column(header_map)
    await ensure_version_exists(session, version_id)
    return await import_voter_lines(session, version_id, header_map, lines[1:], start_row_index=0)
