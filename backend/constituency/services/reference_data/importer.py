"""
CSV import of reference data rows
"""
import logging
from typing import Any, Dict, List
from sqlalchemy import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from constituency.config import config
from constituency.services.shared.csv_utils import (
    build_header_map,
    cap_errors,
    get_value,
    parse_csv_line,
    split_csv_lines,
)
from constituency.services.shared.exceptions import CsvValidationError
from constituency.services.spr_voters.importer import db_error_message
from .config import ReferenceTable, get_table_config
from .lookups import load_existing_keys, load_foreign_key_maps, lookup_key

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ["Name"]


async def import_reference_data_from_csv(
    session: AsyncSession,
    table: ReferenceTable,
    content: str
) -> Dict[str, Any]:
    """
    Import reference rows from CSV text

    Row numbers in errors count the header as row 1. Unknown foreign-key names
    are reported but the row is still inserted without that link; names that
    already exist in the table are reported and skipped.

    Returns:
        {"imported": int, "errors": [first 100 error strings]}
    """
    table_config = get_table_config(table)

    lines = split_csv_lines(content)
    if len(lines) < 2:
        raise CsvValidationError("CSV file must have at least a header and one data row")

    header_map = build_header_map(lines[0])
    missing = [column for column in REQUIRED_COLUMNS if column not in header_map]
    if missing:
        raise CsvValidationError(f"Missing required column: {missing[0]}", missing_columns=missing)

    fk_maps = await load_foreign_key_maps(session, table_config)
    existing_names, _ = await load_existing_keys(session, table_config.model)

    imported = 0
    errors: List[str] = []

    for row_number, line in enumerate(lines[1:], start=2):
        values = parse_csv_line(line)

        name = get_value(values, header_map, "Name")
        if not name:
            errors.append(f"Row {row_number}: Name is required")
            continue

        record: Dict[str, Any] = {
            "name": name,
            "code": get_value(values, header_map, "Code"),
            "description": get_value(values, header_map, "Description"),
        }
        if table_config.has_is_active:
            is_active = get_value(values, header_map, "IsActive") or ""
            record["is_active"] = is_active.lower() != "false"

        for fk in table_config.foreign_keys:
            reference = get_value(values, header_map, fk.csv_column)
            if not reference:
                continue
            target_id = fk_maps[fk.target].get(lookup_key(reference))
            if target_id:
                record[fk.field] = target_id
            else:
                errors.append(f'Row {row_number}: {fk.label} "{reference}" not found')

        for column, field in table_config.text_columns:
            record[field] = get_value(values, header_map, column)

        name_key = lookup_key(name)
        if name_key in existing_names:
            errors.append(f'Row {row_number}: "{name}" already exists')
            continue

        try:
            await session.execute(insert(table_config.model), [record])
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            errors.append(f"Row {row_number}: {db_error_message(e)}")
            continue

        existing_names.add(name_key)
        imported += 1

    logger.info(
        f"Imported {imported} {table_config.table.value} rows ({len(errors)} errors)",
        extra={"table": table_config.table.value}
    )
    return {"imported": imported, "errors": cap_errors(errors, config.MAX_REPORTED_ERRORS)}
