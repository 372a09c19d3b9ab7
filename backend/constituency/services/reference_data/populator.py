"""
Derive reference data rows from imported SPR voters

Each supported table reads one or more spr_voters columns, normalizes the
value, deduplicates by uppercase name and inserts only names and codes not
already present in the table. Running it twice adds nothing the second time.
"""
import logging
import re
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from constituency.config import config
from constituency.db.database import SprVoter
from constituency.services.shared.csv_utils import cap_errors
from constituency.services.shared.exceptions import InputValidationError, RecordNotFoundError
from constituency.services.spr_voters.importer import db_error_message
from .config import ReferenceTable, ReferenceTableConfig, get_table_config
from .lookups import LookupMap, load_existing_keys, load_foreign_key_maps, lookup_key

logger = logging.getLogger(__name__)

GENDER_NAMES = {"L": "Lelaki", "P": "Perempuan"}

# "P171 SEPANGGAR", "P.171 SEPANGGAR", "P171-SEPANGGAR"
_PARLIAMENT_SPACED = re.compile(r"^([A-Z]+[.\-]?\d+)\s+(.+)$", re.IGNORECASE)
# "P171SEPANGGAR"
_PARLIAMENT_JOINED = re.compile(r"^([A-Z]+[.\-]?\d+)([A-Z][A-Z\s].*)$", re.IGNORECASE)
_CODE_SEPARATORS = re.compile(r"[.\-]")


def split_parliament(value: str) -> Tuple[Optional[str], str]:
    """
    Split a combined parliament label into (code, name)

    >>> split_parliament("P.171 SEPANGGAR")
    ('P171', 'SEPANGGAR')
    >>> split_parliament("SEPANGGAR")
    (None, 'SEPANGGAR')
    """
    value = value.strip()
    match = _PARLIAMENT_SPACED.match(value) or _PARLIAMENT_JOINED.match(value)
    if not match:
        return None, value
    code = _CODE_SEPARATORS.sub("", match.group(1).strip().upper())
    return code, match.group(2).strip()


def resolve_parliament(label: Optional[str], parliaments: LookupMap) -> Optional[int]:
    """Find a parliament by its raw SPR label, its split code, or its split name"""
    if not label or not label.strip():
        return None
    code, name = split_parliament(label)
    for candidate in (label, code, name):
        key = lookup_key(candidate)
        if key and key in parliaments:
            return parliaments[key]
    return None


def resolve(label: Optional[str], lookup: LookupMap) -> Optional[int]:
    key = lookup_key(label)
    return lookup.get(key) if key else None


def extract_row(
    table: ReferenceTable,
    voter: Dict[str, Any],
    fk_maps: Dict[ReferenceTable, LookupMap]
) -> Optional[Dict[str, Any]]:
    """
    Reference row candidate for one voter

    Returns:
        {"name", "code", ...foreign keys}, or None when the voter has no value
    """
    code: Optional[str] = None
    extra: Dict[str, Any] = {}

    if table == ReferenceTable.GENDERS:
        raw = voter["jantina"]
        if not raw or not raw.strip():
            return None
        name = GENDER_NAMES.get(raw.strip(), raw)
        code = raw
    elif table == ReferenceTable.RELIGIONS:
        name = voter["agama"]
    elif table == ReferenceTable.RACES:
        name = voter["bangsa"]
    elif table == ReferenceTable.DISTRICTS:
        name = voter["daerah"]
    elif table == ReferenceTable.PARLIAMENTS:
        name = voter["nama_parlimen"]
        if name and name.strip():
            code, name = split_parliament(name)
    elif table == ReferenceTable.DUNS:
        name = voter["nama_dun"]
        extra = {
            "parliament_id": resolve_parliament(voter["nama_parlimen"], fk_maps[ReferenceTable.PARLIAMENTS]),
        }
    elif table == ReferenceTable.LOCALITIES:
        name = voter["nama_lokaliti"]
        code = voter["kod_lokaliti"]
        extra = {
            "parliament_id": resolve_parliament(voter["nama_parlimen"], fk_maps[ReferenceTable.PARLIAMENTS]),
            "dun_id": resolve(voter["nama_dun"], fk_maps[ReferenceTable.DUNS]),
            "district_id": resolve(voter["daerah"], fk_maps[ReferenceTable.DISTRICTS]),
        }
    elif table == ReferenceTable.POLLING_STATIONS:
        name = voter["nama_tm"]
        extra = {
            "locality_id": resolve(voter["nama_lokaliti"], fk_maps[ReferenceTable.LOCALITIES]),
            "address": voter["alamat"] or None,
        }
    else:
        return None

    if not name or not name.strip():
        return None
    code = code.strip() if code and code.strip() else None
    return {"name": name.strip(), "code": code, **extra}


def merge_missing(existing: Dict[str, Any], candidate: Dict[str, Any]) -> None:
    """Fill links and address the first occurrence lacked from a later occurrence"""
    for field, value in candidate.items():
        if field in ("name", "code"):
            continue
        if not existing.get(field) and value:
            existing[field] = value


async def _load_voters(session: AsyncSession, table_config: ReferenceTableConfig, version_id: Optional[int]):
    columns = [getattr(SprVoter, field) for field in table_config.spr_fields]
    query = select(*columns)
    if version_id is not None:
        query = query.where(SprVoter.version_id == version_id)
    result = await session.execute(query)
    return [dict(row._mapping) for row in result.all()]


async def populate_reference_data_from_spr(
    session: AsyncSession,
    table: ReferenceTable,
    version_id: Optional[int] = None
) -> Dict[str, Any]:
    """
    Add reference rows derived from SPR voters

    Args:
        table: Target reference table
        version_id: Restrict to one voter version (default: all versions)

    Returns:
        {"added": int, "skipped": int, "errors": [first 100 error strings]}
    """
    table_config = get_table_config(table)
    if not table_config.supports_spr_population:
        raise InputValidationError(
            f"Populating {table_config.table.value} from SPR data is not supported"
        )

    voters = await _load_voters(session, table_config, version_id)
    if not voters:
        raise RecordNotFoundError("No SPR voters data found")

    existing_names, existing_codes = await load_existing_keys(session, table_config.model)
    fk_maps = await load_foreign_key_maps(session, table_config)

    distinct: Dict[str, Dict[str, Any]] = {}
    for voter in voters:
        candidate = extract_row(table_config.table, voter, fk_maps)
        if candidate is None:
            continue
        key = lookup_key(candidate["name"])
        if key in existing_names:
            continue
        if key in distinct:
            merge_missing(distinct[key], candidate)
        else:
            distinct[key] = candidate

    added = 0
    skipped = 0
    errors: List[str] = []

    for key, row in distinct.items():
        code_key = lookup_key(row["code"])
        if (code_key and code_key in existing_codes) or key in existing_names:
            skipped += 1
            continue

        record = {"description": None, **row}
        if table_config.has_is_active:
            record["is_active"] = True

        try:
            await session.execute(insert(table_config.model), [record])
            await session.commit()
        except IntegrityError:
            await session.rollback()
            skipped += 1
            continue
        except SQLAlchemyError as e:
            await session.rollback()
            errors.append(f"{row['name']}: {db_error_message(e)}")
            continue

        added += 1
        existing_names.add(key)
        if code_key:
            existing_codes.add(code_key)

    logger.info(
        f"Populated {table_config.table.value} from SPR data: {added} added, {skipped} skipped",
        extra={"table": table_config.table.value, "version_id": version_id}
    )
    return {"added": added, "skipped": skipped, "errors": cap_errors(errors, config.MAX_REPORTED_ERRORS)}
