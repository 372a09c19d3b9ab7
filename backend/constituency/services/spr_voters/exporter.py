"""
Export a voter version in SPR CSV layout
"""
from datetime import datetime
from typing import Any
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from constituency.db.database import SprVoter
from constituency.services.shared.csv_utils import write_csv
from constituency.services.shared.exceptions import RecordNotFoundError
from .columns import SPR_COLUMN_FIELDS, SPR_CSV_HEADER
from .importer import ensure_version_exists


def _export_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.strftime("%d/%m/%Y")
    return value


async def export_voters_to_csv(session: AsyncSession, version_id: int) -> str:
    await ensure_version_exists(session, version_id)

    result = await session.execute(
        select(SprVoter)
        .where(SprVoter.version_id == version_id)
        .order_by(SprVoter.nama, SprVoter.id)
    )
    voters = result.scalars().all()
    if not voters:
        raise RecordNotFoundError("No voters found to export")

    fields = list(SPR_COLUMN_FIELDS.values())
    return write_csv(
        SPR_CSV_HEADER,
        ([_export_value(getattr(voter, field)) for field in fields] for voter in voters)
    )
