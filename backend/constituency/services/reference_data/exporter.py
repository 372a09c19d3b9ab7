"""
CSV export of reference data tables
"""
from typing import Dict
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from constituency.services.shared.csv_utils import write_csv
from constituency.services.shared.exceptions import RecordNotFoundError
from .config import ReferenceTable, get_table_config
from .lookups import load_id_to_name


async def export_reference_data_to_csv(session: AsyncSession, table: ReferenceTable) -> str:
    """
    Render a reference table as CSV ordered by name

    Foreign keys are written as the referenced row's name. Tables without an
    ``is_active`` column export ``false``.
    """
    table_config = get_table_config(table)
    model = table_config.model

    result = await session.execute(select(model).order_by(model.name))
    items = result.scalars().all()
    if not items:
        raise RecordNotFoundError("No data found to export")

    names: Dict = {
        target: await load_id_to_name(session, target)
        for target in table_config.referenced_tables
    }

    def render(item):
        is_active = getattr(item, "is_active", False) if table_config.has_is_active else False
        row = [item.name, item.code, item.description, "true" if is_active else "false"]
        for fk in table_config.foreign_keys:
            target_id = getattr(item, fk.field)
            row.append(names[fk.target].get(target_id, "") if target_id else "")
        for _, field in table_config.text_columns:
            row.append(getattr(item, field))
        return row

    return write_csv(table_config.csv_header, (render(item) for item in items))
