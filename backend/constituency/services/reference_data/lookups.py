"""
In-memory name/code maps used to resolve reference foreign keys
"""
from typing import Dict, Optional, Set, Tuple, Type
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from constituency.db.database import Base
from .config import ReferenceTable, ReferenceTableConfig, get_table_config

LookupMap = Dict[str, int]


def lookup_key(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    key = value.strip().upper()
    return key or None


async def build_lookup_map(session: AsyncSession, table: ReferenceTable) -> LookupMap:
    """Map uppercase name and uppercase code of every row in ``table`` to its id"""
    model = get_table_config(table).model
    result = await session.execute(select(model.id, model.name, model.code))
    lookup: LookupMap = {}
    for row_id, name, code in result.all():
        for key in (lookup_key(name), lookup_key(code)):
            if key:
                lookup[key] = row_id
    return lookup


async def load_foreign_key_maps(
    session: AsyncSession,
    table_config: ReferenceTableConfig
) -> Dict[ReferenceTable, LookupMap]:
    """One bulk read per table referenced by ``table_config``"""
    return {
        target: await build_lookup_map(session, target)
        for target in table_config.referenced_tables
    }


async def load_id_to_name(session: AsyncSession, table: ReferenceTable) -> Dict[int, str]:
    model = get_table_config(table).model
    result = await session.execute(select(model.id, model.name))
    return {row_id: name for row_id, name in result.all()}


async def load_existing_keys(session: AsyncSession, model: Type[Base]) -> Tuple[Set[str], Set[str]]:
    """Uppercase names and codes already present in a reference table"""
    result = await session.execute(select(model.name, model.code))
    names: Set[str] = set()
    codes: Set[str] = set()
    for name, code in result.all():
        name_key = lookup_key(name)
        code_key = lookup_key(code)
        if name_key:
            names.add(name_key)
        if code_key:
            codes.add(code_key)
    return names, codes
