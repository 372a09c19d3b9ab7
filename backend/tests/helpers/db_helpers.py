"""
Database helper functions for tests
"""
import asyncio
from typing import Any, Dict, List, Optional
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from constituency.services.geocoding import _running_tasks
from constituency.db.database import (
    Household,
    HouseholdMember,
    SprVoter,
    SprVoterVersion,
    Staff,
)


async def create_staff(session: AsyncSession, email: str, role: str = "staff", status: str = "active") -> Staff:
    staff = Staff(name=email.split("@")[0].title(), email=email, role=role, status=status)
    session.add(staff)
    await session.commit()
    await session.refresh(staff)
    return staff


async def create_version(session: AsyncSession, name: str = "PRU 2025") -> SprVoterVersion:
    version = SprVoterVersion(name=name, is_active=False)
    session.add(version)
    await session.commit()
    await session.refresh(version)
    return version


async def add_voters(session: AsyncSession, version_id: int, voters: List[Dict[str, Any]]) -> List[SprVoter]:
    """Insert voters; each dict holds spr_voters columns, ``nama`` defaulted"""
    rows = []
    for i, values in enumerate(voters, start=1):
        row = SprVoter(version_id=version_id, **{"nama": f"PENGUNDI {i}", **values})
        session.add(row)
        rows.append(row)
    await session.commit()
    for row in rows:
        await session.refresh(row)
    return rows


async def add_household_member(
    session: AsyncSession,
    name: str,
    ic_number: Optional[str] = None
) -> HouseholdMember:
    household = Household(head_name=name, address="Kampung Contoh")
    session.add(household)
    await session.flush()
    member = HouseholdMember(household_id=household.id, name=name, ic_number=ic_number, relationship="head")
    session.add(member)
    await session.commit()
    await session.refresh(member)
    return member


async def get_database_count(session: AsyncSession, table_class, **filters) -> int:
    """Get count of records matching filters"""
    query = select(func.count()).select_from(table_class)
    for key, value in filters.items():
        query = query.where(getattr(table_class, key) == value)
    result = await session.execute(query)
    return result.scalar_one()


class FakeGeocoder:
    """
    Stand-in for the provider client

    Returns fixed coordinates, or None for addresses listed in ``misses``.
    ``on_call`` runs after each lookup with the 1-based call number.
    """

    def __init__(self, misses=(), on_call=None):
        self.addresses: List[str] = []
        self.misses = set(misses)
        self.on_call = on_call
        self.closed = 0

    async def geocode(self, address: str):
        self.addresses.append(address)
        if self.on_call is not None:
            await self.on_call(len(self.addresses))
        if address in self.misses:
            return None
        return 5.98, 116.07

    async def close(self):
        self.closed += 1


async def wait_for_background_tasks():
    """Wait until every scheduled geocoding run has finished"""
    for _ in range(5):
        pending = [task for task in list(_running_tasks) if not task.done()]
        if not pending:
            return
        await asyncio.wait(pending, timeout=10)
    raise AssertionError("Geocoding runs did not finish")
