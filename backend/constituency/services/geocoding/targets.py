"""
Record sets a geocoding job can work through
"""
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from constituency.config import config
from constituency.db.database import Locality, Parliament, SprVoter


class GeocodingTarget(str, Enum):
    VOTERS = "voters"
    PARLIAMENTS = "parliaments"
    LOCALITIES = "localities"


class ReferenceGeocodingTarget(str, Enum):
    """Targets geocoded as a whole table rather than per voter version"""
    PARLIAMENTS = "parliaments"
    LOCALITIES = "localities"


@dataclass
class PendingRecord:
    id: int
    address: Optional[str]


@dataclass
class VoterAddress:
    id: int
    no_rumah: Optional[str]
    alamat: Optional[str]
    poskod: Optional[str]
    daerah: Optional[str]


def build_address(voter: VoterAddress, region_suffix: str = config.GEOCODING_REGION_SUFFIX) -> Optional[str]:
    """
    Free-text address for a voter, or None when the voter has no street address

    >>> build_address(VoterAddress(1, "12", "Jalan Lintas", "88300", "Kota Kinabalu"), "Sabah, Malaysia")
    '12, Jalan Lintas, 88300, Kota Kinabalu, Sabah, Malaysia'
    """
    if not voter.alamat or not voter.alamat.strip():
        return None
    parts = [
        part.strip()
        for part in (voter.no_rumah, voter.alamat, voter.poskod, voter.daerah)
        if part and part.strip()
    ]
    parts.append(region_suffix)
    return ", ".join(parts)


def build_place_address(
    name: Optional[str],
    code: Optional[str],
    region_suffix: str = config.GEOCODING_REGION_SUFFIX
) -> Optional[str]:
    """
    Address for a parliament or locality, or None when it has no name

    >>> build_place_address("Inanam", "P.172", "Sabah, Malaysia")
    'Inanam, P.172, Sabah, Malaysia'
    """
    if not name or not name.strip():
        return None
    parts = [name.strip()]
    if code and code.strip():
        parts.append(code.strip())
    parts.append(region_suffix)
    return ", ".join(parts)


class TargetSource:
    """Queries and address building for one geocoding target"""

    def __init__(self, target: GeocodingTarget, model, label: str, use_code: bool = False):
        self.target = target
        self.model = model
        self.label = label
        self.use_code = use_code

    @property
    def per_version(self) -> bool:
        return self.target == GeocodingTarget.VOTERS

    def pending_conditions(self, version_id: Optional[int]) -> list:
        conditions = [self.model.lat.is_(None)]
        if self.per_version:
            conditions.append(self.model.version_id == version_id)
        else:
            conditions.extend([self.model.name.is_not(None), self.model.name != ""])
        return conditions

    async def count_pending(self, session: AsyncSession, version_id: Optional[int]) -> int:
        result = await session.execute(
            select(func.count(self.model.id)).where(*self.pending_conditions(version_id))
        )
        return result.scalar() or 0

    async def fetch_pending(
        self,
        session: AsyncSession,
        version_id: Optional[int],
        after_id: Optional[int],
        region_suffix: str
    ) -> List[PendingRecord]:
        """Records still without coordinates, in id order after the cursor"""
        if self.per_version:
            columns = (SprVoter.id, SprVoter.no_rumah, SprVoter.alamat, SprVoter.poskod, SprVoter.daerah)
        else:
            columns = (self.model.id, self.model.name, self.model.code)
        query = (
            select(*columns)
            .where(*self.pending_conditions(version_id))
            .order_by(self.model.id)
        )
        if after_id is not None:
            query = query.where(self.model.id > after_id)
        result = await session.execute(query)

        records = []
        for row in result.all():
            if self.per_version:
                address = build_address(VoterAddress(*row), region_suffix)
            else:
                address = build_place_address(row.name, row.code if self.use_code else None, region_suffix)
            records.append(PendingRecord(row[0], address))
        return records


TARGET_SOURCES = {
    GeocodingTarget.VOTERS: TargetSource(GeocodingTarget.VOTERS, SprVoter, "voters"),
    GeocodingTarget.PARLIAMENTS: TargetSource(GeocodingTarget.PARLIAMENTS, Parliament, "parliaments"),
    GeocodingTarget.LOCALITIES: TargetSource(GeocodingTarget.LOCALITIES, Locality, "localities", use_code=True),
}


def get_target_source(target) -> TargetSource:
    return TARGET_SOURCES[GeocodingTarget(target)]
