"""
Voter version management
"""
import logging
from datetime import datetime
from typing import List, Optional
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
from constituency.db.database import SprVoter, SprVoterVersion
from constituency.services.shared.exceptions import InputValidationError
from .importer import ensure_version_exists

logger = logging.getLogger(__name__)


async def create_version(
    session: AsyncSession,
    name: str,
    description: Optional[str] = None,
    election_date: Optional[datetime] = None,
    is_active: bool = False,
    created_by: Optional[int] = None
) -> SprVoterVersion:
    """Create a version; activating it deactivates every other version"""
    if not name or not name.strip():
        raise InputValidationError("Version name is required")

    if is_active:
        await session.execute(
            update(SprVoterVersion)
            .where(SprVoterVersion.is_active.is_(True))
            .values(is_active=False)
        )

    version = SprVoterVersion(
        name=name.strip(),
        description=description.strip() if description and description.strip() else None,
        election_date=election_date,
        is_active=is_active,
        created_by=created_by,
    )
    session.add(version)
    await session.commit()
    await session.refresh(version)
    logger.info(f"Created voter version {version.id} ({version.name})", extra={"version_id": version.id})
    return version


async def list_versions(session: AsyncSession) -> List[SprVoterVersion]:
    result = await session.execute(
        select(SprVoterVersion).order_by(SprVoterVersion.created_at.desc(), SprVoterVersion.id.desc())
    )
    return list(result.scalars().all())


async def get_version(session: AsyncSession, version_id: int) -> SprVoterVersion:
    return await ensure_version_exists(session, version_id)


async def count_voters(session: AsyncSession, version_id: int) -> int:
    result = await session.execute(
        select(func.count(SprVoter.id)).where(SprVoter.version_id == version_id)
    )
    return result.scalar() or 0
