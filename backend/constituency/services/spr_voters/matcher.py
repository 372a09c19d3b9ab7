"""
Link imported voters to household members by identity number
"""
import logging
import re
from collections import defaultdict
from typing import Dict, List, Optional
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from constituency.config import config
from constituency.db.database import HouseholdMember, SprVoter
from .importer import db_error_message, ensure_version_exists

logger = logging.getLogger(__name__)

_IC_SEPARATORS = re.compile(r"[\s-]")


def normalize_ic(ic_number: Optional[str]) -> Optional[str]:
    """
    Canonical form of an identity card number

    >>> normalize_ic("850101-01-1234")
    '850101011234'
    """
    if not ic_number:
        return None
    normalized = _IC_SEPARATORS.sub("", ic_number).upper()
    return normalized or None


def normalize_name(name: Optional[str]) -> Optional[str]:
    if not name or not name.strip():
        return None
    return name.strip().upper()


class HouseholdMemberIndex:
    """In-memory lookup of household members by normalized IC and by name"""

    def __init__(self):
        self.by_ic: Dict[str, int] = {}
        self.by_name: Dict[str, List[int]] = defaultdict(list)

    def add(self, member_id: int, ic_number: Optional[str], name: Optional[str]) -> None:
        ic = normalize_ic(ic_number)
        if ic:
            self.by_ic[ic] = member_id
        key = normalize_name(name)
        if key:
            self.by_name[key].append(member_id)

    def find(self, no_kp: Optional[str], no_kp_lama: Optional[str], nama: Optional[str]) -> Optional[int]:
        """Match by current IC, then old IC, then a name shared by exactly one member"""
        for ic_number in (no_kp, no_kp_lama):
            ic = normalize_ic(ic_number)
            if ic and ic in self.by_ic:
                return self.by_ic[ic]

        key = normalize_name(nama)
        if key:
            candidates = self.by_name.get(key, [])
            if len(candidates) == 1:
                return candidates[0]
        return None


async def load_member_index(session: AsyncSession) -> HouseholdMemberIndex:
    index = HouseholdMemberIndex()
    result = await session.execute(
        select(HouseholdMember.id, HouseholdMember.ic_number, HouseholdMember.name)
    )
    for member_id, ic_number, name in result.all():
        index.add(member_id, ic_number, name)
    return index


async def _write_links(session: AsyncSession, links: List[Dict[str, int]]) -> int:
    """
    Write one batch of voter links, falling back to single-row writes

    Returns:
        Number of links that failed to write
    """
    try:
        await session.execute(update(SprVoter), links)
        await session.commit()
        return 0
    except SQLAlchemyError as e:
        await session.rollback()
        logger.warning(f"Batch link update failed, retrying individually: {db_error_message(e)}")

    failed = 0
    for link in links:
        try:
            await session.execute(update(SprVoter), [link])
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            failed += 1
            logger.warning(f"Could not link voter {link['id']}: {db_error_message(e)}")
    return failed


async def match_voters_with_households(
    session: AsyncSession,
    version_id: int,
    batch_size: int = config.MATCH_UPDATE_BATCH_SIZE
) -> Dict[str, int]:
    """
    Link unmatched voters of a version to household members

    Returns:
        {"matched": ..., "unmatched": ..., "total": ...}
    """
    await ensure_version_exists(session, version_id)

    result = await session.execute(
        select(SprVoter.id, SprVoter.no_kp, SprVoter.no_kp_lama, SprVoter.nama)
        .where(
            SprVoter.version_id == version_id,
            SprVoter.household_member_id.is_(None),
        )
        .order_by(SprVoter.id)
    )
    voters = result.all()
    if not voters:
        return {"matched": 0, "unmatched": 0, "total": 0}

    index = await load_member_index(session)

    links: List[Dict[str, int]] = []
    for voter_id, no_kp, no_kp_lama, nama in voters:
        member_id = index.find(no_kp, no_kp_lama, nama)
        if member_id is not None:
            links.append({"id": voter_id, "household_member_id": member_id})

    failed = 0
    for start in range(0, len(links), batch_size):
        failed += await _write_links(session, links[start:start + batch_size])

    matched = len(links) - failed
    total = len(voters)
    logger.info(
        f"Matched {matched}/{total} voters of version {version_id} to household members",
        extra={"version_id": version_id}
    )
    return {"matched": matched, "unmatched": total - matched, "total": total}
