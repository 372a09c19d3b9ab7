"""
Resolve the caller's identity to a staff role and enforce administrator access
"""
import logging
from dataclasses import dataclass
from typing import Optional
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from constituency.db.database import Staff
from constituency.services.shared.exceptions import AccessDeniedError, AuthenticationRequiredError

logger = logging.getLogger(__name__)

ADMIN_ROLES = ("super_admin", "adun")


@dataclass
class UserAccess:
    """Access profile of the current caller"""
    email: Optional[str] = None
    staff_id: Optional[int] = None
    role: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.email is not None

    @property
    def is_super_admin(self) -> bool:
        return self.role == "super_admin"

    @property
    def is_adun(self) -> bool:
        return self.role == "adun"

    def require_authenticated(self) -> None:
        if not self.is_authenticated:
            raise AuthenticationRequiredError()

    def require_admin(self, action: str) -> None:
        """
        Raise unless the caller is a super admin or ADUN

        Args:
            action: Human-readable action used in the denial message,
                e.g. "import SPR voters"
        """
        self.require_authenticated()
        if not (self.is_super_admin or self.is_adun):
            logger.warning(f"Access denied for {self.email}: {action}")
            raise AccessDeniedError(action)


async def get_user_access(session: AsyncSession, email: Optional[str]) -> UserAccess:
    """Look up the active staff row for ``email``"""
    if not email or not email.strip():
        return UserAccess()

    email = email.strip()
    result = await session.execute(
        select(Staff).where(
            func.lower(Staff.email) == email.lower(),
            Staff.status == "active",
        )
    )
    staff = result.scalars().first()
    if staff is None:
        return UserAccess(email=email)
    return UserAccess(email=email, staff_id=staff.id, role=staff.role)
