from typing import Optional
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from constituency.config import config
from constituency.db.database import get_db
from constituency.services.access import UserAccess, get_user_access
from constituency.services.geocoding import GeocodingService
from constituency.utils.logging import get_logger

logger = get_logger(__name__)

_geocoding_service: Optional[GeocodingService] = None


async def get_current_access(
    request: Request,
    db: AsyncSession = Depends(get_db)
) -> UserAccess:
    """Resolve the authenticated email forwarded by the identity provider"""
    email = request.headers.get(config.AUTH_EMAIL_HEADER)
    access = await get_user_access(db, email)
    logger.debug(f"Request access: email={access.email} role={access.role}")
    return access


def get_geocoding_service() -> GeocodingService:
    """Process-wide geocoding service"""
    global _geocoding_service
    if _geocoding_service is None:
        _geocoding_service = GeocodingService()
    return _geocoding_service
