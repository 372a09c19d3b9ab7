"""
Pytest configuration and fixtures for the constituency API tests

The database URL and feature flags are set before the application is
imported, because ``constituency.config`` reads the environment at import time.
"""
import asyncio
import os
import sys
import tempfile
from typing import AsyncGenerator

_TEST_DIR = tempfile.mkdtemp(prefix="constituency-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DIR, 'test.db')}"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_TO_FILE"] = "false"

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from constituency.main import app
from constituency.api.dependencies import get_geocoding_service
from constituency.db.database import Base, AsyncSessionLocal, engine
from constituency.services.geocoding import GeocodingRunner, GeocodingService, _running_tasks
from tests.helpers.db_helpers import create_staff, FakeGeocoder

ADMIN_EMAIL = "admin@example.com"
STAFF_EMAIL = "staff@example.com"


@pytest.fixture(autouse=True)
async def database():
    """Fresh schema for every test; background jobs never outlive their test"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    leftover = [task for task in list(_running_tasks) if not task.done()]
    for task in leftover:
        task.cancel()
    if leftover:
        await asyncio.wait(leftover, timeout=5)
    app.dependency_overrides.clear()
    await engine.dispose()


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the FastAPI app"""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def admin_staff(db_session: AsyncSession):
    return await create_staff(db_session, ADMIN_EMAIL, role="super_admin")


@pytest.fixture
async def regular_staff(db_session: AsyncSession):
    return await create_staff(db_session, STAFF_EMAIL, role="staff")


@pytest.fixture
def admin_headers(admin_staff):
    return {"X-User-Email": ADMIN_EMAIL}


@pytest.fixture
def staff_headers(regular_staff):
    return {"X-User-Email": STAFF_EMAIL}


@pytest.fixture
def fake_geocoder() -> FakeGeocoder:
    return FakeGeocoder()


@pytest.fixture
def geocoding_service(fake_geocoder: FakeGeocoder) -> GeocodingService:
    """Geocoding service wired to a fake provider and installed in the app"""
    runner = GeocodingRunner(geocoder_factory=lambda: fake_geocoder, flush_every=2)
    service = GeocodingService(job_manager=runner.job_manager, runner=runner)
    app.dependency_overrides[get_geocoding_service] = lambda: service
    return service

