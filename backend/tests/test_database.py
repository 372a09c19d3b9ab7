"""
Tests for database URL handling and engine setup
"""
import os
import subprocess
import sys
import pytest
from constituency.db.database import async_database_url

BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


@pytest.mark.parametrize("url, expected", [
    ("sqlite+aiosqlite:///./constituency.db", "sqlite+aiosqlite:///./constituency.db"),
    ("sqlite:///./constituency.db", "sqlite+aiosqlite:///./constituency.db"),
    ("postgresql://user:secret@db:5432/constituency", "postgresql+asyncpg://user:secret@db:5432/constituency"),
    ("postgresql+asyncpg://user@db/constituency", "postgresql+asyncpg://user@db/constituency"),
])
def test_async_database_url(url, expected):
    assert async_database_url(url) == expected


def engine_driver(tmp_path, database_url=None) -> str:
    """Import the database module in a fresh interpreter and report the engine's driver"""
    env = {key: value for key, value in os.environ.items() if key != "DATABASE_URL"}
    if database_url is not None:
        env["DATABASE_URL"] = database_url
    env["PYTHONPATH"] = BACKEND_DIR
    result = subprocess.run(
        [sys.executable, "-c", "import constituency.db.database as db; print(db.engine.url.drivername)"],
        cwd=tmp_path,
        env=env,
        capture_output=True,
        text=True,
        timeout=60,
    )
    assert result.returncode == 0, result.stderr
    return result.stdout.strip().splitlines()[-1]


def test_engine_imports_with_default_config(tmp_path):
    assert engine_driver(tmp_path) == "sqlite+aiosqlite"


def test_engine_imports_with_driverless_sqlite_url(tmp_path):
    assert engine_driver(tmp_path, "sqlite:///./voters.db") == "sqlite+aiosqlite"
