"""
Tests for the geocoding progress WebSocket

The socket is driven by Starlette's TestClient, which runs the app on its own
event loop in a worker thread; the test loop keeps seeding and updating jobs.
"""
import asyncio
import threading
import pytest
from sqlalchemy import update
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect
from constituency.config import config
from constituency.db.database import GeocodingJob, engine
from constituency.main import app
from tests.helpers.db_helpers import create_version

pytestmark = pytest.mark.database


def read_until_closed(path, headers=None, on_message=None):
    """Collect JSON messages until the server closes the socket"""
    messages = []
    with TestClient(app).websocket_connect(path, headers=headers or {}) as websocket:
        while True:
            try:
                message = websocket.receive_json()
            except WebSocketDisconnect:
                return messages
            messages.append(message)
            if on_message is not None:
                on_message(message)


async def add_job(db_session, version_id, status, processed=0):
    job = GeocodingJob(version_id=version_id, status=status, total_voters=4, processed_voters=processed,
                       geocoded_count=processed, failed_count=0, skipped_count=0)
    db_session.add(job)
    await db_session.commit()
    return job.id


async def read_in_thread(*args, **kwargs):
    # Connections pooled on the test loop are released before the app's loop opens its own
    await engine.dispose()
    return await asyncio.to_thread(read_until_closed, *args, **kwargs)


async def test_completed_job_sends_final_state_and_closes(db_session, admin_headers):
    version = await create_version(db_session)
    job_id = await add_job(db_session, version.id, "completed", processed=4)

    messages = await read_in_thread(f"/api/geocoding/ws/{job_id}", headers=admin_headers)

    assert len(messages) == 1
    assert messages[0]["type"] == "completed"
    assert messages[0]["job_id"] == job_id
    assert messages[0]["data"]["percentage"] == 100


async def test_paused_job_closes_after_one_message(db_session, admin_headers):
    version = await create_version(db_session)
    job_id = await add_job(db_session, version.id, "paused", processed=2)

    messages = await read_in_thread(f"/api/geocoding/ws/{job_id}", headers=admin_headers)

    assert [message["type"] for message in messages] == ["paused"]
    assert messages[0]["data"]["processed_voters"] == 2


async def test_running_job_streams_until_completed(db_session, admin_headers, monkeypatch):
    monkeypatch.setattr(config, "JOB_POLL_INTERVAL_SECONDS", 0.05)
    version = await create_version(db_session)
    job_id = await add_job(db_session, version.id, "running", processed=1)
    first_message = threading.Event()

    reader = asyncio.ensure_future(read_in_thread(
        f"/api/geocoding/ws/{job_id}",
        headers=admin_headers,
        on_message=lambda message: first_message.set(),
    ))
    for _ in range(200):
        if first_message.is_set():
            break
        await asyncio.sleep(0.02)
    assert first_message.is_set()

    await db_session.execute(
        update(GeocodingJob)
        .where(GeocodingJob.id == job_id)
        .values(status="completed", processed_voters=4, geocoded_count=4)
    )
    await db_session.commit()

    messages = await asyncio.wait_for(reader, timeout=10)
    assert [message["type"] for message in messages] == ["progress", "completed"]
    assert messages[0]["data"]["percentage"] == 25
    assert messages[-1]["data"]["percentage"] == 100


async def test_unauthenticated_socket_gets_error_and_closes():
    messages = await read_in_thread("/api/geocoding/ws/1")
    assert messages == [{"type": "error", "message": "Authentication required"}]


async def test_unknown_job_gets_error_and_closes(admin_headers):
    messages = await read_in_thread("/api/geocoding/ws/9999", headers=admin_headers)
    assert messages == [{"type": "error", "message": "Geocoding job not found"}]
