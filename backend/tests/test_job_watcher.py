"""
Tests for the geocoding job polling observer
"""
import httpx
import pytest
from httpx import ASGITransport
from constituency.client import ConstituencyAPIClient, GeocodingJobWatcher
from constituency.db.database import Parliament
from constituency.main import app
from tests.helpers.db_helpers import add_voters, create_version, wait_for_background_tasks


def job_body(status, processed=0, total=4):
    return {
        "success": True,
        "data": {
            "id": 11,
            "version_id": 3,
            "status": status,
            "total_voters": total,
            "processed_voters": processed,
            "geocoded_count": processed,
            "failed_count": 0,
            "skipped_count": 0,
        },
        "error": None,
    }


class ScriptedServer:
    """Answers each poll with the next scripted response; the last one repeats"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.paths = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.paths.append(request.url.path)
        response = self.responses[0] if len(self.responses) == 1 else self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


def make_watcher(server, sleep):
    client = ConstituencyAPIClient("http://test", user_email="admin@example.com",
                                   transport=httpx.MockTransport(server))
    return GeocodingJobWatcher(client, poll_interval=2.0, sleep=sleep)


async def test_watch_until_completed():
    server = ScriptedServer(
        httpx.Response(200, json=job_body("pending")),
        httpx.Response(200, json=job_body("running", processed=2)),
        httpx.Response(200, json=job_body("completed", processed=4)),
    )
    sleep = RecordingSleep()
    updates = []
    finished = []

    job = await make_watcher(server, sleep).watch(3, on_update=updates.append, on_finished=finished.append)

    assert job.status == "completed"
    assert [update.status for update in updates] == ["pending", "running", "completed"]
    assert updates[1].percentage == 50
    assert len(finished) == 1
    assert sleep.delays == [2.0, 2.0]
    assert server.paths == ["/api/geocoding/versions/3/latest"] * 3


async def test_watch_reference_target_polls_table_endpoint():
    body = job_body("completed", processed=4)
    body["data"].update(target="localities", version_id=None)
    server = ScriptedServer(httpx.Response(200, json=body))

    job = await make_watcher(server, RecordingSleep()).watch(None, target="localities")

    assert job.target == "localities"
    assert job.version_id is None
    assert server.paths == ["/api/geocoding/localities/latest"]


async def test_watch_stops_when_paused():
    server = ScriptedServer(
        httpx.Response(200, json=job_body("running", processed=1)),
        httpx.Response(200, json=job_body("paused", processed=2)),
    )
    finished = []

    job = await make_watcher(server, RecordingSleep()).watch(3, on_finished=finished.append)

    assert job.status == "paused"
    assert job.processed_voters == 2
    assert finished == []


async def test_watch_failed_job_calls_finished_hook():
    failed = job_body("failed", processed=1)
    failed["data"]["error_message"] = "provider exploded"
    server = ScriptedServer(httpx.Response(200, json=failed))
    finished = []

    async def on_finished(job):
        finished.append(job.error_message)

    job = await make_watcher(server, RecordingSleep()).watch(3, on_finished=on_finished)

    assert job.status == "failed"
    assert finished == ["provider exploded"]


async def test_watch_without_job_returns_none():
    server = ScriptedServer(httpx.Response(200, json={"success": True, "data": None, "error": None}))
    sleep = RecordingSleep()

    assert await make_watcher(server, sleep).watch(3) is None
    assert sleep.delays == []


async def test_failed_polls_are_retried():
    server = ScriptedServer(
        httpx.ConnectError("Connection refused"),
        httpx.Response(500, text="Internal Server Error"),
        httpx.Response(404, json={"success": False, "data": None, "error": "Invalid version ID"}),
        httpx.Response(200, json=job_body("completed", processed=4)),
    )
    sleep = RecordingSleep()

    job = await make_watcher(server, sleep).watch(3)

    assert job.status == "completed"
    assert len(server.paths) == 4
    assert sleep.delays == [2.0, 2.0, 2.0]


async def test_poll_once_reports_failures():
    server = ScriptedServer(httpx.Response(404, json={"success": False, "data": None, "error": "Invalid version ID"}))
    watcher = make_watcher(server, RecordingSleep())

    with pytest.raises(RuntimeError, match="Invalid version ID"):
        await watcher.poll_once(3)


async def test_watch_job_against_app(db_session, admin_headers, geocoding_service):
    version = await create_version(db_session)
    await add_voters(db_session, version.id, [{"alamat": "Jalan Lintas", "no_rumah": str(i)} for i in range(3)])

    client = ConstituencyAPIClient("http://test", user_email=admin_headers["X-User-Email"],
                                   transport=ASGITransport(app=app))
    async with client:
        started = await client.start_geocoding(version.id)
        assert started.success is True
        await wait_for_background_tasks()

        finished = []
        job = await GeocodingJobWatcher(client, poll_interval=0).watch(version.id, on_finished=finished.append)

    assert job.status == "completed"
    assert job.geocoded_count == 3
    assert [item.id for item in finished] == [started.data["id"]]


async def test_watch_parliament_job_against_app(db_session, admin_headers, geocoding_service):
    db_session.add_all([Parliament(name="Sepanggar"), Parliament(name="Kota Kinabalu")])
    await db_session.commit()

    client = ConstituencyAPIClient("http://test", user_email=admin_headers["X-User-Email"],
                                   transport=ASGITransport(app=app))
    async with client:
        started = await client.start_reference_geocoding("parliaments")
        assert started.success is True
        await wait_for_background_tasks()

        job = await GeocodingJobWatcher(client, poll_interval=0).watch(None, target="parliaments")

    assert job.id == started.data["id"]
    assert job.status == "completed"
    assert job.geocoded_count == 2
