"""
Tests for the chunked CSV upload client
"""
import json
import httpx
import pytest
from httpx import ASGITransport
from sqlalchemy import select
from constituency.client import ChunkedVoterImporter, ConstituencyAPIClient
from constituency.db.database import SprVoter
from constituency.main import app
from constituency.services.shared.exceptions import CsvValidationError
from tests.helpers.api_helpers import spr_csv, spr_csv_lines
from tests.helpers.db_helpers import create_version


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


class ChunkServer:
    """MockTransport handler that answers chunk uploads like the API does"""

    def __init__(self, responder=None):
        self.requests = []
        self.responder = responder

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.requests.append(payload)
        if self.responder is not None:
            response = self.responder(len(self.requests), payload)
            if response is not None:
                return response
        return httpx.Response(200, json={
            "success": True,
            "data": {"imported": len(payload["lines"]), "errors": []},
            "error": None,
        })


def make_importer(handler, sleep):
    client = ConstituencyAPIClient("http://test", user_email="admin@example.com",
                                   transport=httpx.MockTransport(handler))
    return ChunkedVoterImporter(client, sleep=sleep)


async def test_splits_rows_into_chunks_of_250():
    server = ChunkServer()
    sleep = RecordingSleep()
    progress = []

    result = await make_importer(server, sleep).import_csv(
        7, spr_csv(spr_csv_lines(600)), on_progress=progress.append
    )

    assert [len(payload["lines"]) for payload in server.requests] == [250, 250, 100]
    assert [payload["start_row_index"] for payload in server.requests] == [0, 250, 500]
    assert [payload["skip_version_check"] for payload in server.requests] == [False, True, True]
    assert result.imported == 600
    assert result.errors == []
    assert result.chunks == 3
    assert [(p.current, p.percentage) for p in progress] == [(250, 42), (500, 83), (600, 100)]
    # Pauses only between chunks
    assert sleep.delays == [0.1, 0.1]


async def test_failed_chunk_is_reported_once_and_upload_continues():
    def fail_second_chunk(_, payload):
        if payload["start_row_index"] == 250:
            return httpx.Response(503, json={"success": False, "error": "Database is locked", "data": None})
        return None

    server = ChunkServer(fail_second_chunk)
    sleep = RecordingSleep()
    result = await make_importer(server, sleep).import_csv(7, spr_csv(spr_csv_lines(600)))

    assert result.imported == 350
    assert result.failed_chunks == 1
    assert result.errors == ["Chunk 2 (rows 251-500): Database is locked"]
    assert [payload["start_row_index"] for payload in server.requests] == [0, 250, 250, 250, 500]
    # Backoff of 1s then 2s between the three attempts
    assert sleep.delays == [0.1, 1.0, 2.0, 0.1]


async def test_transient_network_errors_are_retried():
    def flaky(attempt, _):
        if attempt <= 2:
            raise httpx.ConnectError("connection refused")
        return None

    server = ChunkServer(flaky)
    result = await make_importer(server, RecordingSleep()).import_csv(7, spr_csv(spr_csv_lines(10)))

    assert result.imported == 10
    assert result.errors == []
    assert len(server.requests) == 3


async def test_network_failure_after_all_attempts():
    def always_down(_, __):
        raise httpx.ConnectError("connection refused")

    result = await make_importer(ChunkServer(always_down), RecordingSleep()).import_csv(
        7, spr_csv(spr_csv_lines(3))
    )

    assert result.imported == 0
    assert result.errors == [
        "Chunk 1 (rows 1-3): Network error after 3 attempts: connection refused"
    ]


async def test_row_errors_are_collected_and_capped():
    def row_errors(_, payload):
        start = payload["start_row_index"]
        errors = [f"Row {start + i + 1}: Name is required" for i in range(len(payload["lines"]))]
        return httpx.Response(200, json={"success": True, "data": {"imported": 0, "errors": errors}})

    result = await make_importer(ChunkServer(row_errors), RecordingSleep()).import_csv(
        7, spr_csv(spr_csv_lines(300))
    )

    assert len(result.errors) == 100
    assert result.errors[0] == "Row 1: Name is required"


async def test_missing_name_column_fails_before_any_request():
    server = ChunkServer()
    header = ["NoSiri", "NoKp", "alamat"]
    with pytest.raises(CsvValidationError) as exc_info:
        await make_importer(server, RecordingSleep()).import_csv(7, spr_csv(["1,900101120001,Jalan"], header))

    assert exc_info.value.message == "Missing required column: Nama"
    assert server.requests == []


async def test_header_only_file_fails_before_any_request():
    server = ChunkServer()
    with pytest.raises(CsvValidationError):
        await make_importer(server, RecordingSleep()).import_csv(7, spr_csv([]))
    assert server.requests == []


async def test_on_complete_receives_final_result():
    completed = []

    async def on_complete(result):
        completed.append(result)

    result = await make_importer(ChunkServer(), RecordingSleep()).import_csv(
        7, spr_csv(spr_csv_lines(5)), on_complete=on_complete
    )
    assert completed == [result]


@pytest.mark.integration
@pytest.mark.database
async def test_chunked_upload_against_app(db_session, admin_staff):
    version = await create_version(db_session)
    lines = spr_csv_lines(5)
    lines[2] = "3,900101120003,,L,01/01/1990,Jalan,88300,Kota Kinabalu,1"

    async with ConstituencyAPIClient("http://test", user_email=admin_staff.email,
                                     transport=ASGITransport(app=app)) as client:
        importer = ChunkedVoterImporter(client, chunk_size=2, sleep=RecordingSleep())
        result = await importer.import_csv(version.id, spr_csv(lines))

    assert result.chunks == 3
    assert result.imported == 4
    assert result.errors == ["Row 3: Name is required"]

    count = await db_session.execute(select(SprVoter.id).where(SprVoter.version_id == version.id))
    assert len(count.all()) == 4
