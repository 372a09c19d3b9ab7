"""
Tests for geocoding jobs: provider client, runner, state transitions and API
"""
import asyncio
import httpx
import pytest
from httpx import AsyncClient
from sqlalchemy import select
from constituency.api.routes.geocoding import job_message
from constituency.db.database import GeocodingJob, Locality, Parliament, SprVoter
from constituency.services.geocoding import (
    GeocodingRunner, NominatimGeocoder, RateLimiter, ReferenceGeocodingTarget, build_address, build_place_address,
)
from constituency.services.geocoding.targets import VoterAddress
from constituency.services.shared.exceptions import GeocodingProviderError, InvalidStateError
from tests.helpers.api_helpers import assert_failure, make_api_request
from tests.helpers.db_helpers import add_voters, create_version, wait_for_background_tasks


def voter_rows(count, **overrides):
    return [
        {"nama": f"PENGUNDI {i}", "no_rumah": str(i), "alamat": "Jalan Lintas", "poskod": "88300",
         "daerah": "Kota Kinabalu", **overrides}
        for i in range(1, count + 1)
    ]


def test_build_address_joins_parts_with_region():
    voter = VoterAddress(1, "12", "Jalan Lintas", "88300", "Kota Kinabalu")
    assert build_address(voter, "Sabah, Malaysia") == "12, Jalan Lintas, 88300, Kota Kinabalu, Sabah, Malaysia"


def test_build_address_skips_empty_parts():
    voter = VoterAddress(1, None, "Kampung Inanam", " ", None)
    assert build_address(voter, "Sabah, Malaysia") == "Kampung Inanam, Sabah, Malaysia"


def test_build_address_requires_street():
    assert build_address(VoterAddress(1, "12", None, "88300", "Kota Kinabalu")) is None
    assert build_address(VoterAddress(1, "12", "  ", "88300", "Kota Kinabalu")) is None


def test_build_place_address_adds_code_when_present():
    assert build_place_address("Inanam", "N.12", "Sabah, Malaysia") == "Inanam, N.12, Sabah, Malaysia"
    assert build_place_address(" Sepanggar ", None, "Sabah, Malaysia") == "Sepanggar, Sabah, Malaysia"
    assert build_place_address("  ", "N.12") is None


class TestNominatimGeocoder:
    def make_geocoder(self, handler):
        return NominatimGeocoder(
            base_url="https://geocoder.test/search",
            user_agent="Constituency-Tests/1.0",
            rate_limiter=RateLimiter(0),
            transport=httpx.MockTransport(handler),
        )

    async def test_returns_first_result(self):
        seen = []

        def handler(request: httpx.Request):
            seen.append(request)
            return httpx.Response(200, json=[{"lat": "5.9804", "lon": "116.0735"}])

        geocoder = self.make_geocoder(handler)
        assert await geocoder.geocode("Jalan Lintas, Sabah, Malaysia") == (5.9804, 116.0735)
        await geocoder.close()

        params = seen[0].url.params
        assert params["format"] == "json"
        assert params["limit"] == "1"
        assert params["q"] == "Jalan Lintas, Sabah, Malaysia"
        assert seen[0].headers["User-Agent"] == "Constituency-Tests/1.0"

    async def test_no_result_is_a_miss(self):
        geocoder = self.make_geocoder(lambda request: httpx.Response(200, json=[]))
        assert await geocoder.geocode("Nowhere") is None
        await geocoder.close()

    async def test_unusable_coordinates_are_a_miss(self):
        geocoder = self.make_geocoder(lambda request: httpx.Response(200, json=[{"lat": "abc", "lon": "1"}]))
        assert await geocoder.geocode("Somewhere") is None
        await geocoder.close()

    async def test_error_status_raises(self):
        geocoder = self.make_geocoder(lambda request: httpx.Response(429, text="Too Many Requests"))
        with pytest.raises(GeocodingProviderError) as exc_info:
            await geocoder.geocode("Somewhere")
        assert exc_info.value.provider_status == 429
        await geocoder.close()


async def test_rate_limiter_spaces_requests():
    limiter = RateLimiter(0.05)
    loop = asyncio.get_running_loop()
    start = loop.time()
    await limiter.wait_for_rate_limit()
    await limiter.wait_for_rate_limit()
    assert loop.time() - start >= 0.045


async def test_runner_geocoders_share_one_rate_limiter():
    runner = GeocodingRunner()
    first = runner.geocoder_factory()
    second = runner.geocoder_factory()
    try:
        assert first.rate_limiter is runner.rate_limiter
        assert second.rate_limiter is runner.rate_limiter
    finally:
        await first.close()
        await second.close()


async def test_concurrent_geocoders_are_spaced_by_shared_limiter():
    loop = asyncio.get_running_loop()
    request_times = []

    def handler(request: httpx.Request):
        request_times.append(loop.time())
        return httpx.Response(200, json=[{"lat": "5.98", "lon": "116.07"}])

    limiter = RateLimiter(0.2)
    geocoders = [
        NominatimGeocoder(base_url="https://geocoder.test/search", rate_limiter=limiter,
                          transport=httpx.MockTransport(handler))
        for _ in range(2)
    ]
    try:
        await asyncio.gather(*(geocoder.geocode("Jalan Lintas, Sabah, Malaysia") for geocoder in geocoders))
    finally:
        for geocoder in geocoders:
            await geocoder.close()

    assert len(request_times) == 2
    assert abs(request_times[1] - request_times[0]) >= 0.15


@pytest.mark.database
async def test_job_runs_to_completion(db_session, geocoding_service, fake_geocoder):
    version = await create_version(db_session)
    rows = voter_rows(4)
    rows.append({"nama": "TANPA ALAMAT", "alamat": None})
    rows[1]["no_rumah"] = "MISS"
    fake_geocoder.misses = {"MISS, Jalan Lintas, 88300, Kota Kinabalu, Sabah, Malaysia"}
    await add_voters(db_session, version.id, rows)

    job = await geocoding_service.start_job(version.id)
    assert job.status == "pending"
    assert job.total_voters == 5
    await wait_for_background_tasks()

    job = await geocoding_service.get_job(job.id)
    assert job.status == "completed"
    assert job.processed_voters == 5
    assert (job.geocoded_count, job.failed_count, job.skipped_count) == (3, 1, 1)
    assert job.started_at is not None
    assert job.completed_at is not None

    result = await db_session.execute(select(SprVoter.id).where(SprVoter.lat.is_not(None)))
    assert len(result.all()) == 3


@pytest.mark.database
async def test_pause_then_resume_continues_without_reprocessing(db_session, geocoding_service, fake_geocoder):
    version = await create_version(db_session)
    await add_voters(db_session, version.id, voter_rows(6))

    async def pause_on_third_call(call_number):
        if call_number == 3:
            latest = await geocoding_service.get_latest_job(version.id)
            await geocoding_service.pause_job(latest.id)

    fake_geocoder.on_call = pause_on_third_call

    job = await geocoding_service.start_job(version.id)
    await wait_for_background_tasks()

    paused = await geocoding_service.get_job(job.id)
    assert paused.status == "paused"
    assert paused.processed_voters == 3
    assert paused.geocoded_count == 3
    started_at = paused.started_at

    await geocoding_service.resume_job(job.id)
    await wait_for_background_tasks()

    finished = await geocoding_service.get_job(job.id)
    assert finished.status == "completed"
    assert finished.processed_voters == 6
    assert finished.geocoded_count == 6
    assert finished.total_voters == 6
    assert finished.started_at == started_at
    assert len(fake_geocoder.addresses) == 6
    assert len(set(fake_geocoder.addresses)) == 6


@pytest.mark.database
async def test_resume_picks_up_voters_added_while_paused(db_session, geocoding_service, fake_geocoder):
    version = await create_version(db_session)
    await add_voters(db_session, version.id, voter_rows(3))

    async def pause_on_first_call(call_number):
        if call_number == 1:
            latest = await geocoding_service.get_latest_job(version.id)
            await geocoding_service.pause_job(latest.id)

    fake_geocoder.on_call = pause_on_first_call
    job = await geocoding_service.start_job(version.id)
    await wait_for_background_tasks()

    await add_voters(db_session, version.id, voter_rows(2, alamat="Jalan Tuaran"))
    await geocoding_service.resume_job(job.id)
    await wait_for_background_tasks()

    finished = await geocoding_service.get_job(job.id)
    assert finished.status == "completed"
    assert finished.total_voters == 5
    assert finished.processed_voters == 5


@pytest.mark.database
async def test_unexpected_error_fails_job(db_session, geocoding_service, fake_geocoder):
    version = await create_version(db_session)
    await add_voters(db_session, version.id, voter_rows(2))

    async def explode(call_number):
        raise RuntimeError("provider exploded")

    fake_geocoder.on_call = explode
    job = await geocoding_service.start_job(version.id)
    await wait_for_background_tasks()

    failed = await geocoding_service.get_job(job.id)
    assert failed.status == "failed"
    assert failed.error_message == "provider exploded"

    with pytest.raises(InvalidStateError):
        await geocoding_service.resume_job(job.id)


@pytest.mark.database
async def test_error_after_pause_keeps_job_paused(db_session, geocoding_service, fake_geocoder):
    version = await create_version(db_session)
    await add_voters(db_session, version.id, voter_rows(2))

    async def pause_then_explode(call_number):
        latest = await geocoding_service.get_latest_job(version.id)
        await geocoding_service.pause_job(latest.id)
        raise RuntimeError("provider exploded")

    fake_geocoder.on_call = pause_then_explode
    job = await geocoding_service.start_job(version.id)
    await wait_for_background_tasks()

    paused = await geocoding_service.get_job(job.id)
    assert paused.status == "paused"
    assert paused.error_message is None
    assert paused.completed_at is None
    assert await geocoding_service.job_manager.fail_job(job.id, "late error") is False

    fake_geocoder.on_call = None
    await geocoding_service.resume_job(job.id)
    await wait_for_background_tasks()

    finished = await geocoding_service.get_job(job.id)
    assert finished.status == "completed"
    assert finished.processed_voters == 2
    assert finished.error_message is None


@pytest.mark.database
async def test_parliament_job_geocodes_parliaments_without_coordinates(db_session, geocoding_service,
                                                                       fake_geocoder):
    db_session.add_all([
        Parliament(name="Sepanggar", code="P.172"),
        Parliament(name="Kota Kinabalu", code="P.173"),
        Parliament(name="Tuaran", code="P.170", lat=6.18, lng=116.23),
    ])
    await db_session.commit()

    job = await geocoding_service.start_reference_job(ReferenceGeocodingTarget.PARLIAMENTS)
    assert job.target == "parliaments"
    assert job.version_id is None
    assert job.total_voters == 2
    await wait_for_background_tasks()

    finished = await geocoding_service.get_job(job.id)
    assert finished.status == "completed"
    assert (finished.processed_voters, finished.geocoded_count) == (2, 2)
    assert fake_geocoder.addresses == ["Sepanggar, Sabah, Malaysia", "Kota Kinabalu, Sabah, Malaysia"]

    result = await db_session.execute(select(Parliament.name).where(Parliament.lat.is_(None)))
    assert result.all() == []


@pytest.mark.database
async def test_locality_job_uses_code_and_skips_blank_names(db_session, geocoding_service, fake_geocoder):
    db_session.add_all([
        Locality(name="Kampung Inanam", code="KK01"),
        Locality(name="   "),
        Locality(name="Menggatal"),
    ])
    await db_session.commit()

    job = await geocoding_service.start_reference_job(ReferenceGeocodingTarget.LOCALITIES)
    await wait_for_background_tasks()

    finished = await geocoding_service.get_latest_reference_job(ReferenceGeocodingTarget.LOCALITIES)
    assert finished.id == job.id
    assert finished.status == "completed"
    assert (finished.geocoded_count, finished.failed_count, finished.skipped_count) == (2, 0, 1)
    assert fake_geocoder.addresses == ["Kampung Inanam, KK01, Sabah, Malaysia", "Menggatal, Sabah, Malaysia"]


@pytest.mark.database
async def test_reference_job_resumes_after_pause(db_session, geocoding_service, fake_geocoder):
    db_session.add_all([Locality(name=f"Kampung {i}") for i in range(1, 5)])
    await db_session.commit()

    async def pause_on_second_call(call_number):
        if call_number == 2:
            latest = await geocoding_service.get_latest_reference_job(ReferenceGeocodingTarget.LOCALITIES)
            await geocoding_service.pause_job(latest.id)

    fake_geocoder.on_call = pause_on_second_call
    job = await geocoding_service.start_reference_job(ReferenceGeocodingTarget.LOCALITIES)
    await wait_for_background_tasks()
    assert (await geocoding_service.get_job(job.id)).processed_voters == 2

    await geocoding_service.resume_job(job.id)
    await wait_for_background_tasks()

    finished = await geocoding_service.get_job(job.id)
    assert finished.status == "completed"
    assert finished.geocoded_count == 4
    assert len(set(fake_geocoder.addresses)) == 4


@pytest.mark.database
async def test_interrupted_jobs_are_paused(db_session, geocoding_service):
    version = await create_version(db_session)
    db_session.add(GeocodingJob(version_id=version.id, status="running", total_voters=10,
                                processed_voters=4, geocoded_count=4, failed_count=0, skipped_count=0))
    await db_session.commit()

    assert await geocoding_service.job_manager.pause_interrupted_jobs() == 1
    latest = await geocoding_service.get_latest_job(version.id)
    assert latest.status == "paused"
    assert latest.processed_voters == 4


@pytest.mark.database
async def test_pending_jobs_are_rescheduled(db_session, geocoding_service):
    version = await create_version(db_session)
    await add_voters(db_session, version.id, voter_rows(2))
    db_session.add(GeocodingJob(version_id=version.id, status="pending", total_voters=2,
                                processed_voters=0, geocoded_count=0, failed_count=0, skipped_count=0))
    await db_session.commit()

    assert await geocoding_service.reschedule_pending_jobs() == 1
    await wait_for_background_tasks()

    latest = await geocoding_service.get_latest_job(version.id)
    assert latest.status == "completed"
    assert latest.geocoded_count == 2


def test_job_message_shapes_push_updates():
    job = GeocodingJob(id=1, target="voters", version_id=2, status="running", total_voters=10,
                       processed_voters=5, geocoded_count=4, failed_count=1, skipped_count=0)
    message = job_message(job)
    assert message["type"] == "progress"
    assert message["job_id"] == 1
    assert message["data"]["percentage"] == 50
    assert message["data"]["geocoded_count"] == 4

    job.status = "paused"
    assert job_message(job)["type"] == "paused"


class TestGeocodingAPI:
    async def test_start_requires_admin(self, client: AsyncClient, db_session, staff_headers, geocoding_service):
        version = await create_version(db_session)
        body = await make_api_request(client, "POST", f"/api/geocoding/versions/{version.id}/start", staff_headers)
        assert_failure(body, 403, "Access denied: Only super admin and ADUN can geocode voters")

    async def test_start_without_pending_voters(self, client: AsyncClient, db_session, admin_headers,
                                                geocoding_service):
        version = await create_version(db_session)
        await add_voters(db_session, version.id, voter_rows(1, lat=5.9, lng=116.0))
        body = await make_api_request(client, "POST", f"/api/geocoding/versions/{version.id}/start", admin_headers)
        assert_failure(body, 400, "No voters found that need geocoding")

    async def test_start_unknown_version(self, client: AsyncClient, admin_headers, geocoding_service):
        body = await make_api_request(client, "POST", "/api/geocoding/versions/77/start", admin_headers)
        assert_failure(body, 404, "Invalid version ID")

    async def test_second_start_is_rejected_while_active(self, client: AsyncClient, db_session, admin_headers,
                                                         geocoding_service, fake_geocoder):
        version = await create_version(db_session)
        await add_voters(db_session, version.id, voter_rows(2))
        gate = asyncio.Event()

        async def hold(call_number):
            await gate.wait()

        fake_geocoder.on_call = hold

        first = await make_api_request(client, "POST", f"/api/geocoding/versions/{version.id}/start", admin_headers)
        assert first["success"] is True
        assert first["data"]["status"] == "pending"

        second = await make_api_request(client, "POST", f"/api/geocoding/versions/{version.id}/start", admin_headers)
        assert_failure(second, 409, "A geocoding job is already in progress for this version")

        gate.set()
        await wait_for_background_tasks()

        latest = await make_api_request(client, "GET", f"/api/geocoding/versions/{version.id}/latest", admin_headers)
        assert latest["data"]["status"] == "completed"
        assert latest["data"]["id"] == first["data"]["id"]

    async def test_pause_and_resume_state_errors(self, client: AsyncClient, db_session, admin_headers,
                                                 geocoding_service):
        version = await create_version(db_session)
        await add_voters(db_session, version.id, voter_rows(1))
        started = await make_api_request(client, "POST", f"/api/geocoding/versions/{version.id}/start",
                                         admin_headers)
        await wait_for_background_tasks()
        job_id = started["data"]["id"]

        paused = await make_api_request(client, "POST", f"/api/geocoding/jobs/{job_id}/pause", admin_headers)
        assert_failure(paused, 409, "Cannot pause job: Job is not running (current status: completed)")

        resumed = await make_api_request(client, "POST", f"/api/geocoding/jobs/{job_id}/resume", admin_headers)
        assert_failure(resumed, 409, "Cannot resume job: Job is not paused (current status: completed)")

    async def test_pause_running_job_through_api(self, client: AsyncClient, db_session, admin_headers,
                                                 geocoding_service, fake_geocoder):
        version = await create_version(db_session)
        await add_voters(db_session, version.id, voter_rows(4))
        gate = asyncio.Event()

        async def hold_first(call_number):
            if call_number == 1:
                await gate.wait()

        fake_geocoder.on_call = hold_first
        started = await make_api_request(client, "POST", f"/api/geocoding/versions/{version.id}/start",
                                         admin_headers)
        job_id = started["data"]["id"]

        # Let the runner reach the first provider call
        for _ in range(100):
            if fake_geocoder.addresses:
                break
            await asyncio.sleep(0.01)

        paused = await make_api_request(client, "POST", f"/api/geocoding/jobs/{job_id}/pause", admin_headers)
        assert paused["success"] is True
        assert paused["data"]["status"] == "paused"

        gate.set()
        await wait_for_background_tasks()

        job = await make_api_request(client, "GET", f"/api/geocoding/jobs/{job_id}", admin_headers)
        assert job["data"]["status"] == "paused"
        assert job["data"]["processed_voters"] == 1

        resumed = await make_api_request(client, "POST", f"/api/geocoding/jobs/{job_id}/resume", admin_headers)
        assert resumed["data"]["status"] == "running"
        await wait_for_background_tasks()

        job = await make_api_request(client, "GET", f"/api/geocoding/jobs/{job_id}", admin_headers)
        assert job["data"]["status"] == "completed"
        assert job["data"]["processed_voters"] == 4

    async def test_latest_job_is_null_without_jobs(self, client: AsyncClient, db_session, admin_headers,
                                                   geocoding_service):
        version = await create_version(db_session)
        body = await make_api_request(client, "GET", f"/api/geocoding/versions/{version.id}/latest", admin_headers)
        assert body == {"success": True, "data": None, "error": None, "status_code": 200}

    async def test_unknown_job(self, client: AsyncClient, admin_headers, geocoding_service):
        body = await make_api_request(client, "GET", "/api/geocoding/jobs/9999", admin_headers)
        assert_failure(body, 404, "Geocoding job not found")

    async def test_job_reads_require_authentication(self, client: AsyncClient, geocoding_service):
        body = await make_api_request(client, "GET", "/api/geocoding/jobs/1")
        assert_failure(body, 401, "Authentication required")

    async def test_reference_start_requires_admin(self, client: AsyncClient, staff_headers, geocoding_service):
        body = await make_api_request(client, "POST", "/api/geocoding/localities/start", staff_headers)
        assert_failure(body, 403, "Access denied: Only super admin and ADUN can geocode localities")

    async def test_reference_start_without_pending_rows(self, client: AsyncClient, db_session, admin_headers,
                                                        geocoding_service):
        db_session.add(Parliament(name="Sepanggar", lat=6.05, lng=116.12))
        await db_session.commit()
        body = await make_api_request(client, "POST", "/api/geocoding/parliaments/start", admin_headers)
        assert_failure(body, 400, "No parliaments found that need geocoding")

    async def test_reference_job_runs_beside_voter_job(self, client: AsyncClient, db_session, admin_headers,
                                                       geocoding_service, fake_geocoder):
        version = await create_version(db_session)
        await add_voters(db_session, version.id, voter_rows(1))
        db_session.add(Parliament(name="Sepanggar", code="P.172"))
        await db_session.commit()
        gate = asyncio.Event()

        async def hold(call_number):
            await gate.wait()

        fake_geocoder.on_call = hold

        voters = await make_api_request(client, "POST", f"/api/geocoding/versions/{version.id}/start", admin_headers)
        assert voters["success"] is True

        first = await make_api_request(client, "POST", "/api/geocoding/parliaments/start", admin_headers)
        assert first["success"] is True
        assert first["data"]["target"] == "parliaments"
        assert first["data"]["version_id"] is None

        second = await make_api_request(client, "POST", "/api/geocoding/parliaments/start", admin_headers)
        assert_failure(second, 409, "A parliaments geocoding job is already in progress")

        gate.set()
        await wait_for_background_tasks()

        latest = await make_api_request(client, "GET", "/api/geocoding/parliaments/latest", admin_headers)
        assert latest["data"]["id"] == first["data"]["id"]
        assert latest["data"]["status"] == "completed"

        listed = await make_api_request(client, "GET", "/api/geocoding/jobs", admin_headers,
                                        params={"target": "parliaments"})
        assert [job["id"] for job in listed["data"]] == [first["data"]["id"]]

    async def test_reference_latest_is_null_without_jobs(self, client: AsyncClient, admin_headers,
                                                         geocoding_service):
        body = await make_api_request(client, "GET", "/api/geocoding/localities/latest", admin_headers)
        assert body["success"] is True
        assert body["data"] is None
