"""
Unit tests for the retry helpers
"""
import pytest
from constituency.services.shared.exceptions import DatabaseLockError
from constituency.services.shared.retry import backoff_delay, retry_on_db_lock, retry_with_backoff


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


def test_backoff_delay():
    assert [backoff_delay(1.0, attempt) for attempt in range(3)] == [1.0, 2.0, 4.0]
    assert backoff_delay(0.5, 2, exponential_backoff=False) == 0.5


async def test_retry_with_backoff_returns_first_success():
    results = iter([{"success": False}, {"success": True}])
    sleep = RecordingSleep()

    async def operation():
        return next(results)

    result = await retry_with_backoff(operation, lambda r: r["success"], base_delay=1.0, sleep=sleep)

    assert result == {"success": True}
    assert sleep.delays == [1.0]


async def test_retry_with_backoff_returns_last_failure():
    calls = []
    sleep = RecordingSleep()

    async def operation():
        calls.append(len(calls))
        return {"success": False, "attempt": len(calls)}

    result = await retry_with_backoff(operation, lambda r: r["success"], max_retries=3, sleep=sleep)

    assert result == {"success": False, "attempt": 3}
    assert sleep.delays == [1.0, 2.0]


async def test_retry_with_backoff_reraises_final_exception():
    sleep = RecordingSleep()
    attempts = []

    async def operation():
        attempts.append(1)
        raise ConnectionError(f"refused {len(attempts)}")

    with pytest.raises(ConnectionError, match="refused 3"):
        await retry_with_backoff(operation, lambda r: True, max_retries=3, base_delay=0.5, sleep=sleep)
    assert sleep.delays == [0.5, 1.0]


async def test_retry_with_backoff_recovers_after_exception():
    sleep = RecordingSleep()
    outcomes = [ConnectionError("refused"), "ok"]

    async def operation():
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    assert await retry_with_backoff(operation, lambda r: r == "ok", sleep=sleep) == "ok"
    assert sleep.delays == [1.0]


async def test_retry_on_db_lock_retries_lock_errors():
    attempts = []
    retried = []

    @retry_on_db_lock(max_retries=3, base_delay=0, on_retry=lambda attempt, e: retried.append(attempt))
    async def write():
        attempts.append(1)
        if len(attempts) < 3:
            raise RuntimeError("database is locked")
        return "written"

    assert await write() == "written"
    assert retried == [1, 2]


async def test_retry_on_db_lock_gives_up():
    @retry_on_db_lock(max_retries=2, base_delay=0)
    async def write():
        raise DatabaseLockError()

    with pytest.raises(DatabaseLockError, match="after 2 retries"):
        await write()


async def test_retry_on_db_lock_ignores_other_errors():
    attempts = []

    @retry_on_db_lock(max_retries=3, base_delay=0)
    async def write():
        attempts.append(1)
        raise ValueError("bad value")

    with pytest.raises(ValueError):
        await write()
    assert len(attempts) == 1
