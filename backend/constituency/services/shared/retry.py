"""
Retry helpers for database locks and for client operations that report failure
"""
import asyncio
import logging
from functools import wraps
from typing import Awaitable, Callable, Optional, TypeVar
from .exceptions import DatabaseLockError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


def backoff_delay(base_delay: float, attempt: int, exponential_backoff: bool = True) -> float:
    """Delay before the retry that follows zero-based ``attempt``"""
    if exponential_backoff:
        return base_delay * (2 ** attempt)
    return base_delay


def retry_on_db_lock(
    max_retries: int = 3,
    base_delay: float = 0.1,
    exponential_backoff: bool = True,
    on_retry: Optional[Callable[[int, Exception], None]] = None
):
    """
    Decorator to retry async functions on database lock errors

    Args:
        max_retries: Maximum number of attempts
        base_delay: Delay in seconds before the first retry
        exponential_backoff: If True, delay doubles with each retry
        on_retry: Optional callback(attempt, exception) called before each retry
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    is_db_lock = (
                        isinstance(e, DatabaseLockError)
                        or "database is locked" in str(e).lower()
                    )
                    if not is_db_lock:
                        raise

                    if attempt >= max_retries - 1:
                        logger.warning(
                            f"Failed {func.__name__} after {max_retries} attempts due to database lock"
                        )
                        raise DatabaseLockError(
                            f"Database lock error after {max_retries} retries: {str(e)}"
                        ) from e

                    wait_time = backoff_delay(base_delay, attempt, exponential_backoff)
                    if on_retry:
                        on_retry(attempt + 1, e)
                    logger.debug(
                        f"Database locked in {func.__name__}, retrying in {wait_time}s "
                        f"(attempt {attempt + 1}/{max_retries})"
                    )
                    await asyncio.sleep(wait_time)

        return wrapper
    return decorator


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    is_success: Callable[[T], bool],
    max_retries: int = 3,
    base_delay: float = 1.0,
    sleep: SleepFunc = asyncio.sleep,
) -> T:
    """
    Run ``operation`` until ``is_success`` accepts its result

    An attempt fails when ``operation`` raises or returns a result that
    ``is_success`` rejects. Waits ``base_delay * 2**attempt`` between attempts.
    After the last attempt the final unsuccessful result is returned, or the
    final exception is re-raised.
    """
    result: Optional[T] = None

    for attempt in range(max_retries):
        is_last = attempt == max_retries - 1
        try:
            result = await operation()
        except Exception as e:
            if is_last:
                raise
            logger.debug(f"Attempt {attempt + 1}/{max_retries} raised {type(e).__name__}: {e}")
        else:
            if is_success(result) or is_last:
                return result
            logger.debug(f"Attempt {attempt + 1}/{max_retries} reported failure")

        await sleep(backoff_delay(base_delay, attempt))

    return result
