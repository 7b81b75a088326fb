"""
FormStock Service — Version-conflict retries

Stock rows carry a version_id. A write that matches zero rows because the
version moved on raises StaleDataError; callers wrapped in
with_optimistic_retry re-read and try again after an exponential backoff.
"""
import asyncio
import functools
import logging
import random

from formstock.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class StaleDataError(Exception):
    """A version-checked write lost to a concurrent transaction."""


def backoff_delay(attempt: int) -> float:
    """Seconds to sleep after failed ``attempt``: doubling from the base delay, capped, plus jitter."""
    doubled = settings.OPT_LOCK_BASE_DELAY_MS * (2 ** attempt)
    capped_ms = min(doubled, settings.OPT_LOCK_MAX_DELAY_MS)
    return (capped_ms + random.uniform(0, settings.OPT_LOCK_JITTER_MS)) / 1000.0


def with_optimistic_retry(max_retries: int | None = None):
    """
    Re-run an async read-then-write coroutine when it raises StaleDataError.

    The wrapped coroutine must re-read the row on every call. The attempt
    limit defaults to OPT_LOCK_MAX_RETRIES, looked up on each call so tests
    and config reloads take effect. The final conflict propagates.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            attempts = max_retries or settings.OPT_LOCK_MAX_RETRIES
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except StaleDataError:
                    if attempt >= attempts:
                        logger.error("%s still conflicting after %d attempts", func.__name__, attempts)
                        raise
                delay = backoff_delay(attempt)
                logger.warning(
                    "Version conflict in %s (attempt %d/%d), next try in %.3fs",
                    func.__name__, attempt, attempts, delay,
                )
                await asyncio.sleep(delay)
                attempt += 1

        return wrapper

    return decorator
