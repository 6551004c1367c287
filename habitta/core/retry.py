"""Bounded exponential-backoff retry for transient backend failures.

Only network/timeout errors and 5xx responses are retried. Application
errors (4xx, validation, auth) raise on the first attempt.
"""
import asyncio
from typing import Awaitable, Callable, TypeVar

import httpx
import structlog

log = structlog.get_logger()

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 2
DEFAULT_DELAY_MS = 1000


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    status = getattr(exc, "status_code", None)
    return isinstance(status, int) and status >= 500


async def fetch_with_retry(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    delay_ms: int = DEFAULT_DELAY_MS,
) -> T:
    """Await ``fn()``, retrying transient failures with delay * 2**attempt backoff."""
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            if not is_transient(exc) or attempt >= max_retries:
                raise
            wait_sec = delay_ms * (2 ** attempt) / 1000
            log.warning(
                "retry.transient_error",
                attempt=attempt + 1,
                max_retries=max_retries,
                wait_sec=wait_sec,
                error=str(exc),
            )
            await asyncio.sleep(wait_sec)
            attempt += 1
