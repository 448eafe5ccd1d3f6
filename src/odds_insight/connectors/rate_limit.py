"""Rate limiting and retry utilities for HTTP odds sources."""
from __future__ import annotations

import asyncio
import time
from collections import deque
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

import httpx
import structlog

log = structlog.get_logger(__name__)

T = TypeVar("T")

RETRYABLE_HTTP_ERRORS: tuple[type[Exception], ...] = (httpx.HTTPStatusError, httpx.TransportError)


class RateLimiter:
    """Sliding-window limiter: at most ``max_calls`` acquisitions per ``period_seconds``."""

    def __init__(self, max_calls: int, period_seconds: float):
        self.max_calls = max_calls
        self.period_seconds = period_seconds
        self.calls: deque[float] = deque()
        self.lock = asyncio.Lock()

    def _expire(self, now: float) -> None:
        while self.calls and now - self.calls[0] >= self.period_seconds:
            self.calls.popleft()

    async def acquire(self) -> None:
        async with self.lock:
            now = time.monotonic()
            self._expire(now)
            if len(self.calls) >= self.max_calls:
                wait_time = self.period_seconds - (now - self.calls[0])
                if wait_time > 0:
                    log.debug("rate_limit_wait", wait_seconds=wait_time)
                    await asyncio.sleep(wait_time)
                self._expire(time.monotonic())
            self.calls.append(time.monotonic())


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    retryable_exceptions: tuple[type[Exception], ...] = RETRYABLE_HTTP_ERRORS,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Retry an async callable with exponential backoff.

    Args:
        max_retries: Attempts after the first one
        initial_delay: Delay before the first retry, in seconds
        backoff_factor: Multiplier applied to the delay after each retry
        retryable_exceptions: Exceptions that trigger a retry; anything else propagates at once
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            delay = initial_delay
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    if attempt == max_retries:
                        log.error("source_retry_exhausted", function=func.__name__, attempts=attempt + 1, error=str(e))
                        raise
                    log.warning(
                        "source_retry",
                        function=func.__name__,
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)
                    delay *= backoff_factor
            raise AssertionError("unreachable")

        return wrapper

    return decorator
