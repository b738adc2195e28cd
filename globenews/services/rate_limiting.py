# -*- coding: utf-8 -*-
"""
Rate limiting and retry primitives shared by every network-calling service.

- TokenBucket: lazy-refill admission control; callers wait, never get rejected
- with_retry: exponential backoff with jitter for transient upstream failures
"""

from __future__ import annotations

import asyncio
import math
import random
import time
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from globenews.config import ConfigurationError
from globenews.core.logging import get_logger

logger = get_logger()

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_S = 1.0
DEFAULT_MAX_DELAY_S = 30.0
RETRYABLE_STATUS_CODES = {429, 502, 503}


class TokenBucket:
    """
    Token bucket sized `max_tokens` per `window_s`.

    Tokens come back one at a time every `window_s / max_tokens` seconds,
    computed from elapsed time on each acquire (no background timer).
    """

    def __init__(
        self,
        max_tokens: int,
        window_s: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_tokens <= 0:
            raise ConfigurationError(f"max_tokens must be positive, got {max_tokens}")
        if window_s <= 0:
            raise ConfigurationError(f"window_s must be positive, got {window_s}")
        self.max_tokens = max_tokens
        self.window_s = window_s
        self.refill_interval = window_s / max_tokens
        self.tokens = float(max_tokens)
        self._clock = clock
        self._sleep = sleep
        self.last_refill = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self.last_refill
        to_add = math.floor(elapsed / self.refill_interval)
        if to_add <= 0:
            return
        self.tokens = min(float(self.max_tokens), self.tokens + to_add)
        if self.tokens >= self.max_tokens:
            self.last_refill = now
        else:
            self.last_refill += to_add * self.refill_interval

    async def acquire(self) -> None:
        # Waiters pass one at a time; the sleep below holds the lock on purpose.
        async with self._lock:
            self._refill()
            while self.tokens < 1:
                wait_s = self.refill_interval - (self._clock() - self.last_refill)
                await self._sleep(max(wait_s, 0.0))
                self._refill()
            self.tokens -= 1

    @property
    def available(self) -> int:
        self._refill()
        return int(self.tokens)


def is_retryable_error(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(
        exc,
        (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError),
    )


def describe_error(exc: BaseException) -> str:
    """Log-safe error text; status errors never echo the request URL (it may carry keys)."""
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code}"
    if isinstance(exc, httpx.RequestError):
        return exc.__class__.__name__
    return str(exc) or exc.__class__.__name__


def backoff_delay(
    attempt: int,
    *,
    base_delay_s: float = DEFAULT_BASE_DELAY_S,
    max_delay_s: float = DEFAULT_MAX_DELAY_S,
    jitter: Optional[Callable[[], float]] = None,
) -> float:
    jitter_s = (jitter or random.random)()
    return min(base_delay_s * (2 ** attempt) + jitter_s, max_delay_s)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    operation_name: str,
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay_s: float = DEFAULT_BASE_DELAY_S,
    max_delay_s: float = DEFAULT_MAX_DELAY_S,
    should_retry: Callable[[BaseException], bool] = is_retryable_error,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    jitter: Optional[Callable[[], float]] = None,
) -> T:
    """
    Run `operation`, retrying retryable failures up to `max_retries` times.

    The last error is re-raised unchanged once attempts run out; errors for
    which `should_retry` is false propagate on the first failure.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= max_retries or not should_retry(exc):
                raise
            delay = backoff_delay(
                attempt,
                base_delay_s=base_delay_s,
                max_delay_s=max_delay_s,
                jitter=jitter,
            )
            logger.warning(
                "retry_scheduled",
                operation=operation_name,
                attempt=attempt + 1,
                max_retries=max_retries,
                delay_s=round(delay, 3),
                error=describe_error(exc),
            )
            await sleep(delay)
            attempt += 1
