"""Retry-with-backoff executor and the retryable-error predicate."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TypeVar

import httpx

from alertbridge.errors import CircuitOpenError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


def is_retryable(exc: BaseException) -> bool:
    """Classify an exception raised by an outbound call.

    Network errors, 5xx and 429 are retryable.  4xx, validation errors and
    an open circuit are not.  Cancellation is a ``BaseException`` and is
    never passed here by the executor.
    """
    if isinstance(exc, CircuitOpenError):
        return False
    if isinstance(exc, TransientError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status >= 500 or status == 429
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, ConnectionError):
        return True
    return False


def backoff_delay(
    attempt: int,
    initial: timedelta,
    multiplier: float,
    maximum: timedelta,
) -> timedelta:
    """``min(initial * multiplier**attempt, maximum)``; attempt counts from 0."""
    seconds = initial.total_seconds() * (multiplier**attempt)
    return timedelta(seconds=min(seconds, maximum.total_seconds()))


@dataclass
class RetryPolicy:
    initial_delay: timedelta = timedelta(milliseconds=100)
    multiplier: float = 2.0
    max_delay: timedelta = timedelta(seconds=5)
    max_retries: int = 3
    jitter: float = 0.0
    sleep: Sleep = field(default=asyncio.sleep, repr=False, compare=False)
    logger: logging.Logger = field(default=logger, repr=False, compare=False)

    def delay_for(self, attempt: int) -> timedelta:
        delay = backoff_delay(attempt, self.initial_delay, self.multiplier, self.max_delay)
        if self.jitter:
            spread = delay.total_seconds() * self.jitter
            delay = timedelta(seconds=max(0.0, delay.total_seconds() + random.uniform(-spread, spread)))
        return delay

    async def run(
        self,
        op: Callable[[], Awaitable[T]],
        *,
        description: str = "operation",
        retryable: Callable[[BaseException], bool] = is_retryable,
    ) -> T:
        """Run ``op`` up to ``max_retries + 1`` times.

        Non-retryable errors propagate on the first occurrence.  Cancellation
        during an attempt or during the backoff sleep propagates immediately.
        """
        attempt = 0
        while True:
            try:
                return await op()
            except Exception as exc:
                if not retryable(exc) or attempt >= self.max_retries:
                    raise
                delay = self.delay_for(attempt)
                self.logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.3fs: %s",
                    description,
                    attempt + 1,
                    self.max_retries + 1,
                    delay.total_seconds(),
                    exc,
                )
                await self.sleep(delay.total_seconds())
                attempt += 1


async def with_retry(
    op: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    description: str = "operation",
) -> T:
    return await (policy or RetryPolicy()).run(op, description=description)
