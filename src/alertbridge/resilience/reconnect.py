"""Reconnection policy for long-lived streaming connections.

The transport loop itself lives with whatever owns the connection; this
module only decides how long to wait between attempts and when to give up.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta

from alertbridge.errors import CircuitOpenError
from alertbridge.resilience.circuit_breaker import CircuitBreaker
from alertbridge.resilience.retry import Sleep, backoff_delay

logger = logging.getLogger(__name__)


@dataclass
class ReconnectPolicy:
    initial_backoff: timedelta = timedelta(milliseconds=500)
    max_backoff: timedelta = timedelta(seconds=60)
    multiplier: float = 1.5
    max_failures: int = 5

    def delay_for(self, attempt: int) -> timedelta:
        return backoff_delay(attempt, self.initial_backoff, self.multiplier, self.max_backoff)

    def breaker(self, name: str) -> CircuitBreaker:
        """Binary breaker: opens after ``max_failures`` in a row and never half-opens."""
        return CircuitBreaker(
            name,
            max_failures=self.max_failures,
            half_open_enabled=False,
        )


class ReconnectSupervisor:
    """Keeps a streaming connection alive.

    ``connect`` runs one session.  Returning normally means the session ran
    and ended cleanly, which resets the failure count.  Raising counts as a
    failed attempt.  Once the breaker opens the supervisor stops and raises
    :class:`CircuitOpenError`; call :meth:`reset` before running it again.
    """

    def __init__(
        self,
        connect: Callable[[], Awaitable[None]],
        policy: ReconnectPolicy | None = None,
        breaker: CircuitBreaker | None = None,
        *,
        name: str = "stream",
        sleep: Sleep = asyncio.sleep,
        max_sessions: int | None = None,
        logger: logging.Logger = logger,
    ) -> None:
        self._connect = connect
        self.policy = policy or ReconnectPolicy()
        self.breaker = breaker or self.policy.breaker(name)
        self.name = name
        self._sleep = sleep
        self._max_sessions = max_sessions
        self._logger = logger
        self._attempt = 0

    @property
    def consecutive_failures(self) -> int:
        return self.breaker.failures

    def reset(self) -> None:
        self._attempt = 0
        self.breaker.reset()

    async def run(self) -> None:
        sessions = 0
        while True:
            if not self.breaker.allow():
                self._logger.error(
                    "%s: giving up after %d consecutive connection failures",
                    self.name,
                    self.breaker.failures,
                )
                raise CircuitOpenError(self.name)
            try:
                await self._connect()
            except Exception as exc:
                self.breaker.record_failure()
                if not self.breaker.allow():
                    continue
                delay = self.policy.delay_for(self._attempt)
                self._attempt += 1
                self._logger.warning(
                    "%s: connection failed (%d in a row), reconnecting in %.2fs: %s",
                    self.name,
                    self.breaker.failures,
                    delay.total_seconds(),
                    exc,
                )
                await self._sleep(delay.total_seconds())
                continue

            self.breaker.record_success()
            self._attempt = 0
            sessions += 1
            self._logger.info("%s: session ended, reconnecting", self.name)
            if self._max_sessions is not None and sessions >= self._max_sessions:
                return
