"""Closed / Open / Half-Open circuit breaker.

One type serves both call shapes:

* request/response API calls use ``half_open_enabled=True``: after
  ``timeout`` since the last failure a trial call is let through, and
  ``half_open_successes`` consecutive successes close the circuit again;
* persistent-connection supervisors use ``half_open_enabled=False``: once
  ``max_failures`` consecutive failures are seen the breaker stays open
  until :meth:`CircuitBreaker.reset` is called.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Awaitable, Callable
from datetime import timedelta
from enum import Enum
from typing import TypeVar

from alertbridge.errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Thread-safe breaker shared by every caller of one destination."""

    def __init__(
        self,
        name: str,
        *,
        max_failures: int = 5,
        timeout: timedelta = timedelta(seconds=30),
        half_open_successes: int = 2,
        half_open_enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger = logger,
    ) -> None:
        if max_failures < 1:
            raise ValueError("max_failures must be at least 1")
        self.name = name
        self.max_failures = max_failures
        self.timeout = timeout
        self.half_open_successes = max(1, half_open_successes)
        self.half_open_enabled = half_open_enabled
        self._clock = clock
        self._logger = logger

        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._last_failure: float | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    @property
    def failures(self) -> int:
        with self._lock:
            return self._failures

    def is_open(self) -> bool:
        return self.state is CircuitState.OPEN

    def _maybe_half_open(self) -> None:
        # caller holds the lock
        if (
            self._state is CircuitState.OPEN
            and self.half_open_enabled
            and self._last_failure is not None
            and self._clock() - self._last_failure >= self.timeout.total_seconds()
        ):
            self._state = CircuitState.HALF_OPEN
            self._successes = 0
            self._logger.info("circuit %s half-open, allowing a trial call", self.name)

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._successes = 0
        self._logger.warning(
            "circuit %s opened after %d failures", self.name, self._failures
        )

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def allow(self) -> bool:
        with self._lock:
            self._maybe_half_open()
            return self._state is not CircuitState.OPEN

    def record_success(self) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._successes += 1
                if self._successes >= self.half_open_successes:
                    self._state = CircuitState.CLOSED
                    self._failures = 0
                    self._successes = 0
                    self._logger.info("circuit %s closed", self.name)
            elif self._state is CircuitState.CLOSED:
                self._failures = 0

    def record_failure(self) -> None:
        with self._lock:
            self._last_failure = self._clock()
            if self._state is CircuitState.HALF_OPEN:
                self._failures += 1
                self._open()
                return
            self._failures += 1
            if self._state is CircuitState.CLOSED and self._failures >= self.max_failures:
                self._open()

    def reset(self) -> None:
        """Force the breaker closed and clear all counters."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._successes = 0
            self._last_failure = None

    # ------------------------------------------------------------------
    # Guarded call
    # ------------------------------------------------------------------

    async def call(self, op: Callable[[], Awaitable[T]]) -> T:
        """Run ``op`` if the circuit allows it, recording the outcome.

        Raises :class:`CircuitOpenError` without running ``op`` when open.
        """
        if not self.allow():
            raise CircuitOpenError(self.name)
        try:
            result = await op()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result
