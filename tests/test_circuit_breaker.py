"""Tests for the circuit breaker in both configurations."""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from alertbridge.errors import CircuitOpenError, TransientError
from alertbridge.resilience import CircuitBreaker, CircuitState


class ManualClock:
    def __init__(self) -> None:
        self.t = 1000.0

    def __call__(self) -> float:
        return self.t


@pytest.fixture
def mono() -> ManualClock:
    return ManualClock()


def breaker(mono: ManualClock, **kwargs) -> CircuitBreaker:
    defaults = {"max_failures": 3, "timeout": timedelta(seconds=30), "clock": mono}
    defaults.update(kwargs)
    return CircuitBreaker("test", **defaults)


async def ok() -> str:
    return "ok"


async def boom() -> str:
    raise TransientError("down")


class TestDiscreteCallBreaker:
    def test_starts_closed(self, mono) -> None:
        """A new breaker is closed and allows calls."""
        assert breaker(mono).state is CircuitState.CLOSED

    def test_opens_after_max_failures(self, mono) -> None:
        """max_failures consecutive failures open the circuit."""
        cb = breaker(mono)
        for _ in range(2):
            cb.record_failure()
        assert cb.state is CircuitState.CLOSED
        cb.record_failure()
        assert cb.state is CircuitState.OPEN
        assert not cb.allow()

    def test_success_resets_failure_count_when_closed(self, mono) -> None:
        """A success while closed clears the failure count."""
        cb = breaker(mono)
        cb.record_failure()
        cb.record_failure()
        cb.record_success()
        cb.record_failure()
        cb.record_failure()
        assert cb.state is CircuitState.CLOSED

    def test_half_open_after_timeout(self, mono) -> None:
        """After the timeout the breaker half-opens and allows a call."""
        cb = breaker(mono)
        for _ in range(3):
            cb.record_failure()
        mono.t += 29
        assert cb.state is CircuitState.OPEN
        mono.t += 1
        assert cb.state is CircuitState.HALF_OPEN
        assert cb.allow()

    def test_half_open_failure_reopens(self, mono) -> None:
        """A failure while half-open reopens the circuit."""
        cb = breaker(mono)
        for _ in range(3):
            cb.record_failure()
        mono.t += 31
        assert cb.allow()
        cb.record_failure()
        assert cb.state is CircuitState.OPEN
        mono.t += 10
        assert not cb.allow()

    def test_half_open_needs_consecutive_successes(self, mono) -> None:
        """Closing again takes the configured number of successes."""
        cb = breaker(mono, half_open_successes=2)
        for _ in range(3):
            cb.record_failure()
        mono.t += 31
        assert cb.allow()
        cb.record_success()
        assert cb.state is CircuitState.HALF_OPEN
        cb.record_success()
        assert cb.state is CircuitState.CLOSED
        assert cb.failures == 0

    @pytest.mark.asyncio
    async def test_call_rejects_when_open(self, mono) -> None:
        """call() raises CircuitOpenError without running the operation."""
        cb = breaker(mono, max_failures=1)
        with pytest.raises(TransientError):
            await cb.call(boom)
        with pytest.raises(CircuitOpenError):
            await cb.call(ok)

    @pytest.mark.asyncio
    async def test_call_records_success(self, mono) -> None:
        """A successful call() leaves the failure count at zero."""
        cb = breaker(mono)
        assert await cb.call(ok) == "ok"
        assert cb.failures == 0

    def test_reset(self, mono) -> None:
        """reset() closes the breaker and clears counters."""
        cb = breaker(mono, max_failures=1)
        cb.record_failure()
        cb.reset()
        assert cb.state is CircuitState.CLOSED
        assert cb.allow()

    def test_concurrent_failures_counted_once_each(self, mono) -> None:
        """Failures from many threads are each counted."""
        cb = breaker(mono, max_failures=1000)

        def hammer() -> None:
            for _ in range(100):
                cb.record_failure()

        threads = [threading.Thread(target=hammer) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert cb.failures == 800
        assert cb.state is CircuitState.CLOSED


class TestPersistentConnectionBreaker:
    """Half-open probing disabled: open stays open until reset."""

    def test_never_half_opens(self, mono) -> None:
        """With probing disabled the breaker stays open past the timeout."""
        cb = breaker(mono, half_open_enabled=False)
        for _ in range(3):
            cb.record_failure()
        mono.t += 3600
        assert cb.state is CircuitState.OPEN
        assert not cb.allow()

    def test_requires_consecutive_failures(self, mono) -> None:
        """A success in between restarts the failure count."""
        cb = breaker(mono, half_open_enabled=False)
        cb.record_failure()
        cb.record_failure()
        cb.record_success()
        cb.record_failure()
        assert cb.state is CircuitState.CLOSED

    def test_reset_recovers(self, mono) -> None:
        """Only reset() closes a breaker without probing."""
        cb = breaker(mono, half_open_enabled=False)
        for _ in range(3):
            cb.record_failure()
        cb.reset()
        assert cb.allow()
