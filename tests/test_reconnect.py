"""Tests for the streaming reconnection supervisor."""

from __future__ import annotations

from datetime import timedelta

import pytest

from alertbridge.errors import CircuitOpenError
from alertbridge.resilience import ReconnectPolicy, ReconnectSupervisor


class Sessions:
    """Scripted connection attempts: True = clean session, False = failure."""

    def __init__(self, *outcomes: bool) -> None:
        self.outcomes = list(outcomes)
        self.attempts = 0

    async def __call__(self) -> None:
        self.attempts += 1
        if not self.outcomes.pop(0):
            raise ConnectionError("socket closed")


@pytest.fixture
def policy() -> ReconnectPolicy:
    return ReconnectPolicy(
        initial_backoff=timedelta(milliseconds=500),
        max_backoff=timedelta(seconds=2),
        multiplier=2.0,
        max_failures=3,
    )


class TestReconnectSupervisor:
    @pytest.mark.asyncio
    async def test_gives_up_after_consecutive_failures(self, policy, sleep) -> None:
        """The supervisor stops with CircuitOpenError after max failures."""
        connect = Sessions(False, False, False, False)
        supervisor = ReconnectSupervisor(connect, policy, sleep=sleep)
        with pytest.raises(CircuitOpenError):
            await supervisor.run()
        assert connect.attempts == 3
        assert sleep.delays == pytest.approx([0.5, 1.0])

    @pytest.mark.asyncio
    async def test_clean_session_resets_failures(self, policy, sleep) -> None:
        """A clean session return clears the failure streak."""
        connect = Sessions(False, False, True, False, False, True)
        supervisor = ReconnectSupervisor(connect, policy, sleep=sleep, max_sessions=2)
        await supervisor.run()
        assert connect.attempts == 6
        assert sleep.delays == pytest.approx([0.5, 1.0, 0.5, 1.0])
        assert supervisor.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self, sleep) -> None:
        """Reconnect delays grow by the multiplier up to the cap."""
        policy = ReconnectPolicy(
            initial_backoff=timedelta(seconds=1),
            max_backoff=timedelta(seconds=3),
            multiplier=2.0,
            max_failures=10,
        )
        connect = Sessions(*([False] * 5), True)
        await ReconnectSupervisor(connect, policy, sleep=sleep, max_sessions=1).run()
        assert sleep.delays == pytest.approx([1.0, 2.0, 3.0, 3.0, 3.0])

    @pytest.mark.asyncio
    async def test_reset_allows_restart(self, policy, sleep) -> None:
        """reset() lets a stopped supervisor run again."""
        connect = Sessions(False, False, False, True)
        supervisor = ReconnectSupervisor(connect, policy, sleep=sleep, max_sessions=1)
        with pytest.raises(CircuitOpenError):
            await supervisor.run()
        supervisor.reset()
        await supervisor.run()
        assert connect.attempts == 4
