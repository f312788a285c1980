"""Tests for silence management."""

from __future__ import annotations

from datetime import timedelta

import pytest

from alertbridge.errors import InvalidSilenceDurationError, SilenceNotFoundError
from conftest import T0, make_alert


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_defaults_to_one_hour(self, silence_service) -> None:
        """Silences without a duration last the default hour."""
        mark = await silence_service.create(fingerprint="fp-1", created_by="alice")
        assert mark.start_at == T0
        assert mark.end_at == T0 + timedelta(hours=1)
        assert mark.source == "api"

    @pytest.mark.asyncio
    async def test_create_future_silence(self, silence_service) -> None:
        """A silence may start in the future."""
        start = T0 + timedelta(hours=2)
        mark = await silence_service.create(
            timedelta(minutes=30), instance="db-1", start_at=start
        )
        assert mark.is_pending(T0)
        assert mark.end_at == start + timedelta(minutes=30)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("duration", [timedelta(0), timedelta(minutes=-5)])
    async def test_rejects_non_positive_duration(self, silence_service, duration) -> None:
        """Zero and negative durations are rejected."""
        with pytest.raises(InvalidSilenceDurationError):
            await silence_service.create(duration, fingerprint="fp-1")

    @pytest.mark.asyncio
    async def test_rejects_silence_without_selector(self, silence_service) -> None:
        """A silence needs at least one selector."""
        with pytest.raises(ValueError):
            await silence_service.create(timedelta(hours=1))


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_extend(self, silence_service, memory) -> None:
        """Extending moves the end and bumps the version."""
        mark = await silence_service.create(timedelta(hours=1), fingerprint="fp-1")
        extended = await silence_service.extend(mark.id, timedelta(hours=2))
        assert extended.end_at == T0 + timedelta(hours=3)
        stored = await memory.silences.find_by_id(mark.id)
        assert stored.end_at == T0 + timedelta(hours=3)
        assert stored.version == 2

    @pytest.mark.asyncio
    async def test_cancel(self, silence_service, clock) -> None:
        """Cancelling ends the silence at the current time."""
        mark = await silence_service.create(timedelta(hours=1), fingerprint="fp-1")
        clock.advance(minutes=10)
        cancelled = await silence_service.cancel(mark.id)
        assert cancelled.end_at == T0 + timedelta(minutes=10)
        assert await silence_service.list_active() == []

    @pytest.mark.asyncio
    async def test_missing_silence(self, silence_service) -> None:
        """Unknown silence IDs raise SilenceNotFoundError."""
        with pytest.raises(SilenceNotFoundError):
            await silence_service.extend("nope", timedelta(hours=1))
        with pytest.raises(SilenceNotFoundError):
            await silence_service.cancel("nope")

    @pytest.mark.asyncio
    async def test_extend_retries_after_concurrent_edit(self, silence_service, memory) -> None:
        """An extend survives one concurrent edit."""
        mark = await silence_service.create(timedelta(hours=1), fingerprint="fp-1")
        other = await memory.silences.find_by_id(mark.id)
        other.reason = "edited elsewhere"
        await memory.silences.update(other)

        extended = await silence_service.extend(mark.id, timedelta(hours=1))
        assert extended.version == 3
        assert extended.reason == "edited elsewhere"

    @pytest.mark.asyncio
    async def test_purge_expired(self, silence_service, clock) -> None:
        """The sweep removes only expired silences."""
        await silence_service.create(timedelta(minutes=15), fingerprint="a")
        keep = await silence_service.create(timedelta(hours=4), fingerprint="b")
        clock.advance(minutes=30)
        assert await silence_service.purge_expired() == 1
        assert [m.id for m in await silence_service.list_active()] == [keep.id]

    @pytest.mark.asyncio
    async def test_delete(self, silence_service) -> None:
        """Deleted silences are gone."""
        mark = await silence_service.create(fingerprint="fp-1")
        await silence_service.delete(mark.id)
        with pytest.raises(SilenceNotFoundError):
            await silence_service.get(mark.id)


class TestMatching:
    @pytest.mark.asyncio
    async def test_is_silenced(self, silence_service) -> None:
        """is_silenced reflects active matching silences."""
        await silence_service.create(labels={"env": "prod"})
        assert await silence_service.is_silenced(make_alert(labels={"env": "prod"}))
        assert not await silence_service.is_silenced(make_alert(labels={"env": "dev"}))

    @pytest.mark.asyncio
    async def test_matching_returns_each_silence_once(self, silence_service) -> None:
        """A silence hit by several indices is returned once."""
        alert = make_alert("fp-1", instance="srv-1")
        both = await silence_service.create(fingerprint="fp-1", instance="srv-1")
        matched = await silence_service.matching(alert)
        assert [m.id for m in matched] == [both.id]
