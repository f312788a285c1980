"""Operator-facing silence management."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from alertbridge.errors import InvalidSilenceDurationError, SilenceNotFoundError
from alertbridge.models import AckSource, Alert, SilenceMark, utc_now
from alertbridge.repositories import SilenceRepository, update_with_retry

logger = logging.getLogger(__name__)


class SilenceService:
    def __init__(
        self,
        silences: SilenceRepository,
        *,
        default_duration: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = utc_now,
        logger: logging.Logger = logger,
    ) -> None:
        self._silences = silences
        self.default_duration = default_duration
        self._clock = clock
        self._logger = logger

    async def create(
        self,
        duration: timedelta | None = None,
        *,
        created_by: str = "",
        created_by_email: str = "",
        source: AckSource = "api",
        reason: str = "",
        alert_id: str = "",
        instance: str = "",
        fingerprint: str = "",
        labels: dict[str, str] | None = None,
        start_at: datetime | None = None,
    ) -> SilenceMark:
        duration = self.default_duration if duration is None else duration
        if duration <= timedelta(0):
            raise InvalidSilenceDurationError(f"silence duration must be positive, got {duration}")
        if not (alert_id or instance or fingerprint or labels):
            raise ValueError("a silence needs at least one selector")
        now = self._clock()
        start = start_at or now
        silence = SilenceMark(
            alert_id=alert_id,
            instance=instance,
            fingerprint=fingerprint,
            labels=dict(labels or {}),
            start_at=start,
            end_at=start + duration,
            created_by=created_by,
            created_by_email=created_by_email,
            reason=reason,
            source=source,
            created_at=now,
        )
        await self._silences.save(silence)
        self._logger.info(
            "silence %s created by %s until %s", silence.id, created_by or source, silence.end_at
        )
        return silence

    async def get(self, silence_id: str) -> SilenceMark:
        silence = await self._silences.find_by_id(silence_id)
        if silence is None:
            raise SilenceNotFoundError(silence_id)
        return silence

    async def extend(self, silence_id: str, duration: timedelta) -> SilenceMark:
        if duration <= timedelta(0):
            raise InvalidSilenceDurationError(f"silence extension must be positive, got {duration}")
        silence = await self.get(silence_id)
        silence, _ = await update_with_retry(
            self._silences,
            silence,
            lambda m: m.extend(duration),
            not_found=SilenceNotFoundError,
        )
        self._logger.info("silence %s extended until %s", silence.id, silence.end_at)
        return silence

    async def cancel(self, silence_id: str) -> SilenceMark:
        now = self._clock()
        silence = await self.get(silence_id)
        silence, _ = await update_with_retry(
            self._silences,
            silence,
            lambda m: m.cancel(now),
            not_found=SilenceNotFoundError,
        )
        self._logger.info("silence %s cancelled", silence.id)
        return silence

    async def delete(self, silence_id: str) -> None:
        await self._silences.delete(silence_id)

    async def list_active(self) -> list[SilenceMark]:
        return await self._silences.find_active(self._clock())

    async def matching(self, alert: Alert) -> list[SilenceMark]:
        return await self._silences.find_matching_alert(alert, self._clock())

    async def is_silenced(self, alert: Alert) -> bool:
        return bool(await self.matching(alert))

    async def purge_expired(self) -> int:
        removed = await self._silences.delete_expired(self._clock())
        if removed:
            self._logger.info("purged %d expired silences", removed)
        return removed
